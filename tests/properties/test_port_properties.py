import anyio
from hypothesis import given, settings, strategies as st

from deepnote_lifecycle.config import PortConfig
from deepnote_lifecycle.ports import PortAllocator
from deepnote_lifecycle.server import ServerStateStore
from deepnote_lifecycle.testing import FakePortProbe


@settings(max_examples=50, deadline=None)
@given(
    busy=st.sets(st.integers(min_value=8888, max_value=8920), max_size=15),
    environments=st.integers(min_value=1, max_value=8),
)
def test_allocated_ports_are_disjoint(busy: set[int], environments: int) -> None:
    async def allocate_all() -> list[tuple[int, int]]:
        store = ServerStateStore()
        allocator = PortAllocator(
            store,
            probe=FakePortProbe(busy=set(busy)),
            config=PortConfig(max_attempts=200),
        )
        pairs: list[tuple[int, int]] = []

        async def allocate(environment_id: str) -> None:
            pairs.append(await allocator.allocate_pair(environment_id))

        async with anyio.create_task_group() as tg:
            for index in range(environments):
                tg.start_soon(allocate, f"env-{index}")
        return pairs

    pairs = anyio.run(allocate_all)
    ports = [port for pair in pairs for port in pair]

    assert len(pairs) == environments
    assert len(ports) == len(set(ports))
    assert not set(ports) & busy
