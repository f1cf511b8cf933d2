import anyio
import pytest
from hypothesis import given, settings, strategies as st

from deepnote_lifecycle.config import ReaperConfig
from deepnote_lifecycle.locks import LockFileRegistry
from deepnote_lifecycle.reaper import OrphanReaper
from deepnote_lifecycle.testing import FakeProcessInspector

MARKED = "python -m deepnote_toolkit server"
UNMARKED = "python -m http.server"

process = st.tuples(
    st.integers(min_value=100, max_value=200),
    st.one_of(st.none(), st.sampled_from([1, 50, 999])),
    st.sampled_from([MARKED, UNMARKED]),
)


@settings(max_examples=50, deadline=None)
@given(processes=st.lists(process, max_size=10, unique_by=lambda p: p[0]))
def test_only_marked_orphans_are_killed(
    tmp_path_factory: pytest.TempPathFactory, processes: list[tuple[int, int | None, str]]
) -> None:
    inspector = FakeProcessInspector()
    inspector.add(50, 1, "code")
    for pid, ppid, command_line in processes:
        inspector.add(pid, ppid, command_line)

    registry = LockFileRegistry(
        tmp_path_factory.mktemp("locks"),
        session_id="current",
    )
    reaper = OrphanReaper(
        inspector,
        registry,
        config=ReaperConfig(kill_grace_period=0.1),
        protected_pids=frozenset(),
    )

    report = anyio.run(reaper.cleanup_on_activation)

    expected = {
        pid for pid, ppid, command_line in processes if command_line == MARKED and ppid in (1, 999)
    }
    assert set(report.killed) == expected
