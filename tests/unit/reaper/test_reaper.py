from pathlib import Path

import pytest

from deepnote_lifecycle.config import PortConfig, ReaperConfig
from deepnote_lifecycle.locks import LockFileRegistry
from deepnote_lifecycle.reaper import OrphanReaper
from deepnote_lifecycle.testing import FakeProcessInspector

pytestmark = pytest.mark.anyio

TOOLKIT_CMD = "/home/u/.deepnote-venvs/env-1/bin/python -m deepnote_toolkit server --jupyter-port 8888"
VENV_CMD = "/home/u/deepnote-venvs/env-2/bin/python -m jupyter lsp"


@pytest.fixture
def inspector() -> FakeProcessInspector:
    return FakeProcessInspector()


@pytest.fixture
def reaper(inspector: FakeProcessInspector, registry: LockFileRegistry) -> OrphanReaper:
    return OrphanReaper(
        inspector,
        registry,
        config=ReaperConfig(kill_grace_period=0.1),
        protected_pids=frozenset(),
    )


class TestClassification:
    def test_markers(self, reaper: OrphanReaper) -> None:
        assert reaper.is_deepnote_related(TOOLKIT_CMD)
        assert reaper.is_deepnote_related(VENV_CMD)
        assert not reaper.is_deepnote_related("python -m http.server 8888")

    def test_well_known_ports(self, inspector: FakeProcessInspector, registry: LockFileRegistry) -> None:
        reaper = OrphanReaper(
            inspector, registry, ports=PortConfig(jupyter_base=8888, lsp_port=2087, scan_range=3)
        )

        assert reaper.well_known_ports() == [2087, 8888, 8889, 8890]

    async def test_parent_is_init(self, reaper: OrphanReaper, inspector: FakeProcessInspector) -> None:
        inspector.add(100, 1, TOOLKIT_CMD)

        assert await reaper.is_orphaned(100) is True

    async def test_parent_is_dead(self, reaper: OrphanReaper, inspector: FakeProcessInspector) -> None:
        inspector.add(100, 4321, TOOLKIT_CMD)

        assert await reaper.is_orphaned(100) is True

    async def test_parent_is_alive(self, reaper: OrphanReaper, inspector: FakeProcessInspector) -> None:
        inspector.add(50, 1, "code")
        inspector.add(100, 50, TOOLKIT_CMD)

        assert await reaper.is_orphaned(100) is False

    async def test_unknown_parent(self, reaper: OrphanReaper, inspector: FakeProcessInspector) -> None:
        inspector.add(100, None, TOOLKIT_CMD)

        assert await reaper.is_orphaned(100) is False

    async def test_query_failure_is_not_orphaned(
        self, reaper: OrphanReaper, inspector: FakeProcessInspector
    ) -> None:
        inspector.add(100, 1, TOOLKIT_CMD)
        inspector.fail_queries = True

        assert await reaper.is_orphaned(100) is False


class TestFindOrphans:
    async def test_finds_port_listener(
        self, reaper: OrphanReaper, inspector: FakeProcessInspector
    ) -> None:
        inspector.add(300, 1, TOOLKIT_CMD, port=8888)

        orphans = await reaper.find_orphans()

        assert [(orphan.pid, orphan.source) for orphan in orphans] == [(300, "port 8888")]

    async def test_finds_process_by_scan(
        self, reaper: OrphanReaper, inspector: FakeProcessInspector
    ) -> None:
        inspector.add(301, 1, VENV_CMD)

        orphans = await reaper.find_orphans()

        assert [(orphan.pid, orphan.source) for orphan in orphans] == [(301, "process scan")]

    async def test_skips_unrelated_listener(
        self, reaper: OrphanReaper, inspector: FakeProcessInspector
    ) -> None:
        inspector.add(302, 1, "python -m http.server 8888", port=8888)

        assert await reaper.find_orphans() == []

    async def test_skips_current_session(
        self,
        reaper: OrphanReaper,
        inspector: FakeProcessInspector,
        registry: LockFileRegistry,
    ) -> None:
        inspector.add(303, 1, TOOLKIT_CMD, port=8888)
        _ = await registry.write(303)

        assert await reaper.find_orphans() == []

    async def test_other_session_lock_is_reported(
        self,
        reaper: OrphanReaper,
        inspector: FakeProcessInspector,
        registry: LockFileRegistry,
    ) -> None:
        other = LockFileRegistry(registry.directory, session_id="previous-session")
        inspector.add(304, 1, TOOLKIT_CMD)
        _ = await other.write(304)

        orphans = await reaper.find_orphans()

        assert [orphan.lock_session_id for orphan in orphans] == ["previous-session"]

    async def test_protected_pids_are_skipped(
        self, inspector: FakeProcessInspector, registry: LockFileRegistry
    ) -> None:
        inspector.add(305, 1, TOOLKIT_CMD, port=8888)
        reaper = OrphanReaper(inspector, registry, protected_pids=frozenset({305}))

        assert await reaper.find_orphans() == []


class TestCleanupOnActivation:
    async def test_kills_orphans_and_keeps_others(
        self,
        reaper: OrphanReaper,
        inspector: FakeProcessInspector,
        registry: LockFileRegistry,
    ) -> None:
        inspector.add(50, 1, "code")
        inspector.add(400, 1, TOOLKIT_CMD, port=8888)
        inspector.add(401, 50, TOOLKIT_CMD)
        inspector.add(402, 1, "python -m http.server")
        inspector.add(403, 1, VENV_CMD)
        _ = await registry.write(403)

        report = await reaper.cleanup_on_activation()

        assert report.killed == [400]
        assert report.failed == []
        assert set(inspector.processes) == {50, 401, 402, 403}

    async def test_removes_orphan_lock_file(
        self,
        reaper: OrphanReaper,
        inspector: FakeProcessInspector,
        registry: LockFileRegistry,
    ) -> None:
        other = LockFileRegistry(registry.directory, session_id="previous-session")
        inspector.add(410, 1, TOOLKIT_CMD)
        _ = await other.write(410)

        report = await reaper.cleanup_on_activation()

        assert report.killed == [410]
        assert await registry.list_pids() == []

    async def test_removes_stale_lock_files(
        self,
        reaper: OrphanReaper,
        inspector: FakeProcessInspector,
        registry: LockFileRegistry,
    ) -> None:
        inspector.add(420, 77, "code")
        _ = await registry.write(420)
        _ = await registry.write(421)

        report = await reaper.cleanup_on_activation()

        assert report.stale_locks_removed == [421]
        assert await registry.list_pids() == [420]

    async def test_escalates_to_force_kill(
        self, reaper: OrphanReaper, inspector: FakeProcessInspector
    ) -> None:
        inspector.add(430, 1, TOOLKIT_CMD)
        inspector.ignore_terminate.add(430)

        report = await reaper.cleanup_on_activation()

        assert report.killed == [430]
        assert inspector.kills == [(430, False), (430, True)]

    async def test_query_failures_kill_nothing(
        self, reaper: OrphanReaper, inspector: FakeProcessInspector
    ) -> None:
        inspector.add(440, 1, TOOLKIT_CMD, port=8888)
        inspector.fail_queries = True

        report = await reaper.cleanup_on_activation()

        assert report.killed == []
        assert inspector.kills == []

    async def test_never_raises(
        self, inspector: FakeProcessInspector, tmp_path: Path
    ) -> None:
        blocker = tmp_path / "file"
        _ = blocker.write_text("x")
        registry = LockFileRegistry(blocker)
        reaper = OrphanReaper(inspector, registry, protected_pids=frozenset())

        report = await reaper.cleanup_on_activation()

        assert report.killed == []
