from pathlib import Path

import pytest

from deepnote_lifecycle.cancellation import CancellationToken
from deepnote_lifecycle.config import LifecycleConfig
from deepnote_lifecycle.exceptions import OperationCancelledError, ServerTimeoutError
from deepnote_lifecycle.models import Environment, EnvironmentStatus
from deepnote_lifecycle.runtime import DeepnoteRuntime
from deepnote_lifecycle.server import ServerState
from deepnote_lifecycle.testing import (
    FakeHttpProbe,
    FakePortProbe,
    FakeProcessInspector,
    FakeProcessRunner,
)

pytestmark = pytest.mark.anyio

ORPHAN_CMD = "/home/u/.deepnote-venvs/old/bin/python -m deepnote_toolkit server"


@pytest.fixture
def inspector() -> FakeProcessInspector:
    return FakeProcessInspector()


@pytest.fixture
def runtime(
    lifecycle_config: LifecycleConfig,
    runner: FakeProcessRunner,
    http_probe: FakeHttpProbe,
    port_probe: FakePortProbe,
    inspector: FakeProcessInspector,
) -> DeepnoteRuntime:
    return DeepnoteRuntime(
        lifecycle_config,
        runner=runner,
        probe=http_probe,
        port_probe=port_probe,
        inspector=inspector,
        session_id="runtime-session",
    )


@pytest.fixture
def environment(base_python: Path, venv_path: Path) -> Environment:
    return Environment(
        id="env-1",
        name="Analysis",
        base_interpreter=base_python,
        venv_path=venv_path,
        packages=("pandas",),
    )


class TestEnvironmentController:
    async def test_start_installs_packages_and_runs_server(
        self,
        runtime: DeepnoteRuntime,
        runner: FakeProcessRunner,
        environment: Environment,
    ) -> None:
        async with runtime:
            info = await runtime.controller.start_environment(environment)

            assert runtime.controller.status("env-1") is EnvironmentStatus.RUNNING
            assert runtime.manager.get_server_info("env-1") == info

        assert ["-m", "pip", "install", "--upgrade", "pandas"] in [
            command[1:] for command in runner.executed
        ]
        assert len(runner.spawned) == 1

    async def test_status_defaults_to_stopped(self, runtime: DeepnoteRuntime) -> None:
        assert runtime.controller.status("unknown") is EnvironmentStatus.STOPPED

    async def test_failure_sets_error(
        self,
        runtime: DeepnoteRuntime,
        http_probe: FakeHttpProbe,
        environment: Environment,
    ) -> None:
        http_probe.healthy = False

        async with runtime:
            with pytest.raises(ServerTimeoutError):
                _ = await runtime.controller.start_environment(environment)

            assert runtime.controller.status("env-1") is EnvironmentStatus.ERROR

    async def test_cancellation_sets_stopped(
        self, runtime: DeepnoteRuntime, environment: Environment
    ) -> None:
        token = CancellationToken()
        token.cancel()

        async with runtime:
            with pytest.raises(OperationCancelledError):
                _ = await runtime.controller.start_environment(environment, token)

            assert runtime.controller.status("env-1") is EnvironmentStatus.STOPPED

    async def test_stop_and_restart(
        self,
        runtime: DeepnoteRuntime,
        runner: FakeProcessRunner,
        environment: Environment,
    ) -> None:
        async with runtime:
            _ = await runtime.controller.start_environment(environment)
            await runtime.controller.stop_environment("env-1")

            assert runtime.controller.status("env-1") is EnvironmentStatus.STOPPED
            assert runtime.manager.get_state("env-1") is ServerState.STOPPED

            _ = await runtime.controller.restart_environment(environment)

            assert runtime.controller.status("env-1") is EnvironmentStatus.RUNNING

        assert len(runner.spawned) == 2


class TestDeepnoteRuntime:
    async def test_reaps_orphans_on_startup(
        self, runtime: DeepnoteRuntime, inspector: FakeProcessInspector
    ) -> None:
        inspector.add(700, 1, ORPHAN_CMD)

        async with runtime:
            pass

        assert runtime.reap_report is not None
        assert runtime.reap_report.killed == [700]
        assert 700 not in inspector.processes

    async def test_reaping_can_be_disabled(
        self,
        lifecycle_config: LifecycleConfig,
        runner: FakeProcessRunner,
        inspector: FakeProcessInspector,
    ) -> None:
        config = lifecycle_config.model_copy(
            update={"reaper": lifecycle_config.reaper.model_copy(update={"enabled": False})}
        )
        inspector.add(700, 1, ORPHAN_CMD)
        runtime = DeepnoteRuntime(config, runner=runner, inspector=inspector)

        async with runtime:
            pass

        assert runtime.reap_report is None
        assert 700 in inspector.processes

    async def test_shutdown_stops_servers(
        self,
        runtime: DeepnoteRuntime,
        runner: FakeProcessRunner,
        environment: Environment,
    ) -> None:
        async with runtime:
            _ = await runtime.controller.start_environment(environment)

        assert runner.spawned[0].process.returncode is not None
        assert len(runtime.store) == 0
