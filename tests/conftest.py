"""Shared test fixtures for deepnote-lifecycle tests."""

from collections.abc import Callable
from pathlib import Path

import pytest

from deepnote_lifecycle.config import LifecycleConfig
from deepnote_lifecycle.locks import LockFileRegistry
from deepnote_lifecycle.pending import PendingOperations
from deepnote_lifecycle.ports import PortAllocator
from deepnote_lifecycle.protocols import IntegrationEnvVarsProvider, OutputSink
from deepnote_lifecycle.server import ServerLifecycleManager, ServerStateStore
from deepnote_lifecycle.testing import (
    FakeHttpProbe,
    FakePortProbe,
    FakeProcessRunner,
    FakeVenvPython,
)
from deepnote_lifecycle.utils import kernel_spec_dir, kernel_spec_name, venv_interpreter_path
from deepnote_lifecycle.venv import VenvInstaller

SESSION_ID = "session-under-test"

ManagerFactory = Callable[..., ServerLifecycleManager]


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def lifecycle_config(tmp_path: Path) -> LifecycleConfig:
    """Configuration with short timeouts and an isolated lock directory."""
    return LifecycleConfig.model_validate(
        {
            "server": {
                "startup_timeout": 0.5,
                "poll_interval": 0.01,
                "stop_grace_period": 0.1,
                "dispose_pending_timeout": 1.0,
            },
            "reaper": {"kill_grace_period": 0.1, "join_timeout": 1.0},
            "locks": {"directory": str(tmp_path / "locks")},
        }
    )


@pytest.fixture
def fake_python() -> FakeVenvPython:
    return FakeVenvPython()


@pytest.fixture
def runner(fake_python: FakeVenvPython) -> FakeProcessRunner:
    return FakeProcessRunner(exec_handler=fake_python)


@pytest.fixture
def base_python(tmp_path: Path) -> Path:
    """A file standing in for the base interpreter."""
    path = tmp_path / "base" / "bin" / "python3"
    path.parent.mkdir(parents=True)
    path.touch()
    return path


@pytest.fixture
def venv_path(tmp_path: Path) -> Path:
    return tmp_path / "venvs" / "env-1"


@pytest.fixture
def ready_venv(venv_path: Path, fake_python: FakeVenvPython) -> Path:
    """A venv that already has the toolkit and its kernel spec installed."""
    interpreter = venv_interpreter_path(venv_path)
    interpreter.parent.mkdir(parents=True)
    interpreter.touch()
    kernel_spec_dir(venv_path, kernel_spec_name(venv_path)).mkdir(parents=True)
    fake_python.toolkit_installed = True
    return venv_path


@pytest.fixture
def registry(lifecycle_config: LifecycleConfig) -> LockFileRegistry:
    return LockFileRegistry(Path(lifecycle_config.locks.directory), session_id=SESSION_ID)


@pytest.fixture
def pending() -> PendingOperations:
    return PendingOperations()


@pytest.fixture
def installer(
    runner: FakeProcessRunner,
    lifecycle_config: LifecycleConfig,
    pending: PendingOperations,
) -> VenvInstaller:
    return VenvInstaller(runner, config=lifecycle_config.toolkit, pending=pending)


@pytest.fixture
def port_probe() -> FakePortProbe:
    return FakePortProbe()


@pytest.fixture
def http_probe() -> FakeHttpProbe:
    return FakeHttpProbe()


@pytest.fixture
def store() -> ServerStateStore:
    return ServerStateStore()


@pytest.fixture
def make_manager(  # noqa: PLR0913
    runner: FakeProcessRunner,
    installer: VenvInstaller,
    registry: LockFileRegistry,
    lifecycle_config: LifecycleConfig,
    store: ServerStateStore,
    port_probe: FakePortProbe,
    http_probe: FakeHttpProbe,
    pending: PendingOperations,
) -> ManagerFactory:
    """Return a factory building a manager wired to the shared fakes."""

    def _make(
        *,
        env_provider: IntegrationEnvVarsProvider | None = None,
        output_sink: OutputSink | None = None,
    ) -> ServerLifecycleManager:
        ports = PortAllocator(store, probe=port_probe, config=lifecycle_config.ports)
        return ServerLifecycleManager(
            runner,
            installer,
            registry,
            config=lifecycle_config,
            store=store,
            ports=ports,
            probe=http_probe,
            env_provider=env_provider,
            output_sink=output_sink,
            pending=pending,
        )

    return _make
