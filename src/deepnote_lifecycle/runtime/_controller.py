"""Environment-level orchestration on top of the installer and server manager."""

from __future__ import annotations

from typing import TYPE_CHECKING, final

from deepnote_lifecycle.exceptions import OperationCancelledError
from deepnote_lifecycle.models import EnvironmentStatus
from deepnote_lifecycle.utils import create_lifecycle_logger

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from deepnote_lifecycle.cancellation import CancellationToken
    from deepnote_lifecycle.models import Environment, ServerInfo
    from deepnote_lifecycle.server import ServerLifecycleManager
    from deepnote_lifecycle.venv import VenvInstaller


@final
class EnvironmentController:
    """Brings environments up and down and tracks their user-facing status."""

    __slots__ = ("_installer", "_logger", "_manager", "_statuses")

    def __init__(
        self,
        installer: VenvInstaller,
        manager: ServerLifecycleManager,
        *,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        self._installer = installer
        self._manager = manager
        self._statuses: dict[str, EnvironmentStatus] = {}
        if logger is None:
            logger = create_lifecycle_logger(component="environments")
        self._logger = logger

    def status(self, environment_id: str) -> EnvironmentStatus:
        """Return the status of an environment."""
        return self._statuses.get(environment_id, EnvironmentStatus.STOPPED)

    async def start_environment(
        self,
        environment: Environment,
        token: CancellationToken | None = None,
    ) -> ServerInfo:
        """Install the environment's venv and packages, then start its server.

        Raises:
            LifecycleError: Any install or startup failure, unchanged.
        """
        self._statuses[environment.id] = EnvironmentStatus.STARTING
        self._logger.info("Starting environment", environment_id=environment.id, name=environment.name)
        try:
            _ = await self._installer.ensure(
                environment.base_interpreter, environment.venv_path, token
            )
            if environment.packages:
                await self._installer.install_additional_packages(
                    environment.venv_path, environment.packages, token
                )
            info = await self._manager.start_server(
                environment.base_interpreter,
                environment.venv_path,
                environment.id,
                token,
            )
        except OperationCancelledError:
            self._statuses[environment.id] = EnvironmentStatus.STOPPED
            raise
        except BaseException:
            self._statuses[environment.id] = EnvironmentStatus.ERROR
            raise

        self._statuses[environment.id] = EnvironmentStatus.RUNNING
        return info

    async def stop_environment(self, environment_id: str) -> None:
        """Stop the environment's server."""
        await self._manager.stop_server(environment_id)
        self._statuses[environment_id] = EnvironmentStatus.STOPPED

    async def restart_environment(
        self,
        environment: Environment,
        token: CancellationToken | None = None,
    ) -> ServerInfo:
        """Stop the environment's server and start it again."""
        await self.stop_environment(environment.id)
        return await self.start_environment(environment, token)
