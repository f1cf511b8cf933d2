"""Configuration models. Every section is a frozen Pydantic model."""

from enum import StrEnum
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field


class LogLevel(StrEnum):
    """Log level threshold."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class LogFormat(StrEnum):
    """Log output format."""

    JSON = "json"
    TEXT = "text"


DEFAULT_TOOLKIT_VERSION = "0.2.30.post30"
DEFAULT_PACKAGE_URL_TEMPLATE = (
    "https://deepnote-staging-runtime-artifactory.s3.amazonaws.com"
    "/deepnote-toolkit-packages/{version}/deepnote_toolkit-{version}-py3-none-any.whl"
)


class ToolkitConfig(BaseModel):
    """Toolkit package installed into each environment.

    Attributes:
        version: Toolkit release to install.
        package_url_template: Wheel URL, formatted with ``version``.
        module: Import name used to verify the installation.
        distribution: Distribution name used to read the installed version.
        extras: Extras requested for the toolkit requirement.
        extra_requirements: Packages installed alongside the toolkit.
        kernel_spec_prefix: Prefix of the kernel spec name registered in the venv.
        upgrade_pip: Whether to upgrade pip before installing the toolkit.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    version: str = DEFAULT_TOOLKIT_VERSION
    package_url_template: str = DEFAULT_PACKAGE_URL_TEMPLATE
    module: str = "deepnote_toolkit"
    distribution: str = "deepnote-toolkit"
    extras: tuple[str, ...] = ("server",)
    extra_requirements: tuple[str, ...] = ("ipykernel",)
    kernel_spec_prefix: str = "deepnote"
    upgrade_pip: bool = True

    @property
    def package_url(self) -> str:
        """Return the wheel URL for the configured version."""
        return self.package_url_template.format(version=self.version)

    @property
    def requirement(self) -> str:
        """Return the pip requirement string for the toolkit wheel."""
        extras = f"[{','.join(self.extras)}]" if self.extras else ""
        return f"{self.distribution}{extras} @ {self.package_url}"


class PortConfig(BaseModel):
    """Port allocation settings.

    Attributes:
        jupyter_base: First port tried for the Jupyter server.
        lsp_port: Well-known language server port checked by the reaper.
        max_attempts: Candidate ports tried before giving up.
        host: Interface used when probing whether a port is free.
        scan_range: Number of Jupyter ports from ``jupyter_base`` the reaper scans.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    jupyter_base: int = Field(default=8888, ge=1, le=65535)
    lsp_port: int = Field(default=2087, ge=1, le=65535)
    max_attempts: int = Field(default=100, ge=1)
    host: str = "127.0.0.1"
    scan_range: int = Field(default=10, ge=0)


class ServerConfig(BaseModel):
    """Server process settings. Durations are in seconds.

    Attributes:
        startup_timeout: Overall bound on waiting for the health check.
        poll_interval: Delay between health checks.
        probe_timeout: Timeout of a single health check request.
        health_path: API path probed for readiness.
        stop_grace_period: Wait after terminate before escalating to kill.
        dispose_pending_timeout: Bound on waiting for in-flight operations on dispose.
        output_buffer_chars: Characters of stdout/stderr kept per server.
        url_host: Host name used in the server URL handed to clients.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    startup_timeout: float = Field(default=120.0, gt=0)
    poll_interval: float = Field(default=0.5, gt=0)
    probe_timeout: float = Field(default=2.0, gt=0)
    health_path: str = "/api"
    stop_grace_period: float = Field(default=3.0, ge=0)
    dispose_pending_timeout: float = Field(default=10.0, ge=0)
    output_buffer_chars: int = Field(default=5000, ge=0)
    url_host: str = "localhost"


class LockConfig(BaseModel):
    """Lock file settings.

    Attributes:
        directory: Lock file directory. Empty uses ``<tempdir>/deepnote-locks``.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    directory: str = ""


class ReaperConfig(BaseModel):
    """Orphan reaper settings.

    Attributes:
        enabled: Whether the runtime reaps orphans on startup.
        kill_grace_period: Wait after a graceful kill before forcing it.
        join_timeout: Bound on waiting for a background reap on shutdown.
        toolkit_markers: Command line fragments identifying toolkit processes.
        venv_markers: Command line fragments identifying managed venvs.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    enabled: bool = True
    kill_grace_period: float = Field(default=1.0, ge=0)
    join_timeout: float = Field(default=5.0, ge=0)
    toolkit_markers: tuple[str, ...] = ("deepnote_toolkit", "deepnote-toolkit")
    venv_markers: tuple[str, ...] = (
        "deepnote-venvs",
        "deepnote_venvs",
        "deepnote-kernels",
    )


class LoggingConfig(BaseModel):
    """Logging configuration section.

    Attributes:
        level: Log level threshold.
        format: Log output format.
        file: Path to log file (empty logs to stderr).
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    level: LogLevel = LogLevel.INFO
    format: LogFormat = LogFormat.JSON
    file: str = ""


class LifecycleConfig(BaseModel):
    """Complete lifecycle configuration."""

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    toolkit: ToolkitConfig = Field(default_factory=ToolkitConfig)
    ports: PortConfig = Field(default_factory=PortConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    locks: LockConfig = Field(default_factory=LockConfig)
    reaper: ReaperConfig = Field(default_factory=ReaperConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
