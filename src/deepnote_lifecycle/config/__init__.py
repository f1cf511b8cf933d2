"""Lifecycle configuration."""

from ._load import load_config
from ._loader import ENV_PREFIX, deep_merge, parse_env_value, parse_env_vars
from ._models import (
    LifecycleConfig,
    LockConfig,
    LogFormat,
    LoggingConfig,
    LogLevel,
    PortConfig,
    ReaperConfig,
    ServerConfig,
    ToolkitConfig,
)

__all__ = [
    "ENV_PREFIX",
    "LifecycleConfig",
    "LockConfig",
    "LogFormat",
    "LogLevel",
    "LoggingConfig",
    "PortConfig",
    "ReaperConfig",
    "ServerConfig",
    "ToolkitConfig",
    "deep_merge",
    "load_config",
    "parse_env_value",
    "parse_env_vars",
]
