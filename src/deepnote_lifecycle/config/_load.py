"""Configuration loading."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from deepnote_lifecycle.exceptions import ConfigValidationError

from ._loader import ENV_PREFIX, deep_merge, parse_env_vars, read_toml_file
from ._models import LifecycleConfig

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path


def load_config(
    config_path: Path | None = None,
    *,
    overrides: Mapping[str, Any] | None = None,  # pyright: ignore[reportExplicitAny]
    environ: Mapping[str, str] | None = None,
    include_env: bool = True,
) -> LifecycleConfig:
    """Load the lifecycle configuration.

    Sources are merged in order of increasing precedence: built-in defaults,
    the TOML file at ``config_path``, ``DEEPNOTE_LIFECYCLE_*`` environment
    variables, and finally ``overrides``.

    Args:
        config_path: Optional TOML file to read.
        overrides: Explicit values, as a nested dictionary.
        environ: Environment to read instead of ``os.environ``.
        include_env: Whether to read environment variables at all.

    Returns:
        The validated configuration.

    Raises:
        ConfigLoadError: If the TOML file cannot be read or parsed.
        ConfigValidationError: If the merged values fail validation.
    """
    merged: dict[str, Any] = {}  # pyright: ignore[reportExplicitAny]

    if config_path is not None:
        merged = deep_merge(merged, read_toml_file(config_path))

    if include_env:
        merged = deep_merge(merged, parse_env_vars(ENV_PREFIX, environ))

    if overrides:
        merged = deep_merge(merged, overrides)

    try:
        return LifecycleConfig.model_validate(merged)
    except ValidationError as e:
        first = e.errors()[0]
        key = ".".join(str(part) for part in first["loc"])
        msg = f"Invalid configuration value for '{key}': {first['msg']}"
        raise ConfigValidationError(
            msg,
            key=key,
            value=first.get("input"),
            expected=first["type"],
        ) from e
