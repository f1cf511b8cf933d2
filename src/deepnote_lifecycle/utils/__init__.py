"""Utilities shared by the lifecycle components."""

from ._exec import AnyioProcessRunner, truncate_output
from ._json import dump_json, load_json
from ._logging import create_lifecycle_logger, create_logger_from_config
from ._paths import (
    default_lock_dir,
    is_windows,
    kernel_spec_dir,
    kernel_spec_display_name,
    kernel_spec_name,
    lock_file_path,
    pid_from_lock_file,
    venv_bin_dir,
    venv_interpreter_path,
)

__all__ = [
    "AnyioProcessRunner",
    "create_lifecycle_logger",
    "create_logger_from_config",
    "default_lock_dir",
    "dump_json",
    "is_windows",
    "kernel_spec_dir",
    "kernel_spec_display_name",
    "kernel_spec_name",
    "load_json",
    "lock_file_path",
    "pid_from_lock_file",
    "truncate_output",
    "venv_bin_dir",
    "venv_interpreter_path",
]
