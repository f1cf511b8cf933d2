"""Filesystem layout of virtual environments and lock files."""

import sys
import tempfile
from pathlib import Path

LOCK_DIR_NAME = "deepnote-locks"
LOCK_FILE_PREFIX = "server-"
LOCK_FILE_SUFFIX = ".json"


def is_windows(platform: str | None = None) -> bool:
    """Return True if ``platform`` (default: the running one) is Windows."""
    return (platform or sys.platform) == "win32"


def venv_bin_dir(venv_path: Path, *, platform: str | None = None) -> Path:
    """Return the directory holding the venv's executables."""
    return venv_path / ("Scripts" if is_windows(platform) else "bin")


def venv_interpreter_path(venv_path: Path, *, platform: str | None = None) -> Path:
    """Return the conventional interpreter path inside a venv."""
    executable = "python.exe" if is_windows(platform) else "python"
    return venv_bin_dir(venv_path, platform=platform) / executable


def kernel_spec_name(venv_path: Path, prefix: str = "deepnote") -> str:
    """Return the kernel spec name registered for a venv."""
    return f"{prefix}-{venv_path.name}"


def kernel_spec_display_name(venv_path: Path) -> str:
    """Return the human-readable kernel spec name for a venv."""
    return f"Deepnote ({venv_path.name})"


def kernel_spec_dir(venv_path: Path, name: str) -> Path:
    """Return the directory ``ipykernel install --prefix`` writes a spec to."""
    return venv_path / "share" / "jupyter" / "kernels" / name


def default_lock_dir() -> Path:
    """Return the shared lock file directory under the system temp dir."""
    return Path(tempfile.gettempdir()) / LOCK_DIR_NAME


def lock_file_path(lock_dir: Path, pid: int) -> Path:
    """Return the lock file path for a process id."""
    return lock_dir / f"{LOCK_FILE_PREFIX}{pid}{LOCK_FILE_SUFFIX}"


def pid_from_lock_file(path: Path) -> int | None:
    """Return the process id encoded in a lock file name, or None."""
    name = path.name
    if not (name.startswith(LOCK_FILE_PREFIX) and name.endswith(LOCK_FILE_SUFFIX)):
        return None
    raw = name[len(LOCK_FILE_PREFIX) : -len(LOCK_FILE_SUFFIX)]
    return int(raw) if raw.isdigit() else None
