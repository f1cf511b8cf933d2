"""Runtime composition of the lifecycle components."""

from ._controller import EnvironmentController
from ._runtime import DeepnoteRuntime

__all__ = ["DeepnoteRuntime", "EnvironmentController"]
