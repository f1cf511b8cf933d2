"""In-memory fakes of the lifecycle collaborators, for tests."""

from ._fakes import (
    FakeEnvVarsProvider,
    FakeHttpProbe,
    FakePortProbe,
    FakeProcess,
    FakeProcessInspector,
    FakeProcessRunner,
    FakeVenvPython,
    SpawnCall,
)

__all__ = [
    "FakeEnvVarsProvider",
    "FakeHttpProbe",
    "FakePortProbe",
    "FakeProcess",
    "FakeProcessInspector",
    "FakeProcessRunner",
    "FakeVenvPython",
    "SpawnCall",
]
