"""OS-level free port probing."""

import socket
from typing import cast, final


def _try_bind(host: str, port: int) -> int | None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        try:
            s.bind((host, port))
        except OSError:
            return None
        addr: tuple[str, int] = cast("tuple[str, int]", s.getsockname())
        return addr[1]


@final
class SocketPortProbe:
    """PortProbe that test-binds a socket on the configured host.

    A free port is only free at the time of the probe; the allocator's
    reservation table covers the window until the server binds it.
    """

    __slots__ = ("_host",)

    def __init__(self, host: str = "127.0.0.1") -> None:
        self._host = host

    async def find_free(self, port: int) -> int:
        """Return ``port`` if it can be bound, otherwise an ephemeral free port.

        Raises:
            OSError: If not even an ephemeral port can be bound.
        """
        bound = _try_bind(self._host, port)
        if bound is not None:
            return bound

        ephemeral = _try_bind(self._host, 0)
        if ephemeral is None:
            msg = f"Unable to bind any port on {self._host}"
            raise OSError(msg)
        return ephemeral
