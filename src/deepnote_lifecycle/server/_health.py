"""HTTP readiness probe."""

from typing import final

import httpx


@final
class HttpxProbe:
    """HttpProbe that issues a GET with httpx.

    Every transport or protocol error counts as "not ready".
    """

    __slots__ = ("_client", "_timeout")

    def __init__(
        self,
        *,
        timeout: float = 2.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the probe.

        Args:
            timeout: Per-request timeout in seconds.
            client: Shared client. A short-lived client is used per probe if omitted.
        """
        self._timeout = timeout
        self._client = client

    async def exists(self, url: str) -> bool:
        """Return True if a GET against ``url`` returns a 2xx response."""
        try:
            if self._client is not None:
                response = await self._client.get(url, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.get(url)
        except (httpx.HTTPError, OSError):
            return False
        return response.is_success
