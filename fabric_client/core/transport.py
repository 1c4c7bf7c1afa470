"""HTTP transport for the Fabric API: URL joining, auth header, status check."""

from __future__ import annotations

import logging
from urllib.parse import urlparse

import httpx

from fabric_client.core.errors import FabricError, HTTPError, TransportError

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"
DEFAULT_TIMEOUT = 60.0


async def _read_error_body(response: httpx.Response) -> str | None:
    """Capture the body of a failed response for diagnostics, then close it."""
    try:
        raw = await response.aread()
    except httpx.HTTPError:
        raw = b""
    finally:
        await response.aclose()
    if not raw:
        return None
    return raw.decode("utf-8", errors="replace")


class Transport:
    """Sends requests to one Fabric server.

    Owns the underlying httpx.AsyncClient unless one is passed in. Responses
    opened with ``stream=True`` belong to the caller, who must close them.
    """

    def __init__(
        self,
        host: str,
        *,
        api_key: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._host = host
        self._api_key = api_key
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    @property
    def host(self) -> str:
        return self._host

    def url_for(self, path: str) -> str:
        parsed = urlparse(self._host)
        if not parsed.scheme or not parsed.netloc:
            raise FabricError(f"invalid host {self._host!r}: scheme and network location required")
        return f"{self._host.rstrip('/')}/{path.lstrip('/')}"

    async def send(
        self,
        method: str,
        path: str,
        body: bytes | str | None = None,
        *,
        stream: bool = False,
    ) -> httpx.Response:
        """Send one request and return the response if the status is 200.

        With ``stream=False`` the body is fully read and the connection released
        before returning. Raises TransportError or HTTPError.
        """
        url = self.url_for(path)
        headers: dict[str, str] = {}
        if self._api_key:
            headers[API_KEY_HEADER] = self._api_key
        if body is not None:
            headers["Content-Type"] = "application/json"
        try:
            request = self._client.build_request(method, url, content=body, headers=headers)
            response = await self._client.send(request, stream=True)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise TransportError(f"failed to execute request: {method} {url}: {e}") from e
        logger.debug(
            "fabric response",
            extra={"method": method, "url": url, "status_code": response.status_code},
        )

        if response.status_code != httpx.codes.OK:
            raise HTTPError(url, response.status_code, await _read_error_body(response))

        if not stream:
            try:
                await response.aread()
            except httpx.HTTPError as e:
                raise TransportError(f"failed to read response: {method} {url}: {e}") from e
            finally:
                await response.aclose()
        return response

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> Transport:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
