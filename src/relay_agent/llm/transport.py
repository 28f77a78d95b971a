"""
HTTP transport with bounded retry and stalled-stream detection.

Shared by every stream adapter. Retries only on 429 and 5xx with a fixed
backoff, replaying the same serialized body. Connection failures are not
retried.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx
import structlog

from ..exceptions import ProtocolError, RequestError, StreamStalledError

logger = structlog.get_logger()

DEFAULT_REQUEST_TIMEOUT = 1800.0
DEFAULT_MAX_RETRIES = 1
DEFAULT_IDLE_TIMEOUT = 300.0
DEFAULT_BACKOFF = 2.0


def is_retryable_status(status: int) -> bool:
    return status == 429 or 500 <= status < 600


class RetryingTransport:
    """Issues streaming POST requests for the stream adapters."""

    def __init__(
        self,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        backoff: float = DEFAULT_BACKOFF,
        client: httpx.AsyncClient | None = None,
    ):
        self.timeout = timeout
        self.max_retries = max(0, max_retries)
        self.idle_timeout = idle_timeout
        self.backoff = backoff
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @asynccontextmanager
    async def stream(
        self,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
        provider: str = "",
    ) -> AsyncIterator[httpx.Response]:
        """POST ``payload`` and yield the streaming response.

        Raises ProtocolError for a non-2xx status once retries are used up.
        The response is always closed on exit.
        """
        body = json.dumps(payload).encode("utf-8")
        request_headers = {"Content-Type": "application/json", **(headers or {})}

        attempt = 0
        while True:
            request = self.client.build_request(
                "POST", url, content=body, headers=request_headers
            )
            try:
                response = await self.client.send(request, stream=True)
            except httpx.HTTPError as e:
                logger.error("HTTP request failed", url=url, error=str(e))
                raise RequestError(f"request failed: {e}") from e

            if is_retryable_status(response.status_code) and attempt < self.max_retries:
                attempt += 1
                await response.aclose()
                logger.warning(
                    "Retrying request",
                    url=url,
                    status=response.status_code,
                    attempt=attempt,
                    max_retries=self.max_retries,
                )
                await asyncio.sleep(self.backoff)
                continue
            break

        try:
            if not 200 <= response.status_code < 300:
                raw = await response.aread()
                text = raw.decode("utf-8", errors="replace")
                logger.debug("API error body", status=response.status_code, body=text)
                raise ProtocolError(response.status_code, text, provider=provider)
            yield response
        finally:
            await response.aclose()

    async def iter_lines(self, response: httpx.Response) -> AsyncIterator[str]:
        """Iterate response lines, failing if the stream goes idle."""
        lines = response.aiter_lines().__aiter__()
        idle_timeout = self.idle_timeout if self.idle_timeout > 0 else None
        while True:
            try:
                line = await asyncio.wait_for(lines.__anext__(), timeout=idle_timeout)
            except StopAsyncIteration:
                return
            except asyncio.TimeoutError as e:
                logger.error("Stream stalled", idle_timeout=idle_timeout)
                raise StreamStalledError(self.idle_timeout) from e
            except httpx.HTTPError as e:
                raise RequestError(f"stream read error: {e}") from e
            yield line
