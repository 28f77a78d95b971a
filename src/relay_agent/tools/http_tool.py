"""
HTTP request tool.
"""

import json
import time
from functools import partial
from typing import Any

import httpx
import structlog

from .base import Tool, ToolConcurrency, ToolParameter, ToolResult

logger = structlog.get_logger()

MAX_RESPONSE_SIZE = 10 << 20
MAX_BODY_PREVIEW = 4096
DEFAULT_TIMEOUT = 30
MAX_TIMEOUT = 300


def _error_json(message: str) -> str:
    return json.dumps({"error": message, "status": 0})


async def _read_capped(response: httpx.Response) -> tuple[bytes, bool]:
    """Read at most MAX_RESPONSE_SIZE bytes; True when the body was cut off."""
    chunks = []
    size = 0
    async for chunk in response.aiter_bytes():
        remaining = MAX_RESPONSE_SIZE - size
        if len(chunk) > remaining:
            chunks.append(chunk[:remaining])
            return b"".join(chunks), True
        chunks.append(chunk)
        size += len(chunk)
    return b"".join(chunks), False


async def http_request_handler(
    method: str,
    url: str,
    headers: dict[str, Any] | None = None,
    body: str = "",
    query: dict[str, Any] | None = None,
    timeout: int = DEFAULT_TIMEOUT,
    follow_redirects: bool = True,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ToolResult:
    """Make an HTTP request and describe the response as JSON."""
    if not url:
        return ToolResult(success=True, output=_error_json("url is required"))
    if not url.startswith(("http://", "https://")):
        url = "http://" + url

    timeout = int(timeout) if timeout else DEFAULT_TIMEOUT
    timeout = max(1, min(timeout, MAX_TIMEOUT))

    request_headers = {"User-Agent": "Relay-Agent/1.0"}
    for key, value in (headers or {}).items():
        request_headers[key] = str(value)
    params = {key: str(value) for key, value in (query or {}).items()}

    start = time.monotonic()
    try:
        async with httpx.AsyncClient(
            timeout=timeout, follow_redirects=follow_redirects, transport=transport
        ) as client:
            async with client.stream(
                method.upper() or "GET",
                url,
                headers=request_headers,
                params=params or None,
                content=body.encode() if body else None,
            ) as response:
                raw, capped = await _read_capped(response)
    except httpx.HTTPError as e:
        logger.debug("HTTP tool request failed", url=url, error=str(e))
        return ToolResult(success=True, output=_error_json(str(e)))
    elapsed_ms = int((time.monotonic() - start) * 1000)

    text = raw.decode(response.encoding or "utf-8", errors="replace")
    truncated = capped or len(text) > MAX_BODY_PREVIEW
    if len(text) > MAX_BODY_PREVIEW:
        text = text[:MAX_BODY_PREVIEW] + "...(truncated)"

    result = {
        "status": response.status_code,
        "status_text": response.reason_phrase,
        "headers": dict(response.headers),
        "body": text,
        "size": len(raw),
        "truncated": truncated,
        "time_ms": elapsed_ms,
    }
    return ToolResult(success=True, output=json.dumps(result), data=result)


def create_http_tools(transport: httpx.AsyncBaseTransport | None = None) -> list[Tool]:
    """Create the HTTP request tool."""
    http = Tool(
        name="http",
        description=(
            "Make HTTP requests to any URL. Prefer this over curl/wget in bash. Supports "
            "GET, POST, PUT, DELETE, PATCH, HEAD and OPTIONS. Returns JSON with status, "
            "headers, body, size and timing."
        ),
        parameters=[
            ToolParameter(name="method", param_type="string", description="HTTP method"),
            ToolParameter(name="url", param_type="string", description="Complete URL including protocol"),
            ToolParameter(name="headers", param_type="object", description="Request headers", required=False),
            ToolParameter(name="body", param_type="string", description="Request body", required=False),
            ToolParameter(name="query", param_type="object", description="Query parameters", required=False),
            ToolParameter(
                name="timeout",
                param_type="integer",
                description=f"Timeout in seconds (default {DEFAULT_TIMEOUT}, max {MAX_TIMEOUT})",
                required=False,
            ),
            ToolParameter(
                name="follow_redirects",
                param_type="boolean",
                description="Whether to follow redirects (default true)",
                required=False,
            ),
        ],
        handler=partial(http_request_handler, transport=transport),
        concurrency=ToolConcurrency.READ_ONLY,
    )
    return [http]
