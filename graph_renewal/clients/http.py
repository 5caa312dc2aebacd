"""Shared httpx client construction with request/response logging."""

from typing import Optional

import httpx

from graph_renewal.logging_config import get_logger

logger = get_logger(__name__)


def _log_request(request: httpx.Request) -> None:
    logger.debug("http_request", method=request.method, url=str(request.url.copy_with(query=None)))


def _log_response(response: httpx.Response) -> None:
    request = response.request
    fields = {
        "method": request.method,
        "url": str(request.url.copy_with(query=None)),
        "status_code": response.status_code,
    }
    if response.is_error:
        logger.warning("http_response_error", **fields)
    else:
        logger.debug("http_response", **fields)


def build_http_client(
    timeout_seconds: float,
    base_url: str = "",
    transport: Optional[httpx.BaseTransport] = None,
) -> httpx.Client:
    """Create an httpx client with a hard timeout and logging hooks.

    Args:
        timeout_seconds: Bound applied to connect, read, write and pool waits
        base_url: Optional base URL for relative request paths
        transport: Optional transport (tests pass an ``httpx.MockTransport``)

    Returns:
        Configured ``httpx.Client``
    """
    return httpx.Client(
        base_url=base_url,
        timeout=httpx.Timeout(timeout_seconds),
        transport=transport,
        event_hooks={"request": [_log_request], "response": [_log_response]},
    )
