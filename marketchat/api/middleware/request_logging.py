"""Request logging middleware: method, path, status and latency per request."""

import logging
import time
from collections.abc import Awaitable, Callable

from fastapi import Request, Response

logger = logging.getLogger(__name__)

SLOW_REQUEST_THRESHOLD_MS = 1000

_QUIET_PATHS = frozenset({"/api/v1/health", "/api/v1/health/db", "/"})


async def request_logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    start_time = time.perf_counter()
    method = request.method
    path = request.url.path
    response: Response | None = None

    try:
        response = await call_next(request)
        return response
    finally:
        latency_ms = (time.perf_counter() - start_time) * 1000
        status_code = response.status_code if response is not None else 500
        log_msg = "%s %s - %d - %.2fms"
        args = (method, path, status_code, latency_ms)

        if status_code >= 500:
            logger.error(log_msg, *args)
        elif path in _QUIET_PATHS:
            logger.debug(log_msg, *args)
        elif latency_ms > SLOW_REQUEST_THRESHOLD_MS:
            logger.warning("Slow request: " + log_msg, *args)
        elif status_code >= 400:
            logger.warning(log_msg, *args)
        else:
            logger.info(log_msg, *args)
