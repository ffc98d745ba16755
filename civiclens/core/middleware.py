"""
Request correlation for the admin API.

Every request gets a correlation id: the caller's ``X-Correlation-ID`` when
it is a safe token, a fresh UUID otherwise. The id is bound to the logging
context while the request runs and echoed back in the response. A manual
sync started by the request logs under this id until the orchestrator
switches to the SyncRun id.
"""
import re
import time
import uuid
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from civiclens.core.logging import clear_correlation_id, get_logger, set_correlation_id

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"

# Header values end up in every log line of the request
_SAFE_ID = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")


def accepted_correlation_id(value: Optional[str]) -> Optional[str]:
    """
    Return ``value`` if it may be logged verbatim, else None.

    Examples:
        >>> accepted_correlation_id("req-42")
        'req-42'
        >>> accepted_correlation_id("bad id\\ninjected") is None
        True
    """
    if value and _SAFE_ID.match(value):
        return value
    return None


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Bind a correlation id to each admin request.

    Access in endpoints:
        correlation_id = request.state.correlation_id
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        correlation_id = accepted_correlation_id(request.headers.get(CORRELATION_HEADER)) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        token = set_correlation_id(correlation_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
            response.headers[CORRELATION_HEADER] = correlation_id

            elapsed_ms = int((time.perf_counter() - started) * 1000)
            log = logger.info if request.method == "POST" else logger.debug
            log(
                f"{request.method} {request.url.path} -> {response.status_code} in {elapsed_ms}ms",
                extra={"method": request.method, "path": request.url.path, "status": response.status_code},
            )
            return response
        finally:
            clear_correlation_id(token)
