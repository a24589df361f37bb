# ============================================================================
# File: api/middleware.py
# ============================================================================

import logging
import re
import time
import uuid
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from core.exceptions import CheckpointError, CircuitOpenError, FeedError, LoadError, SyncException

logger = logging.getLogger(__name__)

# Caller-supplied ids are reused only when they look like ids
REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")


def error_status(error: SyncException) -> int:
    """HTTP status for a sync error that escaped a route."""
    if isinstance(error, (CircuitOpenError, LoadError, CheckpointError)):
        return 503
    if isinstance(error, FeedError):
        return 502
    return 500


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Injects:
    - request_id (an incoming X-Request-ID is kept when well formed)
    - api_latency_ms

    A SyncException raised by a route becomes a JSON error body with the
    request id; the error context goes to the log only.
    """

    async def dispatch(self, request: Request, call_next):
        incoming = request.headers.get("X-Request-ID", "")
        request_id = incoming if REQUEST_ID_PATTERN.match(incoming) else f"req_{uuid.uuid4().hex[:12]}"
        request.state.request_id = request_id
        start_time = time.perf_counter()

        try:
            response: Response = await call_next(request)
        except SyncException as e:
            logger.error(
                f"[{request_id}] {request.method} {request.url.path} failed: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            response = JSONResponse(
                status_code=error_status(e),
                content={"request_id": request_id, "error": type(e).__name__, "message": e.message},
            )

        latency_ms = int((time.perf_counter() - start_time) * 1000)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-API-Latency-ms"] = str(latency_ms)
        logger.debug(f"[{request_id}] {request.method} {request.url.path} -> {response.status_code} in {latency_ms}ms")

        return response
