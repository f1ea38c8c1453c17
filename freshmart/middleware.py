"""
Request logging: one line per request with status, latency and hashed caller.
"""
import hashlib
import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Load balancer probes would drown the access log
QUIET_PATHS = frozenset({"/health"})


def hash_identifier(identifier: str) -> str:
    """First 8 hex chars of sha256, so ids never reach the logs"""
    return hashlib.sha256(identifier.encode()).hexdigest()[:8]


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Tags each request with an id (taken from X-Request-ID when the caller
    sends one), logs its outcome and reports latency in X-Response-Time-Ms.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = request_id

        user_id = request.headers.get("X-User-ID")
        context = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "hashed_user_id": hash_identifier(user_id) if user_id else None,
        }

        try:
            response = await call_next(request)
        except Exception:
            logger.error(f"{request.method} {request.url.path} raised", extra=context, exc_info=True)
            raise

        latency_ms = (time.perf_counter() - started) * 1000
        context.update(status_code=response.status_code, latency_ms=round(latency_ms, 2))
        level = logging.DEBUG if request.url.path in QUIET_PATHS else logging.INFO
        logger.log(level, f"{request.method} {request.url.path} {response.status_code}", extra=context)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time-Ms"] = f"{latency_ms:.2f}"
        return response
