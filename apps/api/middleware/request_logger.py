"""Request logging middleware"""
import time
import logging
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status, duration and the authenticated user of every request"""

    def __init__(self, app, skip_paths=None):
        super().__init__(app)
        # Skip logging for health check, docs, and static files
        self.skip_paths = skip_paths or ["/health", "/docs", "/openapi.json", "/redoc", "/favicon.ico", "/uploads"]

    async def dispatch(self, request: Request, call_next):
        if any(request.url.path.startswith(path) for path in self.skip_paths):
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - started) * 1000

        # Set by the auth dependency
        user_id = getattr(request.state, "user_id", None) or "anonymous"

        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"({duration_ms:.1f}ms) user={user_id} ip={self._client_ip(request)}"
        )
        return response

    def _client_ip(self, request: Request) -> str:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
        return request.client.host if request.client else "unknown"
