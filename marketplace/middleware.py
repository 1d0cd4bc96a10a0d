"""Application middleware: request logging, body size limit, security headers."""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

logger = logging.getLogger("marketplace.access")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status and elapsed milliseconds for every request."""

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[no-untyped-def]
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            elapsed_ms = (time.perf_counter() - start) * 1000
            logger.exception("%s %s -> 500 (%.1fms)", request.method, request.url.path, elapsed_ms)
            raise
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "%s %s -> %d (%.1fms)",
            request.method, request.url.path, response.status_code, elapsed_ms,
        )
        return response


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject request bodies larger than max_bytes based on Content-Length.

    Paths under ``upload_prefix`` get ``upload_max_bytes`` instead, since they
    carry file content rather than JSON.
    """

    def __init__(  # type: ignore[no-untyped-def]
        self,
        app,
        max_bytes: int = 1_048_576,
        upload_prefix: str = "/uploads",
        upload_max_bytes: int | None = None,
    ) -> None:
        super().__init__(app)
        self.max_bytes = max_bytes
        self.upload_prefix = upload_prefix
        self.upload_max_bytes = upload_max_bytes or max_bytes

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[no-untyped-def]
        if request.method in ("POST", "PATCH", "PUT"):
            limit = self.max_bytes
            if request.url.path.startswith(self.upload_prefix):
                # Multipart framing adds a little on top of the file itself
                limit = self.upload_max_bytes + 64 * 1024
            content_length = request.headers.get("content-length")
            if content_length and content_length.isdigit() and int(content_length) > limit:
                return JSONResponse(
                    status_code=413,
                    content={"detail": f"Request body too large (max {limit} bytes)"},
                )
        return await call_next(request)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[no-untyped-def]
        response = await call_next(request)
        response.headers["Strict-Transport-Security"] = "max-age=63072000; includeSubDomains"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response
