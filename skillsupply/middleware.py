"""Rate limiter, request IDs, security headers, API key checks and request logging."""
import logging
import os
import time
import uuid
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from skillsupply.constants import ERR_UNAUTHORIZED

logger = logging.getLogger(__name__)

# Rate limiter setup
limiter = Limiter(
    key_func=get_remote_address,
    enabled=os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true",
)


def register_middleware(app: FastAPI) -> None:
    """Register all HTTP middleware on the FastAPI app.

    Args:
        app: The FastAPI application instance.
    """

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next: Any) -> Any:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        return response

    @app.middleware("http")
    async def api_key_auth(request: Request, call_next: Any) -> Any:
        """Optional API key auth for write endpoints on /api/v1/ routes."""
        api_write_key = os.getenv("API_WRITE_KEY", "")
        if api_write_key and request.method in ("POST", "PUT", "DELETE"):
            if request.url.path.startswith("/api/v1/"):
                provided_key = request.headers.get("X-API-Key", "")
                if provided_key != api_write_key:
                    request_id = getattr(request.state, "request_id", "")
                    return JSONResponse(
                        status_code=403,
                        content={
                            "detail": {
                                "detail": "Invalid or missing API key",
                                "code": ERR_UNAUTHORIZED,
                                "request_id": request_id,
                            }
                        },
                    )
        return await call_next(request)

    @app.middleware("http")
    async def request_logging(request: Request, call_next: Any) -> Any:
        """Log method, path, status, and duration for every request."""
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        request_id = getattr(request.state, "request_id", "")
        logger.info(
            "[%s] %s %s %s %.1fms",
            request_id, request.method, request.url.path, response.status_code, duration_ms,
        )
        return response

    # Registered last so it runs first and every other middleware sees the ID.
    @app.middleware("http")
    async def add_request_id(request: Request, call_next: Any) -> Any:
        """Attach a unique request ID to every request and response."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response
