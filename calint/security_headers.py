"""
Security Headers Middleware for FastAPI

The settings modal and deal panel are rendered inside Pipedrive iframes, so
framing is restricted to Pipedrive and our own frontend instead of denied.
"""

import logging
import os
from typing import Callable, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from .config import FRONTEND_URL

logger = logging.getLogger(__name__)

IS_PRODUCTION = os.getenv("ENVIRONMENT", "development").lower() == "production"
FRAME_ANCESTORS = os.getenv("FRAME_ANCESTORS", f"{FRONTEND_URL} https://*.pipedrive.com")


def get_csp_policy() -> str:
    directives = [
        "default-src 'none'",
        f"frame-ancestors {FRAME_ANCESTORS}",
        "base-uri 'none'",
        "form-action 'self'",
    ]
    return "; ".join(directives)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds security headers to every response except excluded paths"""

    def __init__(self, app, exclude_paths: Optional[list[str]] = None):
        super().__init__(app)
        self.exclude_paths = exclude_paths or []

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        path = request.url.path
        if any(path.startswith(excluded) for excluded in self.exclude_paths):
            return response

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = get_csp_policy()
        if IS_PRODUCTION:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        if "Cache-Control" not in response.headers:
            # Token-backed data; never cache
            response.headers["Cache-Control"] = "no-store"
        return response
