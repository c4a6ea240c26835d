"""CSRF protection for cookie-authenticated writes.

Learn: The session cookie is sent by the browser on requests from any
site. CORS stops a foreign page from reading the response, but a POST
or DELETE still runs. So a mutating request that rides on the cookie
must:

1. come from an allowed origin (``Origin``, else the origin of
   ``Referer``), and
2. carry a non-empty ``X-CSRF-Token`` header. Any value works: a custom
   header forces a CORS preflight, which only allowed origins pass.

Skipped: safe methods, exempt paths, requests with API-key material,
and requests without the session cookie (a Bearer header cannot be
attached by a foreign page).
"""

from typing import Iterable, Optional
from urllib.parse import urlsplit

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from tollgate.auth.errors import AuthError, CsrfHeaderMissing, CsrfOriginMismatch
from tollgate.auth.resolver import extract_api_key

logger = structlog.get_logger()

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})

EXEMPT_PREFIXES = ("/api/v1/auth", "/api/v1/health")

TOKEN_HEADER = "x-csrf-token"


def request_origin(request: Request) -> Optional[str]:
    origin = request.headers.get("origin")
    if origin:
        return origin
    referer = request.headers.get("referer")
    if not referer:
        return None
    parts = urlsplit(referer)
    if not parts.scheme or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}"


class CsrfMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, allowed_origins: Iterable[str], cookie_name: str):
        super().__init__(app)
        self.allowed_origins = frozenset(allowed_origins)
        self.cookie_name = cookie_name

    def _applies(self, request: Request) -> bool:
        if request.method in SAFE_METHODS:
            return False
        if request.url.path.startswith(EXEMPT_PREFIXES):
            return False
        if extract_api_key(request):
            return False
        return bool(request.cookies.get(self.cookie_name))

    async def dispatch(self, request: Request, call_next) -> Response:
        if self._applies(request):
            origin = request_origin(request)
            error: Optional[AuthError] = None
            if origin is None or origin not in self.allowed_origins:
                error = CsrfOriginMismatch()
            elif not request.headers.get(TOKEN_HEADER):
                error = CsrfHeaderMissing()
            if error is not None:
                logger.warning("csrf.blocked", code=error.code, origin=origin)
                return JSONResponse(status_code=error.status_code, content=error.to_body())
        return await call_next(request)
