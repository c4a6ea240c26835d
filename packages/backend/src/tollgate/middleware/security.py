"""Security headers middleware.

Learn: Adds standard security headers to every response. Responses from
the auth and API-key routes can carry secrets (a freshly issued key, a
session token), so they are additionally marked ``no-store`` to keep
them out of browser and proxy caches.
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

STATIC_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}

NO_STORE_PREFIXES = ("/api/v1/auth", "/api/v1/api-keys", "/api/v1/ws/ticket")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        response: Response = await call_next(request)
        response.headers.update(STATIC_HEADERS)
        if request.url.path.startswith(NO_STORE_PREFIXES):
            response.headers["Cache-Control"] = "no-store"
        # HSTS only makes sense over HTTPS
        if request.url.scheme == "https":
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response
