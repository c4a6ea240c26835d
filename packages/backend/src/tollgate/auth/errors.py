"""Authentication and authorization errors.

Learn: Every denial the core can produce is an ``AuthError`` subclass with
a fixed HTTP status and a stable machine-readable ``code``. SDK clients
branch on the code (``ACCOUNT_LOCKED``, ``IP_NOT_ALLOWED``, ...), never on
the human message. A single FastAPI exception handler (main.py) renders
them, so guards and services just raise.
"""

from typing import Any, Iterable, Optional


class AuthError(Exception):
    """Base class — a terminal, user-visible denial."""

    status_code: int = 401
    code: str = "UNAUTHORIZED"
    default_message: str = "Authentication required"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        headers: Optional[dict[str, str]] = None,
        **extra: Any,
    ):
        self.message = message or self.default_message
        self.headers = headers or {}
        self.extra = extra
        super().__init__(self.message)

    def to_body(self) -> dict[str, Any]:
        body = {"error": self.reason, "code": self.code, "message": self.message}
        body.update(self.extra)
        return body

    @property
    def reason(self) -> str:
        return {
            401: "Unauthorized",
            403: "Forbidden",
            404: "Not Found",
            429: "Too Many Requests",
            503: "Service Unavailable",
        }.get(self.status_code, "Error")


def _join(values: Iterable[str]) -> str:
    return " or ".join(sorted(values))


# ─── 401: who are you? ───────────────────────────────────


class MissingCredential(AuthError):
    code = "MISSING_CREDENTIAL"
    default_message = (
        "Authentication required. Use an API key (x-api-key header or "
        "Authorization: Bearer) or a session cookie."
    )


class MalformedCredential(AuthError):
    code = "MALFORMED_CREDENTIAL"
    default_message = "Invalid API key format. Expected tg_live_* or tg_test_*"


class UnknownCredential(AuthError):
    code = "UNKNOWN_CREDENTIAL"
    default_message = "Invalid API key"


class ExpiredCredential(AuthError):
    code = "EXPIRED_CREDENTIAL"
    default_message = "API key expired"


class InvalidLogin(AuthError):
    code = "INVALID_CREDENTIALS"
    default_message = "Invalid email or password"


class InvalidAdminKey(AuthError):
    code = "INVALID_ADMIN_KEY"
    default_message = "Invalid admin key"


# ─── 403: you may not ────────────────────────────────────


class IPNotAllowed(AuthError):
    status_code = 403
    code = "IP_NOT_ALLOWED"
    default_message = "IP address not allowed for this API key"


class InsufficientRole(AuthError):
    status_code = 403
    code = "INSUFFICIENT_ROLE"

    def __init__(self, roles: Iterable[str], **kwargs: Any):
        roles = sorted(roles)
        super().__init__(f"Required role: {_join(roles)}", required=roles, **kwargs)


class InsufficientPermission(AuthError):
    status_code = 403
    code = "INSUFFICIENT_PERMISSION"

    def __init__(self, permissions: Iterable[str], **kwargs: Any):
        permissions = sorted(permissions)
        super().__init__(
            f"Required permission: {_join(permissions)}",
            required=permissions,
            **kwargs,
        )


class IdentityNotAllowed(AuthError):
    status_code = 403
    code = "IDENTITY_TYPE_NOT_ALLOWED"
    default_message = "This endpoint does not accept this kind of identity"


class MissingScope(AuthError):
    status_code = 403
    code = "MISSING_SCOPE"
    default_message = "Organization context required. Select an organization first."


class ScopeMismatch(AuthError):
    status_code = 403
    code = "SCOPE_MISMATCH"
    default_message = "API key is not authorized for this resource"


class TwoFactorRequired(AuthError):
    status_code = 403
    code = "2FA_REQUIRED"
    default_message = (
        "Two-factor authentication is required for users with owner or admin "
        "roles. Please enable 2FA in your account settings."
    )


class CsrfOriginMismatch(AuthError):
    status_code = 403
    code = "CSRF_ORIGIN_MISMATCH"
    default_message = (
        "Missing or untrusted Origin header. If you are building an "
        "integration, use API key authentication instead of session cookies."
    )


class CsrfHeaderMissing(AuthError):
    status_code = 403
    code = "CSRF_HEADER_MISSING"
    default_message = (
        "Missing X-CSRF-Token header. Include `X-CSRF-Token: 1` with "
        "session-authenticated requests."
    )


# ─── 404: information hiding across tenants ──────────────


class ResourceNotFound(AuthError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Resource not found or access denied"


class ProjectNotFound(ResourceNotFound):
    code = "PROJECT_NOT_FOUND"
    default_message = "Project not found or access denied"


# ─── 429: slow down ──────────────────────────────────────


class RateLimitExceeded(AuthError):
    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, limit: int, window_seconds: int, retry_after: int):
        super().__init__(
            f"API key rate limit exceeded. Limit: {limit} requests per "
            f"{window_seconds} seconds.",
            headers={"Retry-After": str(retry_after)},
            retry_after=retry_after,
        )


class AccountLocked(AuthError):
    status_code = 429
    code = "ACCOUNT_LOCKED"

    def __init__(self, retry_after: int):
        minutes = max(1, -(-retry_after // 60))
        super().__init__(
            f"Too many failed attempts. Account temporarily locked. "
            f"Try again in {minutes} minutes.",
            headers={"Retry-After": str(retry_after)},
            retry_after=retry_after,
        )


# ─── 503: fail closed ────────────────────────────────────


class InternalLookupFailure(AuthError):
    """The security-critical lookup itself failed (timeout, DB error).

    Denies like UnknownCredential does, but is logged at error level so
    operators can tell an outage from a bad key.
    """

    status_code = 503
    code = "AUTH_LOOKUP_FAILED"
    default_message = "Authentication backend unavailable. Try again shortly."


class RateLimitUnavailable(AuthError):
    status_code = 503
    code = "RATE_LIMIT_UNAVAILABLE"
    default_message = "Rate limiter unavailable. Try again shortly."


class CacheInvalidationFailed(AuthError):
    status_code = 503
    code = "CACHE_INVALIDATION_FAILED"
    default_message = (
        "The change was saved but could not be propagated to the credential "
        "cache. Retry the request."
    )


class AdminNotConfigured(AuthError):
    status_code = 503
    code = "ADMIN_NOT_CONFIGURED"
    default_message = "Admin API not configured. Set TOLLGATE_ADMIN_KEY."


class TicketsUnavailable(AuthError):
    status_code = 503
    code = "WS_TICKETS_UNAVAILABLE"
    default_message = "WebSocket tickets require Redis."
