"""Audit event type constants.

Learn: Centralizing event types as constants prevents typos and makes it
easy to discover every action the access-control core reports. Consumers
of the audit channel filter on these strings.
"""

# ─── Credentials ─────────────────────────────────────────

API_KEY_CREATED = "api_key.created"
API_KEY_UPDATED = "api_key.updated"
API_KEY_DELETED = "api_key.deleted"
API_KEY_USED = "api_key.used"  # sampled

# ─── Password login ──────────────────────────────────────

USER_LOGIN = "user.login"
USER_LOGIN_FAILED = "user.login_failed"
USER_ACCOUNT_LOCKED = "user.account_locked"
USER_LOCKOUT_CLEARED = "user.lockout_cleared"

# Resource types attached to events
RESOURCE_API_KEY = "api_key"
RESOURCE_USER = "user"
