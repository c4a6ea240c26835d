"""Tollgate — credential and access-control core.

Decides, on every inbound HTTP or WebSocket call, who is calling
(API key or session), which tenant scope they act in, and whether
the call is allowed: hashed API keys behind a read-through cache,
declarative permission guards, per-key rate limits and brute-force
lockout for password logins.
"""

__version__ = "0.1.0"
