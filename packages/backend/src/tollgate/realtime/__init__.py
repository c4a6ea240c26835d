"""Real-time infrastructure — Redis connections, pub/sub and WebSocket auth.

Learn: Redis carries everything the API instances must agree on (cache
entries, rate-limit and login counters, WebSocket tickets) plus the
fire-and-forget audit channel. WebSocket handshakes reuse the HTTP
resolver so both transports make identical decisions.
"""
