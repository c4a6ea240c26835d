"""API route aggregation.

All routers registered here get mounted in main.py under /api/v1.

Learn: Unlike a router-level auth dependency, every route here declares
its own ``Access(...)`` requirement, because the routes differ in which
identities they accept (session only, API key or session, admin secret).
Health and login are open.
"""

from fastapi import APIRouter

from tollgate.api.admin import router as admin_router
from tollgate.api.api_keys import router as api_keys_router
from tollgate.api.auth import router as auth_router
from tollgate.api.health import router as health_router
from tollgate.api.traces import router as traces_router
from tollgate.realtime.websocket import ticket_router as ws_ticket_router

api_router = APIRouter(prefix="/api/v1")

# Open routes
api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])

# Per-route Access(...) requirements
api_router.include_router(api_keys_router, tags=["api-keys"])
api_router.include_router(traces_router, tags=["traces"])
api_router.include_router(ws_ticket_router, tags=["websocket"])

# Shared admin secret
api_router.include_router(admin_router, tags=["admin"])
