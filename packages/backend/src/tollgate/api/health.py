"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running and its
dependencies (database, Redis) are reachable. Uses the connections the
lifespan already opened instead of dialing new ones.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text

from tollgate import __version__
from tollgate.auth.dependencies import get_services
from tollgate.services.container import Services

router = APIRouter()


@router.get("/health")
async def health_check(services: Services = Depends(get_services)):
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    # Check the database
    try:
        async with services.session_factory() as db:
            await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"

    # Check Redis
    if services.redis is None:
        checks["redis"] = "disabled"
    else:
        try:
            await services.redis.ping()
            checks["redis"] = "ok"
        except Exception as e:
            checks["redis"] = f"error: {e}"

    status = "healthy" if all(
        v in ("ok", "disabled") for k, v in checks.items() if k != "version"
    ) else "degraded"

    return {"status": status, **checks}
