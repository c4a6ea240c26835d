"""Bounded lookups on the security-critical path.

Every read that an authentication decision depends on goes through
``bounded``: it must finish within the configured timeout, and any
failure — timeout, driver error — becomes ``InternalLookupFailure``
(a denial), never a silent skip.
"""

import asyncio
from typing import Awaitable, TypeVar

import structlog
from sqlalchemy.exc import SQLAlchemyError

from tollgate.auth.errors import InternalLookupFailure

logger = structlog.get_logger()

T = TypeVar("T")


async def bounded(awaitable: Awaitable[T], timeout: float, operation: str) -> T:
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        logger.error("auth.lookup_timeout", operation=operation, timeout=timeout)
        raise InternalLookupFailure()
    except (SQLAlchemyError, OSError) as e:
        logger.error(
            "auth.lookup_failed",
            operation=operation,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise InternalLookupFailure() from e
