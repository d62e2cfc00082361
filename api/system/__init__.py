"""System health endpoint."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from database import get_pool

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(tags=["System"])


async def get_db_pool():
    """Pool for the health check, or None when the database cannot be reached."""
    try:
        return await get_pool()
    except Exception as e:
        logger.error(f"Health check could not get a database pool: {e}")
        return None


@router.get("/health")
async def health(pool=Depends(get_db_pool)):
    """Report service and database status."""
    database_status = 'unavailable'
    if pool is not None:
        try:
            async with pool.acquire() as conn:
                await conn.fetchval('SELECT 1')
            database_status = 'ok'
        except Exception as e:
            logger.error(f"Health check database error: {e}")
    body = {
        'status': 'ok' if database_status == 'ok' else 'degraded',
        'database': database_status,
        'timestamp': datetime.now(timezone.utc).isoformat(),
    }
    return JSONResponse(status_code=200 if database_status == 'ok' else 503, content=body)
