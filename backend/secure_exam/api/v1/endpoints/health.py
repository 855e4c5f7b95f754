from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime, timezone
import logging
import time

import psutil

from ....core.database import get_async_db

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("")
async def get_health(request: Request, db: AsyncSession = Depends(get_async_db)):
    """Public liveness check: database round trip, uptime and host load."""
    health_status = {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.time() - request.app.state.started_at, 3),
        "live_connections": request.app.state.live_registry.connection_count,
    }

    start_time = time.time()
    try:
        await db.execute(text("SELECT 1"))
        health_status["database"] = "connected"
        health_status["database_response_ms"] = round((time.time() - start_time) * 1000, 2)
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        health_status["database"] = "disconnected"
        health_status["status"] = "degraded"

    health_status["system"] = {
        "cpu_percent": psutil.cpu_percent(),
        "memory_percent": psutil.virtual_memory().percent,
        "disk_percent": psutil.disk_usage("/").percent,
    }
    return health_status
