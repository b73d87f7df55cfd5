"""Health check endpoints."""

import asyncio
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from redis.exceptions import RedisError

from crm_backup._utils import logger
from crm_backup.backup import BackupManager

from ..dependencies import get_backup_manager, get_redis
from ..models import HealthStatus

router = APIRouter(prefix="/health", tags=["health"])


async def check_redis(redis_client) -> Optional[bool]:
    """Check Redis connectivity; None when job tracking is in-process."""
    if redis_client is None:
        return None
    try:
        return bool(await redis_client.ping())
    except (RedisError, OSError) as e:
        logger.warning(f"Redis health check failed: {e}")
        return False


@router.get("", response_model=HealthStatus)
async def health_check(
    backup_manager: BackupManager = Depends(get_backup_manager),
    redis_client=Depends(get_redis),
) -> HealthStatus:
    """Backup directory, live dataset and Redis health."""
    backends, redis_health = await asyncio.gather(
        backup_manager.check_health(),
        check_redis(redis_client),
    )

    checks = [backends["backup_dir"], backends["dataset"]]
    if redis_health is not None:
        checks.append(redis_health)

    if all(checks):
        status = "healthy"
    elif not any(checks):
        status = "unhealthy"
    else:
        status = "degraded"

    return HealthStatus(
        status=status,
        backup_dir=backends["backup_dir"],
        dataset=backends["dataset"],
        redis=redis_health,
    )


@router.get("/ready")
async def readiness_check(
    backup_manager: BackupManager = Depends(get_backup_manager),
    redis_client=Depends(get_redis),
) -> Dict[str, str]:
    """Kubernetes readiness check."""
    health = await health_check(backup_manager, redis_client)
    if health.status == "unhealthy":
        raise HTTPException(status_code=503, detail="Service not ready")
    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> Dict[str, str]:
    """Kubernetes liveness check."""
    return {"status": "alive"}
