"""Dependency injection for FastAPI."""

from typing import TYPE_CHECKING, Optional

from fastapi import Request

if TYPE_CHECKING:
    import redis.asyncio as redis

    from crm_backup.backup import BackupManager


async def get_backup_manager(request: Request) -> "BackupManager":
    """Get BackupManager instance from app state."""
    return request.app.state.backup_manager


async def get_redis(request: Request) -> Optional["redis.Redis"]:
    """Get Redis client from app state if available."""
    return getattr(request.app.state, "redis_client", None)
