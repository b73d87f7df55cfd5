"""FastAPI application for crm-backup."""

import dataclasses
import logging
import os
import sys
from contextlib import asynccontextmanager

import redis.asyncio as redis
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError

from crm_backup._storage import StorageFactory
from crm_backup.backup import BackupManager
from crm_backup.config import CRMBackupConfig

from .config import settings
from .routers import backup, health, jobs

# App-managed pattern: attach our own handler and don't propagate,
# so INFO logs are visible regardless of uvicorn's logging config
backup_logger = logging.getLogger("crm-backup")
backup_logger.setLevel(logging.INFO)
backup_logger.propagate = False
backup_logger.handlers.clear()

console_handler = logging.StreamHandler(sys.stdout)
console_handler.setLevel(logging.INFO)
console_handler.setFormatter(logging.Formatter(
    '%(asctime)s - [%(name)s] - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
))
backup_logger.addHandler(console_handler)

# Allow disabling app-managed logging via env var for production
if os.getenv("DISABLE_APP_LOGGING", "false").lower() == "true":
    backup_logger.handlers.clear()
    backup_logger.propagate = True  # Fall back to server-managed pattern

logger = logging.getLogger(__name__)


def build_dataset_storage(config: CRMBackupConfig):
    """Create the live dataset backend from config."""
    storage_config = config.storage
    global_config = {
        "id_field": config.backup.id_field,
        "timestamp_field": config.backup.timestamp_field,
        "redis_url": storage_config.redis_url,
        "redis_password": storage_config.redis_password,
    }
    return StorageFactory.create_dataset_storage(
        backend=storage_config.dataset_backend,
        namespace=storage_config.namespace,
        global_config=global_config,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage backup subsystem lifecycle."""
    logger.info("Initializing backup manager...")

    # Start from the environment, then apply API settings on top
    config = CRMBackupConfig.from_env()
    storage_config = dataclasses.replace(
        config.storage,
        dataset_backend=settings.dataset_backend,
        namespace=settings.dataset_namespace,
    )
    backup_config = dataclasses.replace(config.backup, backup_dir=settings.backup_dir)
    config = dataclasses.replace(config, storage=storage_config, backup=backup_config)

    app.state.dataset_storage = build_dataset_storage(config)

    # Redis client for job tracking and the restore lock, if configured
    app.state.redis_client = None
    if settings.redis_url:
        try:
            app.state.redis_client = redis.from_url(
                settings.redis_url,
                password=settings.redis_password,
                encoding="utf-8",
                decode_responses=True,
            )
            await app.state.redis_client.ping()
            logger.info("Redis client initialized for job tracking")
        except (RedisError, OSError) as e:
            logger.warning(f"Failed to initialize Redis client, tracking jobs in-process: {e}")
            app.state.redis_client = None
    else:
        logger.info("Redis not configured - tracking jobs in-process")

    app.state.backup_manager = BackupManager(
        app.state.dataset_storage,
        backup_config,
        app.state.redis_client,
    )
    await app.state.backup_manager.start(scheduler_enabled=settings.scheduler_enabled)
    logger.info(f"Backup manager ready, backups in {backup_config.backup_dir}")

    yield

    # Cleanup
    logger.info("Shutting down backup manager...")
    await app.state.backup_manager.shutdown()
    if hasattr(app.state.dataset_storage, "close"):
        await app.state.dataset_storage.close()
    if app.state.redis_client:
        await app.state.redis_client.aclose()


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
        docs_url=f"{settings.api_prefix}/docs",
        openapi_url=f"{settings.api_prefix}/openapi.json",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(jobs.router, prefix=settings.api_prefix)
    app.include_router(backup.router, prefix=settings.api_prefix)
    app.include_router(health.router, prefix=settings.api_prefix)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": settings.api_title,
            "version": settings.api_version,
            "docs": f"{settings.api_prefix}/docs"
        }

    return app


# Create default app instance
app = create_app()
