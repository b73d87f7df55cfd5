"""Backup and restore orchestration for the live CRM dataset."""

from pathlib import Path
from typing import Dict, List, Optional

import redis.asyncio as redis

from .._storage.adapter import StorageAdapter
from .._utils import logger
from ..base import BaseDatasetStorage
from ..config import BackupConfig
from .catalog import BackupCatalog
from .errors import BackupIOError
from .jobs import RestoreJobTracker
from .merger import RestoreMerger
from .models import BackupSet, BackupType, RestoreJob, RetentionPolicy, SweepReport
from .retention import RetentionSweeper
from .scheduler import BackupScheduler
from .settings_store import SettingsStore
from .snapshot import SnapshotWriter


class BackupManager:
    """Wire the catalog, writer, merger, job tracker, sweeper and scheduler together."""

    def __init__(
        self,
        storage: BaseDatasetStorage,
        config: Optional[BackupConfig] = None,
        redis_client: Optional[redis.Redis] = None,
    ):
        """Initialize backup manager.

        Args:
            storage: Live dataset collaborator (sync or async backend)
            config: Backup configuration; defaults to ``BackupConfig()``
            redis_client: Optional client for job records and the restore lock
        """
        self.config = config or BackupConfig()
        self.backup_dir = Path(self.config.backup_dir)
        self.storage = storage if isinstance(storage, StorageAdapter) else StorageAdapter(storage)

        self.catalog = BackupCatalog(self.config.backup_dir)
        self.settings = SettingsStore(self.config.backup_dir)
        self.settings.load()

        self.writer = SnapshotWriter(self.storage, self.catalog, self.config)
        self.merger = RestoreMerger(self.storage, self.config)
        self.jobs = RestoreJobTracker(
            self.catalog, self.writer, self.merger, redis_client, self.config.job_ttl_seconds
        )
        self.sweeper = RetentionSweeper(self.catalog, self.config.timezone)
        self.scheduler = BackupScheduler(self.run_daily_backup, self.settings, self.config.timezone)

    async def create_backup(self, backup_type: BackupType = BackupType.MANUAL) -> BackupSet:
        """Create a snapshot; scheduled types are swept afterwards."""
        backup = await self.writer.create_snapshot(backup_type)
        if backup_type != BackupType.MANUAL:
            await self.sweeper.sweep(backup, self.settings.get())
        return backup

    async def run_daily_backup(self) -> SweepReport:
        """The scheduled job: daily snapshot, bookkeeping, then retention."""
        logger.info("Starting daily backup job")
        backup = await self.writer.create_snapshot(BackupType.DAILY)
        try:
            await self.settings.record_last_backup(BackupType.DAILY, backup.created_at)
        except BackupIOError as e:
            # The snapshot is published; retention still applies to it.
            logger.error(f"Failed to record last backup {backup.id}: {e}")
        report = await self.sweeper.sweep(backup, self.settings.get())
        logger.info(f"Daily backup job completed: {backup.id}")
        return report

    async def list_backups(self) -> Dict[str, List[BackupSet]]:
        return await self.catalog.list_grouped()

    async def history(self, limit: int = 50) -> List[Dict]:
        return await self.catalog.history(limit)

    async def get_backup(self, backup_type: BackupType, backup_id: str) -> BackupSet:
        return await self.catalog.find(backup_type, backup_id)

    async def delete_backup(self, backup_type: BackupType, backup_id: str) -> bool:
        """Delete by ``{type, id}``. Returns False when no such backup exists."""
        if not await self.catalog.exists(backup_id):
            return False
        backup = await self.catalog.get_metadata(backup_id)
        if backup.type != backup_type:
            return False
        return await self.catalog.delete_backup(backup_id)

    async def restore_backup(self, backup_type: BackupType, backup_id: str) -> str:
        """Start a restore job and return its id without waiting for it."""
        return await self.jobs.start_restore(backup_id, backup_type)

    async def get_restore_status(self, job_id: str) -> RestoreJob:
        return await self.jobs.get_status(job_id)

    async def list_jobs(self, limit: int = 100) -> List[RestoreJob]:
        return await self.jobs.list_jobs(limit=limit)

    def get_settings(self) -> RetentionPolicy:
        return self.settings.get()

    async def update_settings(self, changes: Dict) -> RetentionPolicy:
        return await self.settings.update(changes)

    async def sweep(self) -> SweepReport:
        """Prune expired entries without taking a snapshot."""
        return await self.sweeper.sweep(None, self.settings.get())

    async def check_health(self) -> Dict[str, bool]:
        return {
            "backup_dir": self._backup_dir_writable(),
            "dataset": await self.storage.check_health(),
        }

    def _backup_dir_writable(self) -> bool:
        marker = self.catalog.staging_dir / ".health"
        try:
            marker.write_bytes(b"ok")
            marker.unlink()
            return True
        except OSError as e:
            logger.warning(f"Backup directory not writable: {e}")
            return False

    async def start(self, scheduler_enabled: bool = True) -> None:
        if scheduler_enabled:
            self.scheduler.start()

    async def shutdown(self) -> None:
        await self.scheduler.stop()
        await self.jobs.drain()
