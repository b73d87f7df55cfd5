"""Snapshot, catalog, merge-restore and retention for the live dataset."""

from .catalog import BackupCatalog
from .errors import (
    BackupError,
    BackupIOError,
    BackupNotFoundError,
    ConflictError,
    JobNotFoundError,
    PartialMergeError,
    SerializationError,
)
from .jobs import RestoreJobTracker
from .manager import BackupManager
from .merger import RestoreMerger
from .models import BackupSet, BackupType, MergeConflict, MergeCounts, RestoreJob, RestoreJobStatus, RetentionPolicy
from .retention import RetentionSweeper
from .scheduler import BackupScheduler
from .settings_store import SettingsStore
from .snapshot import SnapshotWriter

__all__ = [
    "BackupCatalog",
    "BackupError",
    "BackupIOError",
    "BackupManager",
    "BackupNotFoundError",
    "BackupScheduler",
    "BackupSet",
    "BackupType",
    "ConflictError",
    "JobNotFoundError",
    "MergeConflict",
    "MergeCounts",
    "PartialMergeError",
    "RestoreJob",
    "RestoreJobStatus",
    "RestoreJobTracker",
    "RestoreMerger",
    "RetentionPolicy",
    "RetentionSweeper",
    "SerializationError",
    "SettingsStore",
    "SnapshotWriter",
]
