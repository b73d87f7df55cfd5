"""Backup and restore error taxonomy."""

from typing import Dict, Optional

from .models import MergeCounts


class BackupError(Exception):
    """Base class for backup subsystem errors."""


class BackupIOError(BackupError):
    """Backup storage or the live dataset is unreachable or full. Retryable."""


class SerializationError(BackupError):
    """An export could not be serialized, or a stored payload is malformed."""


class ConflictError(BackupError):
    """A restore is already running."""

    def __init__(self, running_job_id: Optional[str] = None):
        self.running_job_id = running_job_id
        detail = f" (job {running_job_id})" if running_job_id else ""
        super().__init__(f"A restore is already running{detail}")


class BackupNotFoundError(BackupError):
    def __init__(self, backup_id: str):
        self.backup_id = backup_id
        super().__init__(f"Backup not found: {backup_id}")


class JobNotFoundError(BackupError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class PartialMergeError(BackupError):
    """The merge stopped inside ``entity``; earlier entities stay merged."""

    def __init__(self, entity: str, summary: Dict[str, MergeCounts], cause: Optional[BaseException] = None):
        self.entity = entity
        self.summary = summary
        self.cause = cause
        reason = f": {cause}" if cause else ""
        super().__init__(f"Merge aborted while processing {entity}{reason}")
