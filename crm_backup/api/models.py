"""Pydantic models for API requests and responses.

Field names are snake_case in Python and camelCase on the wire.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from crm_backup.backup.models import (
    BackupSet,
    BackupSettingsState,
    BackupType,
    MergeCounts,
    RestoreJob,
    RestoreJobStatus,
)
from crm_backup.backup.utils import backup_date_label


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BackupMetadata(CamelModel):
    timestamp: datetime
    size: int
    checksum: str
    record_counts: Dict[str, int]
    version: str


class BackupEntry(CamelModel):
    id: str
    type: BackupType
    date: str
    metadata: BackupMetadata

    @classmethod
    def from_backup(cls, backup: BackupSet) -> "BackupEntry":
        return cls(
            id=backup.id,
            type=backup.type,
            date=backup_date_label(backup.type, backup.created_at),
            metadata=BackupMetadata(
                timestamp=backup.created_at,
                size=backup.size_bytes,
                checksum=backup.checksum,
                record_counts=backup.record_counts,
                version=backup.schema_version,
            ),
        )


class BackupListResponse(CamelModel):
    backups: Dict[str, List[BackupEntry]]


class CreateBackupResponse(CamelModel):
    success: bool = True
    message: str
    backup: BackupEntry


class DeleteBackupResponse(CamelModel):
    success: bool = True
    message: str


class RestoreStartedResponse(CamelModel):
    success: bool = True
    job_id: str
    message: str = "Restore started. Poll restore-status for progress."


class RestoreStatusResponse(CamelModel):
    job_id: str
    status: RestoreJobStatus
    message: str
    progress: int
    current_step: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    backup_id: str
    backup_type: BackupType
    safety_backup: Optional[str] = None
    error: Optional[str] = None
    result: Optional[Dict[str, MergeCounts]] = None

    @classmethod
    def from_job(cls, job: RestoreJob) -> "RestoreStatusResponse":
        return cls(
            job_id=job.id,
            status=job.status,
            message=job.message,
            progress=job.progress,
            current_step=job.current_step,
            started_at=job.started_at,
            completed_at=job.completed_at,
            backup_id=job.backup_id,
            backup_type=job.backup_type,
            safety_backup=job.safety_backup_ref,
            error=job.error,
            result=job.result_summary,
        )


class HistoryEntry(CamelModel):
    id: str
    type: BackupType
    date: str
    timestamp: datetime
    size: int
    record_counts: Dict[str, int]


class BackupSettingsResponse(CamelModel):
    enabled: bool
    daily_time: str
    retention_days: int
    retention_months: int
    retention_years: int
    last_backup: Optional[datetime] = None
    last_backup_type: Optional[BackupType] = None

    @classmethod
    def from_state(cls, state: BackupSettingsState) -> "BackupSettingsResponse":
        return cls(
            **state.policy.model_dump(),
            last_backup=state.last_backup_at,
            last_backup_type=state.last_backup_type,
        )


class BackupSettingsUpdate(CamelModel):
    """Partial settings update; omitted fields keep their current value."""

    enabled: Optional[bool] = None
    daily_time: Optional[str] = None
    retention_days: Optional[int] = Field(default=None, ge=0)
    retention_months: Optional[int] = Field(default=None, ge=0)
    retention_years: Optional[int] = Field(default=None, ge=0)

    def changes(self) -> Dict:
        return self.model_dump(exclude_none=True, by_alias=False)


class HealthStatus(BaseModel):
    status: str  # "healthy", "degraded", "unhealthy"
    backup_dir: bool
    dataset: bool
    redis: Optional[bool] = None  # None when Redis is not configured
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

