"""Data models for backup/restore operations."""

import re
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

_DAILY_TIME = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class BackupType(str, Enum):
    DAILY = "daily"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    MANUAL = "manual"


class BackupSet(BaseModel):
    """Header of one immutable, checksummed export of the full dataset."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique backup identifier")
    type: BackupType
    created_at: datetime = Field(..., description="Time the export was captured")
    checksum: str = Field(..., description="SHA-256 of the canonical export bytes")
    size_bytes: int
    record_counts: Dict[str, int] = Field(default_factory=dict)
    schema_version: str
    payload_id: str = Field(..., description="Stored payload this header points at")


class BackupManifest(BaseModel):
    """Metadata stored next to a payload, used to verify it on load."""

    payload_id: str
    created_at: datetime
    checksum: str
    size_bytes: int
    record_counts: Dict[str, int]
    schema_version: str
    entities: List[str]


# Conflicts listed per entity; conflict_count keeps the full tally.
MAX_CONFLICTS_PER_ENTITY = 100


class MergeConflict(BaseModel):
    """A backup record the merge left alone, and why."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    reason: str
    backup_timestamp: Optional[datetime] = None
    live_timestamp: Optional[datetime] = None


class MergeCounts(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    conflict_count: int = 0
    conflicts: List[MergeConflict] = Field(default_factory=list)

    def add_conflict(self, conflict: MergeConflict) -> None:
        self.conflict_count += 1
        if len(self.conflicts) < MAX_CONFLICTS_PER_ENTITY:
            self.conflicts.append(conflict)


class RestoreJobStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = {RestoreJobStatus.COMPLETED, RestoreJobStatus.FAILED}


class RestoreJob(BaseModel):
    """A restore request and its progress, as observed by pollers."""

    id: str
    status: RestoreJobStatus = RestoreJobStatus.RUNNING
    message: str = "Starting smart merge restore..."
    progress: int = 0
    current_step: str = "Initializing"
    started_at: datetime
    completed_at: Optional[datetime] = None
    backup_id: str
    backup_type: BackupType
    safety_backup_ref: Optional[str] = None
    error: Optional[str] = None
    result_summary: Optional[Dict[str, MergeCounts]] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def totals(self) -> MergeCounts:
        totals = MergeCounts()
        for counts in (self.result_summary or {}).values():
            totals.inserted += counts.inserted
            totals.updated += counts.updated
            totals.skipped += counts.skipped
            totals.conflict_count += counts.conflict_count
        return totals


class RetentionPolicy(BaseModel):
    """Schedule and retention settings, one per process."""

    enabled: bool = True
    daily_time: str = "04:00"
    retention_days: int = Field(default=30, ge=0)
    retention_months: int = Field(default=12, ge=0)
    retention_years: int = Field(default=5, ge=0)

    @field_validator("daily_time")
    @classmethod
    def validate_daily_time(cls, v):
        if not _DAILY_TIME.match(v):
            raise ValueError(f"daily_time must be HH:MM (24h), got {v!r}")
        return v

    @property
    def schedule_hour_minute(self):
        hour, minute = self.daily_time.split(":")
        return int(hour), int(minute)


class BackupSettingsState(BaseModel):
    """Persisted settings document: the policy plus last-run bookkeeping."""

    policy: RetentionPolicy = Field(default_factory=RetentionPolicy)
    last_backup_at: Optional[datetime] = None
    last_backup_type: Optional[BackupType] = None


class SweepReport(BaseModel):
    """Outcome of one retention sweep."""

    classified: List[BackupSet] = Field(default_factory=list)
    pruned: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
