"""Configuration management for crm-backup."""

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple


# Parent entities first, so inserts never reference a record that is not there yet.
DEFAULT_ENTITY_ORDER: Tuple[str, ...] = (
    "systemSettings",
    "pipelineStages",
    "formTemplates",
    "users",
    "teams",
    "campaigns",
    "campaignTeams",
    "campaignQCs",
    "leads",
    "leadNotes",
    "leadAudits",
    "clientNotes",
    "clientSchedules",
    "leaveRequests",
    "itTickets",
    "itTicketResponses",
    "itTicketStatusHistory",
    "itAssignments",
    "loginHistory",
    "dailyTopAgents",
)


def _parse_entity_order(value: Optional[str]) -> Tuple[str, ...]:
    if not value:
        return DEFAULT_ENTITY_ORDER
    return tuple(name.strip() for name in value.split(",") if name.strip())


@dataclass(frozen=True)
class BackupConfig:
    """Snapshot, restore and scheduling configuration."""
    backup_dir: str = "./backups"
    schema_version: str = "3.0.0"
    merge_batch_size: int = 500
    job_ttl_seconds: int = 604800  # 7 days
    timezone: str = "Africa/Cairo"
    entity_order: Tuple[str, ...] = DEFAULT_ENTITY_ORDER
    id_field: str = "id"
    timestamp_field: str = "updatedAt"
    export_retry_attempts: int = 3
    merge_retry_attempts: int = 3
    retry_wait_min: float = 1.0
    retry_wait_max: float = 10.0

    @classmethod
    def from_env(cls) -> 'BackupConfig':
        """Create config from environment variables."""
        return cls(
            backup_dir=os.getenv("BACKUP_DIR", "./backups"),
            schema_version=os.getenv("BACKUP_SCHEMA_VERSION", "3.0.0"),
            merge_batch_size=int(os.getenv("BACKUP_MERGE_BATCH_SIZE", "500")),
            job_ttl_seconds=int(os.getenv("BACKUP_JOB_TTL", "604800")),
            timezone=os.getenv("BACKUP_TIMEZONE", "Africa/Cairo"),
            entity_order=_parse_entity_order(os.getenv("BACKUP_ENTITY_ORDER")),
            id_field=os.getenv("BACKUP_ID_FIELD", "id"),
            timestamp_field=os.getenv("BACKUP_TIMESTAMP_FIELD", "updatedAt"),
            export_retry_attempts=int(os.getenv("BACKUP_EXPORT_RETRY_ATTEMPTS", "3")),
            merge_retry_attempts=int(os.getenv("BACKUP_MERGE_RETRY_ATTEMPTS", "3")),
            retry_wait_min=float(os.getenv("BACKUP_RETRY_WAIT_MIN", "1.0")),
            retry_wait_max=float(os.getenv("BACKUP_RETRY_WAIT_MAX", "10.0")),
        )

    def __post_init__(self):
        """Validate configuration."""
        if self.merge_batch_size <= 0:
            raise ValueError(f"merge_batch_size must be positive, got {self.merge_batch_size}")
        if self.job_ttl_seconds <= 0:
            raise ValueError(f"job_ttl_seconds must be positive, got {self.job_ttl_seconds}")
        if self.export_retry_attempts <= 0:
            raise ValueError(f"export_retry_attempts must be positive, got {self.export_retry_attempts}")
        if self.merge_retry_attempts <= 0:
            raise ValueError(f"merge_retry_attempts must be positive, got {self.merge_retry_attempts}")
        if not 0 <= self.retry_wait_min <= self.retry_wait_max:
            raise ValueError(
                f"retry waits must satisfy 0 <= min <= max, got {self.retry_wait_min}, {self.retry_wait_max}"
            )
        if len(set(self.entity_order)) != len(self.entity_order):
            raise ValueError("entity_order contains duplicate entity names")


@dataclass(frozen=True)
class StorageConfig:
    """Live dataset storage configuration."""
    dataset_backend: str = "memory"  # memory, redis
    namespace: str = "crm"

    # Redis specific settings
    redis_url: str = "redis://localhost:6379"
    redis_password: Optional[str] = None

    @classmethod
    def from_env(cls) -> 'StorageConfig':
        """Create config from environment variables."""
        return cls(
            dataset_backend=os.getenv("DATASET_BACKEND", "memory"),
            namespace=os.getenv("DATASET_NAMESPACE", "crm"),
            redis_url=os.getenv("DATASET_REDIS_URL", os.getenv("REDIS_URL", "redis://localhost:6379")),
            redis_password=os.getenv("DATASET_REDIS_PASSWORD", os.getenv("REDIS_PASSWORD")),
        )

    def __post_init__(self):
        """Validate configuration."""
        valid_backends = {"memory", "redis"}
        if self.dataset_backend not in valid_backends:
            raise ValueError(f"Unknown dataset backend: {self.dataset_backend}. Valid options: {valid_backends}")


@dataclass(frozen=True)
class CRMBackupConfig:
    """Main crm-backup configuration."""
    backup: BackupConfig = field(default_factory=BackupConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    @classmethod
    def from_env(cls) -> 'CRMBackupConfig':
        """Create complete config from environment variables."""
        return cls(
            backup=BackupConfig.from_env(),
            storage=StorageConfig.from_env(),
        )
