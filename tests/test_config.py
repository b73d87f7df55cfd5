"""Tests for configuration management."""

import os
import pytest
from unittest.mock import patch

from crm_backup.config import (
    DEFAULT_ENTITY_ORDER,
    BackupConfig,
    CRMBackupConfig,
    StorageConfig,
)


class TestBackupConfig:
    """Test backup configuration."""

    def test_defaults(self):
        config = BackupConfig()
        assert config.backup_dir == "./backups"
        assert config.schema_version == "3.0.0"
        assert config.merge_batch_size == 500
        assert config.job_ttl_seconds == 604800
        assert config.timezone == "Africa/Cairo"
        assert config.entity_order == DEFAULT_ENTITY_ORDER
        assert config.entity_order.index("users") < config.entity_order.index("leads")

    def test_from_env(self):
        with patch.dict(os.environ, {
            "BACKUP_DIR": "/var/backups/crm",
            "BACKUP_MERGE_BATCH_SIZE": "100",
            "BACKUP_JOB_TTL": "3600",
            "BACKUP_TIMEZONE": "UTC",
            "BACKUP_ENTITY_ORDER": "users, leads,leadNotes",
        }):
            config = BackupConfig.from_env()
            assert config.backup_dir == "/var/backups/crm"
            assert config.merge_batch_size == 100
            assert config.job_ttl_seconds == 3600
            assert config.timezone == "UTC"
            assert config.entity_order == ("users", "leads", "leadNotes")

    def test_validation(self):
        with pytest.raises(ValueError, match="merge_batch_size must be positive"):
            BackupConfig(merge_batch_size=0)

        with pytest.raises(ValueError, match="job_ttl_seconds must be positive"):
            BackupConfig(job_ttl_seconds=-1)

        with pytest.raises(ValueError, match="retry waits"):
            BackupConfig(retry_wait_min=5, retry_wait_max=1)

        with pytest.raises(ValueError, match="duplicate"):
            BackupConfig(entity_order=("users", "users"))


class TestStorageConfig:
    """Test storage configuration."""

    def test_defaults(self):
        config = StorageConfig()
        assert config.dataset_backend == "memory"
        assert config.namespace == "crm"
        assert config.redis_password is None

    def test_from_env(self):
        with patch.dict(os.environ, {
            "DATASET_BACKEND": "redis",
            "DATASET_NAMESPACE": "crm_prod",
            "REDIS_URL": "redis://cache:6379",
        }):
            config = StorageConfig.from_env()
            assert config.dataset_backend == "redis"
            assert config.namespace == "crm_prod"
            assert config.redis_url == "redis://cache:6379"

    def test_validation(self):
        with pytest.raises(ValueError, match="Unknown dataset backend"):
            StorageConfig(dataset_backend="postgres")


class TestCRMBackupConfig:
    """Test main configuration."""

    def test_defaults(self):
        config = CRMBackupConfig()
        assert isinstance(config.backup, BackupConfig)
        assert isinstance(config.storage, StorageConfig)

    def test_from_env(self):
        with patch.dict(os.environ, {"BACKUP_DIR": "/tmp/crm", "DATASET_BACKEND": "redis"}):
            config = CRMBackupConfig.from_env()
            assert config.backup.backup_dir == "/tmp/crm"
            assert config.storage.dataset_backend == "redis"
