"""Tests for SettingsStore."""

import json
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from crm_backup.backup.errors import BackupIOError
from crm_backup.backup.models import BackupType, RetentionPolicy
from crm_backup.backup.settings_store import SettingsStore


def test_defaults_when_nothing_saved(temp_backup_dir):
    store = SettingsStore(str(temp_backup_dir))
    store.load()

    assert store.get() == RetentionPolicy()
    assert store.get().daily_time == "04:00"
    assert store.state().last_backup_at is None


@pytest.mark.asyncio
async def test_update_persists_and_reloads(temp_backup_dir):
    store = SettingsStore(str(temp_backup_dir))

    policy = await store.update({"daily_time": "02:30", "retention_days": 7})

    assert policy.daily_time == "02:30"
    assert policy.retention_months == 12
    assert store.get() == policy

    reloaded = SettingsStore(str(temp_backup_dir))
    reloaded.load()
    assert reloaded.get() == policy
    assert not (temp_backup_dir / ".settings.json.tmp").exists()


@pytest.mark.asyncio
async def test_invalid_update_changes_nothing(temp_backup_dir):
    store = SettingsStore(str(temp_backup_dir))
    await store.update({"retention_days": 10})

    for changes in ({"daily_time": "25:00"}, {"retention_days": -1}, {"enabled": "maybe"}):
        with pytest.raises(ValidationError):
            await store.update(changes)

    assert store.get().retention_days == 10
    assert json.loads(store.path.read_text())["policy"]["retention_days"] == 10


@pytest.mark.asyncio
async def test_write_failure_keeps_previous_policy(temp_backup_dir):
    store = SettingsStore(str(temp_backup_dir))

    with patch("crm_backup.backup.settings_store.atomic_publish", side_effect=OSError("read-only")):
        with pytest.raises(BackupIOError):
            await store.update({"enabled": False})

    assert store.get().enabled is True


@pytest.mark.asyncio
async def test_record_last_backup(temp_backup_dir):
    store = SettingsStore(str(temp_backup_dir))
    at = datetime(2024, 6, 1, 4, 0, tzinfo=timezone.utc)

    await store.record_last_backup(BackupType.DAILY, at)

    reloaded = SettingsStore(str(temp_backup_dir))
    state = reloaded.load()
    assert state.last_backup_at == at
    assert state.last_backup_type == BackupType.DAILY


def test_corrupted_file_falls_back_to_defaults(temp_backup_dir):
    (temp_backup_dir / "settings.json").write_text("{not json")
    store = SettingsStore(str(temp_backup_dir))

    assert store.load().policy == RetentionPolicy()
