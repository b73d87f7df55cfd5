"""Tests for backup utility functions."""

import json
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from crm_backup._utils import canonical_dumps, parse_timestamp
from crm_backup.backup.models import BackupType
from crm_backup.backup.utils import (
    atomic_publish,
    backup_date_label,
    compute_bytes_checksum,
    deserialize_export,
    generate_backup_id,
    get_retry_decorator,
    order_entities,
    save_manifest,
    serialize_export,
)
from crm_backup.base import DatasetUnavailableError
from crm_backup.config import DEFAULT_ENTITY_ORDER


def test_serialize_export_is_order_independent():
    """Same dataset state, different record/key order, same bytes."""
    first = {
        "leads": [{"id": "2", "stage": "won", "updatedAt": "t"}, {"id": "1", "stage": "new"}],
        "users": [{"name": "Alice", "id": "u1"}],
    }
    second = {
        "users": [{"id": "u1", "name": "Alice"}],
        "leads": [{"stage": "new", "id": "1"}, {"updatedAt": "t", "stage": "won", "id": "2"}],
    }

    assert serialize_export(first) == serialize_export(second)
    assert compute_bytes_checksum(serialize_export(first)) == compute_bytes_checksum(serialize_export(second))


def test_serialize_export_requires_primary_key():
    with pytest.raises(ValueError, match="no 'id' field"):
        serialize_export({"leads": [{"stage": "new"}]})


def test_serialize_export_rejects_malformed_exports():
    with pytest.raises(ValueError, match="not a list of records"):
        serialize_export({"leads": ["not-a-record"]})
    with pytest.raises(ValueError, match="not a list of records"):
        serialize_export({"leads": "oops"})
    with pytest.raises(ValueError, match="must map entity names"):
        serialize_export([{"id": "1"}])


def test_serialize_export_rejects_unserializable_values():
    with pytest.raises(TypeError):
        serialize_export({"leads": [{"id": "1", "blob": object()}]})


def test_deserialize_export_roundtrip_and_validation():
    export = {"leads": [{"id": "1", "stage": "new"}]}
    assert deserialize_export(serialize_export(export)) == export

    with pytest.raises(ValueError):
        deserialize_export(b'{"something": []}')
    with pytest.raises(ValueError):
        deserialize_export(b'{"entities": {"leads": "not a list"}}')


def test_checksum_format():
    checksum = compute_bytes_checksum(b"hello")
    assert checksum.startswith("sha256:")
    assert len(checksum) == len("sha256:") + 64


def test_canonical_dumps_datetime_and_sorting():
    data = {"b": 1, "a": datetime(2024, 1, 1, tzinfo=timezone.utc)}
    assert canonical_dumps(data) == b'{"a":"2024-01-01T00:00:00Z","b":1}'


def test_order_entities_known_first_then_alphabetical():
    ordered = order_entities(["zeta", "leads", "users", "alpha"], DEFAULT_ENTITY_ORDER)
    assert ordered == ["users", "leads", "alpha", "zeta"]


def test_generate_backup_id():
    now = datetime(2024, 3, 5, 4, 0, 0, tzinfo=timezone.utc)
    backup_id = generate_backup_id(BackupType.DAILY, now)

    assert backup_id.startswith("daily_2024-03-05T04-00-00Z_")
    assert generate_backup_id(BackupType.DAILY, now) != backup_id


def test_backup_date_label():
    created = datetime(2024, 3, 5, 4, 0, 0, tzinfo=timezone.utc)
    assert backup_date_label(BackupType.DAILY, created) == "2024-03-05"
    assert backup_date_label(BackupType.MONTHLY, created) == "2024-03"
    assert backup_date_label(BackupType.YEARLY, created) == "2024"
    assert backup_date_label(BackupType.MANUAL, created).startswith("manual-2024-03-05")


def test_parse_timestamp_formats():
    expected = datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert parse_timestamp("2024-01-01T00:00:00Z") == expected
    assert parse_timestamp("2024-01-01T02:00:00+02:00") == expected
    assert parse_timestamp(1704067200000) == expected
    assert parse_timestamp(datetime(2024, 1, 1)) == expected
    assert parse_timestamp("not a date") is None
    assert parse_timestamp(None) is None
    assert parse_timestamp(True) is None
    assert parse_timestamp(10 ** 20) is None
    assert parse_timestamp(-(10 ** 20)) is None
    assert parse_timestamp(float("nan")) is None
    assert parse_timestamp(float("inf")) is None


def test_atomic_publish_moves_file():
    with tempfile.TemporaryDirectory() as tmpdir:
        tmpdir = Path(tmpdir)
        staged = tmpdir / "staged.json"
        staged.write_bytes(b"{}")

        target = tmpdir / "nested" / "target.json"
        atomic_publish(staged, target)

        assert target.read_bytes() == b"{}"
        assert not staged.exists()


@pytest.mark.asyncio
async def test_save_manifest():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "manifest.json"
        await save_manifest({"payload_id": "p1", "record_counts": {"leads": 3}}, path)

        assert json.loads(path.read_text()) == {"payload_id": "p1", "record_counts": {"leads": 3}}


@pytest.mark.asyncio
async def test_retry_decorator_retries_transient_errors():
    calls = []

    @get_retry_decorator(3, 0, 0)
    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise DatasetUnavailableError("down")
        return "ok"

    assert await flaky() == "ok"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_retry_decorator_does_not_retry_other_errors():
    calls = []

    @get_retry_decorator(3, 0, 0)
    async def broken():
        calls.append(1)
        raise ValueError("bad data")

    with pytest.raises(ValueError):
        await broken()
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_retry_decorator_reraises_last_error():
    @get_retry_decorator(2, 0, 0)
    async def down():
        raise TimeoutError("slow")

    with pytest.raises(TimeoutError):
        await down()
