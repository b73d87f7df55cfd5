"""Test utilities for crm-backup tests."""
from typing import Any, Dict, Optional
from unittest.mock import AsyncMock

from crm_backup.base import DatasetExport


def make_record(record_id: str, updated_at: Optional[str], **fields: Any) -> Dict[str, Any]:
    """A CRM record with the default key and timestamp fields."""
    return {"id": record_id, "updatedAt": updated_at, **fields}


def by_id(export: DatasetExport, entity: str) -> Dict[str, Dict[str, Any]]:
    return {r["id"]: r for r in export.get(entity, [])}


class FlakyStorage:
    """Wraps a dataset storage and fails chosen calls.

    ``failures`` maps a method name to a list of exceptions raised on
    successive calls; once a list is exhausted calls pass through.
    """

    def __init__(self, inner, failures: Dict[str, list]):
        self.inner = inner
        self.failures = {name: list(errors) for name, errors in failures.items()}
        self.calls: Dict[str, int] = {}
        self.id_field = inner.id_field
        self.timestamp_field = inner.timestamp_field

    def _maybe_fail(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1
        pending = self.failures.get(name)
        if pending:
            raise pending.pop(0)

    async def export_consistent(self):
        self._maybe_fail("export_consistent")
        return await self.inner.export_consistent()

    async def get_by_ids(self, entity, ids):
        self._maybe_fail("get_by_ids")
        return await self.inner.get_by_ids(entity, ids)

    async def apply_record(self, entity, record, last_updated=None):
        self._maybe_fail("apply_record")
        return await self.inner.apply_record(entity, record, last_updated)

    async def apply_batch(self, entity, records, conditional=True):
        self._maybe_fail("apply_batch")
        return await self.inner.apply_batch(entity, records, conditional)

    async def check_health(self):
        return True


def mock_redis_client() -> AsyncMock:
    """AsyncMock Redis client backed by a dict, enough for job tracking."""
    client = AsyncMock()
    data: Dict[str, str] = {}
    client.data = data

    async def mock_get(key):
        return data.get(key)
    client.get = AsyncMock(side_effect=mock_get)

    async def mock_set(key, value, nx=False, ex=None):
        if nx and key in data:
            return None
        data[key] = value
        return True
    client.set = AsyncMock(side_effect=mock_set)

    async def mock_setex(key, ttl, value):
        data[key] = value
        return True
    client.setex = AsyncMock(side_effect=mock_setex)

    async def mock_delete(*keys):
        return sum(1 for k in keys if data.pop(k, None) is not None)
    client.delete = AsyncMock(side_effect=mock_delete)

    def mock_scan_iter(match=None, count=None):
        prefix = match.replace("*", "") if match else ""

        async def iterate():
            for key in list(data):
                if key.startswith(prefix):
                    yield key
        return iterate()
    client.scan_iter = mock_scan_iter

    client.ping = AsyncMock(return_value=True)
    return client
