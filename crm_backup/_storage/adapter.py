"""Storage adapter for handling both sync and async dataset backends."""

import asyncio
from typing import Any, Dict, Iterable, List, Optional

from ..base import DatasetExport


class StorageAdapter:
    """Adapter so the host application's storage may be synchronous or asynchronous."""

    def __init__(self, backend):
        """Initialize with a dataset storage backend."""
        self.backend = backend

    async def _call(self, method_name: str, *args, **kwargs) -> Any:
        method = getattr(self.backend, method_name)
        if asyncio.iscoroutinefunction(method):
            return await method(*args, **kwargs)
        # Run sync function in thread pool
        return await asyncio.to_thread(method, *args, **kwargs)

    async def export_consistent(self) -> DatasetExport:
        """Export all entities, handling sync/async."""
        return await self._call("export_consistent")

    async def get_by_ids(self, entity: str, ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        """Fetch existing records by id, handling sync/async."""
        return await self._call("get_by_ids", entity, list(ids))

    async def apply_record(
        self,
        entity: str,
        record: Dict[str, Any],
        last_updated: Optional[Any] = None,
    ) -> bool:
        """Upsert one record, handling sync/async."""
        return bool(await self._call("apply_record", entity, record, last_updated))

    async def apply_batch(
        self,
        entity: str,
        records: List[Dict[str, Any]],
        conditional: bool = True,
    ) -> List[str]:
        """Upsert a batch, falling back to per-record upserts. Returns the ids written."""
        if hasattr(self.backend, "apply_batch"):
            return list(await self._call("apply_batch", entity, records, conditional))

        id_field = getattr(self.backend, "id_field", "id")
        timestamp_field = getattr(self.backend, "timestamp_field", "updatedAt")
        applied = []
        for record in records:
            last_updated = record.get(timestamp_field) if conditional else None
            if await self.apply_record(entity, record, last_updated):
                applied.append(str(record[id_field]))
        return applied

    async def check_health(self) -> bool:
        """Check backend health, handling sync/async."""
        if hasattr(self.backend, "check_health"):
            return await self._call("check_health")
        # If no health check method, assume healthy if backend exists
        return self.backend is not None
