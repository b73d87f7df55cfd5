"""In-process dataset storage, used for development and tests."""

import asyncio
import copy
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from ..base import BaseDatasetStorage, DatasetExport, incoming_wins
from .._utils import logger


@dataclass
class InMemoryDatasetStorage(BaseDatasetStorage):
    """Dataset held in nested dicts: entity -> id -> record.

    A single lock guards reads and writes, so an export always sees the
    state between two complete writes.
    """

    _data: Dict[str, Dict[str, Dict[str, Any]]] = field(init=False, default_factory=dict)
    _lock: asyncio.Lock = field(init=False, default_factory=asyncio.Lock)

    def __post_init__(self):
        logger.debug(f"Initialized in-memory dataset storage: {self.namespace}")

    async def export_consistent(self) -> DatasetExport:
        async with self._lock:
            return {
                entity: [copy.deepcopy(record) for record in records.values()]
                for entity, records in self._data.items()
            }

    async def get_by_ids(self, entity: str, ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        async with self._lock:
            records = self._data.get(entity, {})
            return {
                str(record_id): copy.deepcopy(records[str(record_id)])
                for record_id in ids
                if str(record_id) in records
            }

    async def get_by_id(self, entity: str, record_id: str) -> Optional[Dict[str, Any]]:
        found = await self.get_by_ids(entity, [record_id])
        return found.get(str(record_id))

    async def apply_record(
        self,
        entity: str,
        record: Dict[str, Any],
        last_updated: Optional[Any] = None,
    ) -> bool:
        async with self._lock:
            if last_updated is not None and not incoming_wins(
                last_updated, self._current(entity, record), self.timestamp_field
            ):
                return False
            self._put(entity, record)
            return True

    async def apply_batch(
        self,
        entity: str,
        records: List[Dict[str, Any]],
        conditional: bool = True,
    ) -> List[str]:
        applied = []
        async with self._lock:
            for record in records:
                if conditional and not incoming_wins(
                    record.get(self.timestamp_field), self._current(entity, record), self.timestamp_field
                ):
                    continue
                applied.append(self._put(entity, record))
        return applied

    async def upsert(self, entity: str, records: List[Dict[str, Any]]) -> None:
        """Write records unconditionally, as live application traffic would."""
        await self.apply_batch(entity, records, conditional=False)

    async def count(self, entity: str) -> int:
        async with self._lock:
            return len(self._data.get(entity, {}))

    def _record_id(self, entity: str, record: Dict[str, Any]) -> str:
        record_id = record.get(self.id_field)
        if record_id is None:
            raise ValueError(f"Record for {entity} has no '{self.id_field}' field")
        return str(record_id)

    def _current(self, entity: str, record: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._data.get(entity, {}).get(self._record_id(entity, record))

    def _put(self, entity: str, record: Dict[str, Any]) -> str:
        record_id = self._record_id(entity, record)
        self._data.setdefault(entity, {})[record_id] = copy.deepcopy(record)
        return record_id
