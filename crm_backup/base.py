from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from ._utils import parse_timestamp

# Entity name -> ordered records. Records are opaque dicts keyed by a primary key field.
DatasetExport = Dict[str, List[Dict[str, Any]]]


class DatasetUnavailableError(ConnectionError):
    """Raised by dataset backends when the store is transiently unreachable."""


# Errors worth retrying before giving up on the live store.
TRANSIENT_ERRORS = (ConnectionError, TimeoutError)


def incoming_wins(incoming_updated: Any, live_record: Optional[Dict[str, Any]], timestamp_field: str) -> bool:
    """Whether an incoming version should replace ``live_record``.

    A missing live record always loses. Otherwise the incoming version wins
    only with a strictly newer timestamp; if either side has no usable
    timestamp the live record is kept.
    """
    if live_record is None:
        return True
    incoming_ts = parse_timestamp(incoming_updated)
    live_ts = parse_timestamp(live_record.get(timestamp_field))
    return incoming_ts is not None and live_ts is not None and incoming_ts > live_ts


@dataclass
class StorageNameSpace:
    namespace: str
    global_config: dict = field(default_factory=dict)

    @property
    def id_field(self) -> str:
        return self.global_config.get("id_field", "id")

    @property
    def timestamp_field(self) -> str:
        return self.global_config.get("timestamp_field", "updatedAt")


@dataclass
class BaseDatasetStorage(StorageNameSpace):
    """The live dataset, as seen by the backup subsystem.

    Backends must provide a consistent export (no mix of pre- and
    post-update state from concurrent writers) and keyed, conditional
    upserts. Nothing here deletes records.
    """

    async def export_consistent(self) -> DatasetExport:
        """Export every entity type as of one consistent read point."""
        raise NotImplementedError

    async def get_by_ids(self, entity: str, ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        """Return the existing records among ``ids``, keyed by id."""
        raise NotImplementedError

    async def apply_record(
        self,
        entity: str,
        record: Dict[str, Any],
        last_updated: Optional[Any] = None,
    ) -> bool:
        """Insert or update one record of ``entity`` by primary key.

        With ``last_updated`` the write is conditional: it happens only if
        the record is absent or the live copy is older, checked atomically
        with the write. Returns whether the record was written.
        """
        raise NotImplementedError

    async def apply_batch(
        self,
        entity: str,
        records: List[Dict[str, Any]],
        conditional: bool = True,
    ) -> List[str]:
        """Apply a batch of records; returns the ids actually written."""
        applied = []
        for record in records:
            last_updated = record.get(self.timestamp_field) if conditional else None
            if await self.apply_record(entity, record, last_updated):
                applied.append(str(record[self.id_field]))
        return applied

    async def check_health(self) -> bool:
        return True
