"""Non-destructive, newest-wins merge of a backup payload into the live dataset."""

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .._storage.adapter import StorageAdapter
from .._utils import logger, parse_timestamp
from ..base import BaseDatasetStorage, DatasetExport
from ..config import BackupConfig
from .errors import PartialMergeError
from .models import MergeConflict, MergeCounts
from .utils import get_retry_decorator, order_entities

# (entity, position, total) -> None
EntityStartCallback = Callable[[str, int, int], Awaitable[None]]
# (entity, position, total, counts) -> None
EntityDoneCallback = Callable[[str, int, int, MergeCounts], Awaitable[None]]


CONFLICT_LIVE_NEWER = "Current data is newer"
CONFLICT_NO_TIMESTAMP = "No timestamp available for comparison"
CONFLICT_CHANGED_DURING_RESTORE = "Current data changed during restore"


class MergeAction(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    SKIP = "skip"


class RestoreMerger:
    """Apply a payload onto the live dataset, one entity at a time.

    Records missing from the live dataset are inserted, records the backup
    holds a strictly newer version of are overwritten, everything else is
    left alone. Nothing is ever deleted.
    """

    def __init__(self, storage: BaseDatasetStorage, config: BackupConfig):
        self.storage = storage if isinstance(storage, StorageAdapter) else StorageAdapter(storage)
        self.config = config
        self._retry_decorator = get_retry_decorator(
            config.merge_retry_attempts, config.retry_wait_min, config.retry_wait_max
        )

    def plan(self, payload: DatasetExport) -> List[str]:
        """Entities in the order they will be merged."""
        return order_entities(payload.keys(), self.config.entity_order)

    def decide(self, backup_record: Dict[str, Any], live_record: Optional[Dict[str, Any]]) -> MergeAction:
        if live_record is None:
            return MergeAction.INSERT

        backup_ts = parse_timestamp(backup_record.get(self.config.timestamp_field))
        live_ts = parse_timestamp(live_record.get(self.config.timestamp_field))
        # Without both timestamps there is nothing to compare; keep live.
        if backup_ts is not None and live_ts is not None and backup_ts > live_ts:
            return MergeAction.UPDATE
        return MergeAction.SKIP

    async def merge(
        self,
        payload: DatasetExport,
        on_entity_start: Optional[EntityStartCallback] = None,
        on_entity_done: Optional[EntityDoneCallback] = None,
    ) -> Dict[str, MergeCounts]:
        """Merge every entity of ``payload``.

        Returns:
            Per-entity counts

        Raises:
            PartialMergeError: an entity failed; entities before it stay merged
        """
        summary: Dict[str, MergeCounts] = {}
        entities = self.plan(payload)
        total = len(entities)

        for position, entity in enumerate(entities, start=1):
            if on_entity_start:
                await on_entity_start(entity, position, total)

            records = payload[entity]
            counts = MergeCounts()
            summary[entity] = counts
            logger.info(f"Merging {entity} ({len(records)} records)")

            try:
                await self._merge_entity(entity, records, counts)
            except Exception as e:
                logger.error(f"Merge of {entity} failed after {counts.model_dump(exclude={'conflicts'})}: {e}")
                raise PartialMergeError(entity, summary, e) from e

            logger.info(
                f"{entity}: {counts.inserted} inserted, {counts.updated} updated, "
                f"{counts.skipped} skipped, {counts.conflict_count} conflicts"
            )
            if on_entity_done:
                await on_entity_done(entity, position, total, counts)

        return summary

    async def _merge_entity(self, entity: str, records: List[Dict[str, Any]], counts: MergeCounts) -> None:
        id_field = self.config.id_field
        batch_size = self.config.merge_batch_size
        get_by_ids = self._retry_decorator(self.storage.get_by_ids)
        apply_batch = self._retry_decorator(self.storage.apply_batch)

        for start in range(0, len(records), batch_size):
            batch = records[start:start + batch_size]
            ids = []
            for record in batch:
                if record.get(id_field) is None:
                    raise ValueError(f"{entity} record has no '{id_field}' field")
                ids.append(str(record[id_field]))

            existing = await get_by_ids(entity, ids)

            to_apply = []
            actions = []
            for record_id, record in zip(ids, batch):
                action = self.decide(record, existing.get(record_id))
                actions.append((record_id, record, action))
                if action != MergeAction.SKIP:
                    to_apply.append(record)

            applied = set(await apply_batch(entity, to_apply)) if to_apply else set()

            # Counted only once the batch is committed. A planned write the
            # store refused lost a race with a newer live write.
            for record_id, record, action in actions:
                if action == MergeAction.SKIP or record_id not in applied:
                    counts.skipped += 1
                    conflict = self.explain_skip(record_id, record, existing.get(record_id), action)
                    if conflict is not None:
                        counts.add_conflict(conflict)
                elif action == MergeAction.INSERT:
                    counts.inserted += 1
                else:
                    counts.updated += 1

            # Let live traffic and status pollers in between batches.
            await asyncio.sleep(0)

    def explain_skip(
        self,
        record_id: str,
        backup_record: Dict[str, Any],
        live_record: Optional[Dict[str, Any]],
        action: MergeAction,
    ) -> Optional[MergeConflict]:
        """Why a backup record was not written, or None for an unchanged record."""
        backup_ts = parse_timestamp(backup_record.get(self.config.timestamp_field))
        live_ts = parse_timestamp((live_record or {}).get(self.config.timestamp_field))

        if action != MergeAction.SKIP:
            # The live version that won the race was never read.
            return MergeConflict(id=record_id, reason=CONFLICT_CHANGED_DURING_RESTORE, backup_timestamp=backup_ts)
        if backup_ts is None or live_ts is None:
            reason = CONFLICT_NO_TIMESTAMP
        elif live_ts > backup_ts:
            reason = CONFLICT_LIVE_NEWER
        else:
            return None
        return MergeConflict(id=record_id, reason=reason, backup_timestamp=backup_ts, live_timestamp=live_ts)
