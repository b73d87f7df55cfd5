"""Snapshot writer: one consistent, checksummed, atomically published export."""

import asyncio
import time

from .._storage.adapter import StorageAdapter
from .._utils import logger, utc_now
from ..base import TRANSIENT_ERRORS, BaseDatasetStorage, DatasetExport
from ..config import BackupConfig
from .catalog import BackupCatalog
from .errors import BackupError, BackupIOError, SerializationError
from .models import BackupManifest, BackupSet, BackupType
from .utils import (
    compute_bytes_checksum,
    generate_backup_id,
    get_retry_decorator,
    order_entities,
    serialize_export,
    write_bytes_durable,
)


class SnapshotWriter:
    """Produce BackupSets of the live dataset and register them in the catalog."""

    def __init__(self, storage: BaseDatasetStorage, catalog: BackupCatalog, config: BackupConfig):
        self.storage = storage if isinstance(storage, StorageAdapter) else StorageAdapter(storage)
        self.catalog = catalog
        self.config = config
        # One snapshot at a time, whoever asks for it.
        self._lock = asyncio.Lock()
        self._retry_decorator = get_retry_decorator(
            config.export_retry_attempts, config.retry_wait_min, config.retry_wait_max
        )

    async def create_snapshot(self, backup_type: BackupType) -> BackupSet:
        """Export, serialize, stage and publish one BackupSet.

        Raises:
            BackupIOError: live store or backup storage unreachable
            SerializationError: the export could not be serialized
        """
        async with self._lock:
            start_time = time.monotonic()
            backup_id = generate_backup_id(backup_type)
            logger.info(f"Starting {backup_type.value} backup: {backup_id}")

            try:
                staging = self.catalog.staging_area(backup_id)
            except OSError as e:
                raise BackupIOError(f"Failed to stage backup {backup_id}: {e}") from e

            try:
                export = await self._export()
                captured_at = utc_now()

                try:
                    data = serialize_export(export, self.config.id_field)
                except (TypeError, ValueError) as e:
                    raise SerializationError(f"Failed to serialize export for {backup_id}: {e}") from e

                try:
                    write_bytes_durable(staging / "payload.json", data)
                except OSError as e:
                    raise BackupIOError(f"Failed to stage backup {backup_id}: {e}") from e

                checksum = compute_bytes_checksum(data)
                record_counts = {entity: len(records) for entity, records in export.items()}

                header = BackupSet(
                    id=backup_id,
                    type=backup_type,
                    created_at=captured_at,
                    checksum=checksum,
                    size_bytes=len(data),
                    record_counts=record_counts,
                    schema_version=self.config.schema_version,
                    payload_id=backup_id,
                )
                manifest = BackupManifest(
                    payload_id=backup_id,
                    created_at=captured_at,
                    checksum=checksum,
                    size_bytes=len(data),
                    record_counts=record_counts,
                    schema_version=self.config.schema_version,
                    entities=order_entities(export.keys(), self.config.entity_order),
                )
                await self.catalog.publish(staging, header, manifest)
            finally:
                self.catalog.discard_staging(staging)

            duration_ms = (time.monotonic() - start_time) * 1000
            logger.info(
                f"{backup_type.value} backup completed: {backup_id} "
                f"({header.size_bytes / 1024 / 1024:.2f}MB, {sum(record_counts.values())} records, {duration_ms:.0f}ms)"
            )
            return header

    async def _export(self) -> DatasetExport:
        export_with_retry = self._retry_decorator(self.storage.export_consistent)
        try:
            export = await export_with_retry()
        except TRANSIENT_ERRORS as e:
            raise BackupIOError(f"Live dataset unavailable: {e}") from e
        except BackupError:
            raise
        except Exception as e:
            raise BackupIOError(f"Failed to export live dataset: {e}") from e

        if not isinstance(export, dict):
            raise SerializationError(f"Export must map entity names to records, got {type(export).__name__}")
        return export
