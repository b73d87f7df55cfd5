"""Persistent catalog of BackupSet headers and their payloads.

On-disk layout under ``backup_dir``::

    <type>/<backup_id>.json            one header per BackupSet
    payloads/<payload_id>.json         canonical export bytes
    payloads/<payload_id>.manifest.json
    .staging/                          in-flight writes, never listed

A payload may be referenced by several headers (a daily snapshot that was
also classified monthly). It is removed with its last header.
"""

import asyncio
import shutil
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError

from .._utils import logger
from ..base import DatasetExport
from .errors import BackupIOError, BackupNotFoundError, SerializationError
from .models import BackupManifest, BackupSet, BackupType
from .utils import (
    atomic_publish,
    backup_date_label,
    compute_bytes_checksum,
    deserialize_export,
    save_manifest,
    write_bytes_durable,
)

PAYLOADS_DIR = "payloads"
STAGING_DIR = ".staging"


class BackupCatalog:
    """Lists, resolves, publishes and deletes BackupSets."""

    def __init__(self, backup_dir: str = "./backups"):
        self.backup_dir = Path(backup_dir)
        self.payload_dir = self.backup_dir / PAYLOADS_DIR
        self.staging_dir = self.backup_dir / STAGING_DIR
        for directory in (self.payload_dir, self.staging_dir):
            directory.mkdir(parents=True, exist_ok=True)
        for backup_type in BackupType:
            (self.backup_dir / backup_type.value).mkdir(parents=True, exist_ok=True)

        # Serializes every mutation of the catalog directory.
        self.write_lock = asyncio.Lock()

    def _header_path(self, backup_type: BackupType, backup_id: str) -> Path:
        return self.backup_dir / backup_type.value / f"{backup_id}.json"

    def _payload_path(self, payload_id: str) -> Path:
        return self.payload_dir / f"{payload_id}.json"

    def _manifest_path(self, payload_id: str) -> Path:
        return self.payload_dir / f"{payload_id}.manifest.json"

    @staticmethod
    def _validate_id(backup_id: str) -> None:
        if not backup_id or "/" in backup_id or "\\" in backup_id or ".." in backup_id:
            raise BackupNotFoundError(backup_id)

    def _locate(self, backup_id: str) -> Optional[Path]:
        self._validate_id(backup_id)
        for backup_type in BackupType:
            path = self._header_path(backup_type, backup_id)
            if path.exists():
                return path
        return None

    def staging_area(self, name: str) -> Path:
        path = self.staging_dir / name
        path.mkdir(parents=True, exist_ok=True)
        return path

    def discard_staging(self, path: Path) -> None:
        if path.exists():
            shutil.rmtree(path, ignore_errors=True)

    @staticmethod
    def _read_header(path: Path) -> BackupSet:
        return BackupSet.model_validate_json(path.read_bytes())

    async def publish(self, staging: Path, header: BackupSet, manifest: BackupManifest) -> BackupSet:
        """Move a staged payload into the catalog and make its header visible.

        ``staging`` must hold ``payload.json``. The header file is moved in
        last, so a BackupSet is listed only once its payload is in place.
        """
        staged_payload = staging / "payload.json"
        staged_manifest = staging / "manifest.json"
        staged_header = staging / "header.json"

        async with self.write_lock:
            payload_path = self._payload_path(header.payload_id)
            manifest_path = self._manifest_path(header.payload_id)
            header_path = self._header_path(header.type, header.id)
            if header_path.exists():
                raise BackupIOError(f"Backup already exists: {header.id}")

            try:
                await save_manifest(manifest.model_dump(mode="json"), staged_manifest)
                write_bytes_durable(staged_header, header.model_dump_json(indent=2).encode("utf-8"))
                atomic_publish(staged_payload, payload_path)
                atomic_publish(staged_manifest, manifest_path)
                atomic_publish(staged_header, header_path)
            except OSError as e:
                if not header_path.exists():
                    payload_path.unlink(missing_ok=True)
                    manifest_path.unlink(missing_ok=True)
                raise BackupIOError(f"Failed to publish backup {header.id}: {e}") from e

        logger.info(f"Published backup {header.id} ({header.size_bytes:,} bytes)")
        return header

    async def add_entry(self, header: BackupSet) -> BackupSet:
        """Register an extra header for an already published payload."""
        async with self.write_lock:
            if not self._payload_path(header.payload_id).exists():
                raise BackupNotFoundError(header.payload_id)

            staging = self.staging_area(f"entry_{header.id}")
            try:
                staged_header = staging / "header.json"
                write_bytes_durable(staged_header, header.model_dump_json(indent=2).encode("utf-8"))
                atomic_publish(staged_header, self._header_path(header.type, header.id))
            except OSError as e:
                raise BackupIOError(f"Failed to register backup {header.id}: {e}") from e
            finally:
                self.discard_staging(staging)

        logger.info(f"Registered {header.type.value} backup {header.id} -> payload {header.payload_id}")
        return header

    async def list_backups(self) -> List[BackupSet]:
        """List all backups, newest first."""
        backups = []

        for backup_type in BackupType:
            for header_path in (self.backup_dir / backup_type.value).glob("*.json"):
                try:
                    backups.append(self._read_header(header_path))
                except (OSError, ValidationError) as e:
                    logger.warning(f"Failed to read backup {header_path.name}: {e}")

        backups.sort(key=lambda b: (b.created_at, b.id), reverse=True)
        return backups

    async def list_grouped(self) -> Dict[str, List[BackupSet]]:
        """Backups grouped by type, each group newest first."""
        grouped: Dict[str, List[BackupSet]] = {t.value: [] for t in BackupType}
        for backup in await self.list_backups():
            grouped[backup.type.value].append(backup)
        return grouped

    async def history(self, limit: int = 50) -> List[Dict]:
        return [
            {
                "id": b.id,
                "type": b.type.value,
                "date": backup_date_label(b.type, b.created_at),
                "timestamp": b.created_at,
                "size": b.size_bytes,
                "recordCounts": b.record_counts,
            }
            for b in (await self.list_backups())[:limit]
        ]

    async def get_metadata(self, backup_id: str) -> BackupSet:
        """Read a header without touching the payload."""
        path = self._locate(backup_id)
        if path is None:
            raise BackupNotFoundError(backup_id)
        try:
            return self._read_header(path)
        except ValidationError as e:
            raise SerializationError(f"Malformed header for {backup_id}: {e}") from e
        except OSError as e:
            raise BackupIOError(f"Failed to read header for {backup_id}: {e}") from e

    async def find(self, backup_type: BackupType, backup_id: str) -> BackupSet:
        """Resolve a backup by ``{type, id}``, as external callers address it."""
        backup = await self.get_metadata(backup_id)
        if backup.type != backup_type:
            raise BackupNotFoundError(backup_id)
        return backup

    async def exists(self, backup_id: str) -> bool:
        try:
            return self._locate(backup_id) is not None
        except BackupNotFoundError:
            return False

    async def load_payload(self, backup_id: str) -> DatasetExport:
        """Load and verify the payload behind a header.

        Raises:
            BackupNotFoundError: unknown id or missing payload
            SerializationError: checksum mismatch or malformed payload
            BackupIOError: payload unreadable
        """
        header = await self.get_metadata(backup_id)
        payload_path = self._payload_path(header.payload_id)
        if not payload_path.exists():
            raise BackupNotFoundError(backup_id)

        try:
            data = payload_path.read_bytes()
        except OSError as e:
            raise BackupIOError(f"Failed to read payload for {backup_id}: {e}") from e

        checksum = compute_bytes_checksum(data)
        if checksum != header.checksum:
            raise SerializationError(
                f"Checksum mismatch for {backup_id}: expected {header.checksum}, got {checksum}"
            )
        logger.info(f"Payload checksum verified: {checksum}")

        try:
            return deserialize_export(data)
        except ValueError as e:
            raise SerializationError(f"Malformed payload for {backup_id}: {e}") from e

    async def delete_backup(self, backup_id: str) -> bool:
        """Delete one header, and its payload if nothing else references it.

        Returns:
            True if deleted, False if not found
        """
        async with self.write_lock:
            try:
                path = self._locate(backup_id)
            except BackupNotFoundError:
                return False
            if path is None:
                return False

            try:
                header = self._read_header(path)
            except (OSError, ValidationError):
                header = None

            try:
                path.unlink()
                if header is not None and not self._payload_referenced(header.payload_id):
                    self._payload_path(header.payload_id).unlink(missing_ok=True)
                    self._manifest_path(header.payload_id).unlink(missing_ok=True)
                    logger.debug(f"Removed unreferenced payload {header.payload_id}")
            except OSError as e:
                raise BackupIOError(f"Failed to delete backup {backup_id}: {e}") from e

        logger.info(f"Deleted backup: {backup_id}")
        return True

    def _payload_referenced(self, payload_id: str) -> bool:
        for backup_type in BackupType:
            for header_path in (self.backup_dir / backup_type.value).glob("*.json"):
                try:
                    if self._read_header(header_path).payload_id == payload_id:
                        return True
                except (OSError, ValidationError):
                    # Unreadable header may point here; keep the payload.
                    return True
        return False
