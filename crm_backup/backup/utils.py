"""Utility functions for backup/restore operations."""

import json
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Sequence

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .._utils import canonical_dumps, compute_sha256, logger
from ..base import TRANSIENT_ERRORS, DatasetExport
from .models import BackupType


def get_retry_decorator(attempts: int, wait_min: float = 1, wait_max: float = 10):
    """Retry decorator for transient live-store errors."""
    return retry(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=1, min=wait_min, max=wait_max),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        reraise=True,
    )


def order_entities(names: Iterable[str], entity_order: Sequence[str]) -> List[str]:
    """Known entities in dependency order, then unknown ones alphabetically."""
    names = set(names)
    known = [name for name in entity_order if name in names]
    unknown = sorted(names.difference(entity_order))
    return known + unknown


def serialize_export(export: DatasetExport, id_field: str = "id") -> bytes:
    """Serialize an export to canonical bytes.

    Records are sorted by primary key and every mapping by key, so two
    exports of the same dataset state produce identical bytes.

    Raises:
        TypeError / ValueError: if a record is not JSON serializable
        ValueError: if the export is not a mapping of entity to record lists
    """
    if not isinstance(export, dict):
        raise ValueError(f"export must map entity names to records, got {type(export).__name__}")
    canonical = {}
    for entity, records in export.items():
        if not isinstance(records, list) or not all(isinstance(r, dict) for r in records):
            raise ValueError(f"export entity {entity!r} is not a list of records")
        missing = [r for r in records if r.get(id_field) is None]
        if missing:
            raise ValueError(f"{len(missing)} {entity} records have no '{id_field}' field")
        canonical[entity] = sorted(records, key=lambda r: str(r[id_field]))
    return canonical_dumps({"entities": canonical})


def deserialize_export(data: bytes) -> DatasetExport:
    """Parse canonical payload bytes back into an export.

    Raises:
        ValueError: if the payload is not a well-formed export
    """
    document = json.loads(data.decode("utf-8"))
    entities = document.get("entities") if isinstance(document, dict) else None
    if not isinstance(entities, dict):
        raise ValueError("payload has no 'entities' mapping")
    for entity, records in entities.items():
        if not isinstance(records, list) or not all(isinstance(r, dict) for r in records):
            raise ValueError(f"payload entity {entity!r} is not a list of records")
    return entities


def compute_bytes_checksum(data: bytes) -> str:
    return compute_sha256(data)


def generate_backup_id(backup_type: BackupType, now: datetime = None) -> str:
    """Generate backup ID with timestamp.

    Returns:
        Backup ID in format: <type>_YYYY-MM-DDTHH-MM-SSZ_<suffix>
    """
    now = now or datetime.now(timezone.utc)
    timestamp = now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H-%M-%SZ")
    return f"{backup_type.value}_{timestamp}_{uuid.uuid4().hex[:8]}"


def backup_date_label(backup_type: BackupType, created_at: datetime) -> str:
    """Display date for a backup, at the granularity of its class."""
    if backup_type == BackupType.MONTHLY:
        return created_at.strftime("%Y-%m")
    if backup_type == BackupType.YEARLY:
        return created_at.strftime("%Y")
    if backup_type == BackupType.MANUAL:
        return "manual-" + created_at.strftime("%Y-%m-%dT%H-%M-%S")
    return created_at.strftime("%Y-%m-%d")


def write_bytes_durable(path: Path, data: bytes) -> None:
    """Write and fsync a file."""
    with open(path, "wb") as f:
        f.write(data)
        f.flush()
        os.fsync(f.fileno())


def atomic_publish(staged: Path, target: Path) -> None:
    """Move a fully written staging file into place.

    ``os.replace`` is atomic within one filesystem, so readers see either
    nothing or the complete file.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    os.replace(staged, target)


async def save_manifest(manifest: Dict[str, Any], output_path: Path) -> None:
    """Save manifest JSON to file.

    Args:
        manifest: Manifest dictionary
        output_path: Output file path
    """
    with open(output_path, "w") as f:
        json.dump(manifest, f, indent=2, default=str)

    logger.debug(f"Manifest saved: {output_path}")
