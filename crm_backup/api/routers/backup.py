"""Backup and restore API endpoints."""

from typing import List

from fastapi import APIRouter, Depends
from pydantic import ValidationError

from crm_backup._utils import logger
from crm_backup.backup import BackupManager
from crm_backup.backup.errors import BackupError
from crm_backup.backup.models import BackupType

from ..config import settings
from ..dependencies import get_backup_manager
from ..exceptions import (
    BackupNotFound,
    BackupUnprocessableError,
    InvalidBackupIdError,
    InvalidBackupTypeError,
    to_http_error,
)
from ..models import (
    BackupEntry,
    BackupListResponse,
    BackupSettingsResponse,
    BackupSettingsUpdate,
    CreateBackupResponse,
    DeleteBackupResponse,
    HistoryEntry,
    RestoreStartedResponse,
    RestoreStatusResponse,
)

router = APIRouter(prefix="/backup", tags=["backup"])


def parse_backup_type(backup_type: str) -> BackupType:
    try:
        return BackupType(backup_type.lower())
    except ValueError:
        raise InvalidBackupTypeError(backup_type)


def validate_backup_id(backup_id: str) -> str:
    if not backup_id or "/" in backup_id or "\\" in backup_id or ".." in backup_id:
        raise InvalidBackupIdError(backup_id)
    return backup_id


@router.get("/list", response_model=BackupListResponse)
async def list_backups(
    backup_manager: BackupManager = Depends(get_backup_manager),
) -> BackupListResponse:
    """List all backups grouped by type, newest first."""
    try:
        grouped = await backup_manager.list_backups()
    except BackupError as e:
        raise to_http_error(e) from e

    return BackupListResponse(
        backups={
            backup_type: [BackupEntry.from_backup(b) for b in backups]
            for backup_type, backups in grouped.items()
        }
    )


@router.post("/create", response_model=CreateBackupResponse)
async def create_backup(
    backup_manager: BackupManager = Depends(get_backup_manager),
) -> CreateBackupResponse:
    """Create a manual backup and return it once published."""
    try:
        backup = await backup_manager.create_backup(BackupType.MANUAL)
    except BackupError as e:
        logger.error(f"Manual backup failed: {e}")
        raise to_http_error(e) from e

    return CreateBackupResponse(
        message=f"Backup created: {backup.id}",
        backup=BackupEntry.from_backup(backup),
    )


@router.get("/history", response_model=List[HistoryEntry])
async def backup_history(
    backup_manager: BackupManager = Depends(get_backup_manager),
) -> List[HistoryEntry]:
    """Most recent backups of every type."""
    try:
        entries = await backup_manager.history(settings.history_limit)
    except BackupError as e:
        raise to_http_error(e) from e
    return [HistoryEntry.model_validate(entry) for entry in entries]


@router.get("/settings", response_model=BackupSettingsResponse)
async def get_settings(
    backup_manager: BackupManager = Depends(get_backup_manager),
) -> BackupSettingsResponse:
    return BackupSettingsResponse.from_state(backup_manager.settings.state())


@router.put("/settings", response_model=BackupSettingsResponse)
async def update_settings(
    update: BackupSettingsUpdate,
    backup_manager: BackupManager = Depends(get_backup_manager),
) -> BackupSettingsResponse:
    """Update the schedule and retention; takes effect at the next trigger."""
    try:
        await backup_manager.update_settings(update.changes())
    except ValidationError as e:
        raise BackupUnprocessableError(f"Invalid backup settings: {e.errors()[0]['msg']}") from e
    except BackupError as e:
        raise to_http_error(e) from e
    return BackupSettingsResponse.from_state(backup_manager.settings.state())


@router.get("/restore-status/{job_id}", response_model=RestoreStatusResponse)
async def restore_status(
    job_id: str,
    backup_manager: BackupManager = Depends(get_backup_manager),
) -> RestoreStatusResponse:
    """Poll a restore job."""
    try:
        job = await backup_manager.get_restore_status(job_id)
    except BackupError as e:
        raise to_http_error(e) from e
    return RestoreStatusResponse.from_job(job)


@router.post("/restore/{backup_type}/{backup_id}", response_model=RestoreStartedResponse)
async def restore_backup(
    backup_type: str,
    backup_id: str,
    backup_manager: BackupManager = Depends(get_backup_manager),
) -> RestoreStartedResponse:
    """Start a smart-merge restore.

    Returns immediately with the job id; a safety backup of the current
    state is taken before anything is merged.
    """
    parsed_type = parse_backup_type(backup_type)
    validate_backup_id(backup_id)

    try:
        job_id = await backup_manager.restore_backup(parsed_type, backup_id)
    except BackupError as e:
        raise to_http_error(e) from e

    return RestoreStartedResponse(job_id=job_id)


@router.delete("/{backup_type}/{backup_id}", response_model=DeleteBackupResponse)
async def delete_backup(
    backup_type: str,
    backup_id: str,
    backup_manager: BackupManager = Depends(get_backup_manager),
) -> DeleteBackupResponse:
    """Delete a backup."""
    parsed_type = parse_backup_type(backup_type)
    validate_backup_id(backup_id)

    try:
        deleted = await backup_manager.delete_backup(parsed_type, backup_id)
    except BackupError as e:
        raise to_http_error(e) from e

    if not deleted:
        raise BackupNotFound(backup_id)

    return DeleteBackupResponse(message=f"Backup deleted: {backup_id}")
