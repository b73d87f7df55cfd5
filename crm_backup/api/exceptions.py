"""HTTP errors raised by the API routers."""

from fastapi import HTTPException
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_422_UNPROCESSABLE_ENTITY,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_503_SERVICE_UNAVAILABLE,
)

from crm_backup.backup.errors import (
    BackupError,
    BackupIOError,
    BackupNotFoundError,
    ConflictError,
    JobNotFoundError,
    SerializationError,
)


class BackupAPIError(HTTPException):
    """Base exception for backup API errors."""
    pass


class InvalidBackupTypeError(BackupAPIError):
    def __init__(self, backup_type: str):
        super().__init__(HTTP_400_BAD_REQUEST, f"Invalid backup type: {backup_type}")


class InvalidBackupIdError(BackupAPIError):
    def __init__(self, backup_id: str):
        super().__init__(HTTP_400_BAD_REQUEST, f"Invalid backup id: {backup_id}")


class BackupNotFound(BackupAPIError):
    def __init__(self, backup_id: str):
        super().__init__(HTTP_404_NOT_FOUND, f"Backup not found: {backup_id}")


class JobNotFound(BackupAPIError):
    def __init__(self, job_id: str):
        super().__init__(HTTP_404_NOT_FOUND, f"Job {job_id} not found")


class RestoreInProgressError(BackupAPIError):
    def __init__(self, running_job_id: str = None):
        detail = "A restore is already in progress"
        if running_job_id:
            detail += f" (job {running_job_id})"
        super().__init__(HTTP_409_CONFLICT, detail)


class BackupUnprocessableError(BackupAPIError):
    def __init__(self, message: str):
        super().__init__(HTTP_422_UNPROCESSABLE_ENTITY, message)


class StorageUnavailableError(BackupAPIError):
    def __init__(self, message: str):
        super().__init__(HTTP_503_SERVICE_UNAVAILABLE, f"Backup storage temporarily unavailable: {message}")


def to_http_error(error: BackupError) -> BackupAPIError:
    """Map a backup subsystem error onto its HTTP status."""
    if isinstance(error, BackupNotFoundError):
        return BackupNotFound(error.backup_id)
    if isinstance(error, JobNotFoundError):
        return JobNotFound(error.job_id)
    if isinstance(error, ConflictError):
        return RestoreInProgressError(error.running_job_id)
    if isinstance(error, SerializationError):
        return BackupUnprocessableError(str(error))
    if isinstance(error, BackupIOError):
        return StorageUnavailableError(str(error))
    return BackupAPIError(HTTP_500_INTERNAL_SERVER_ERROR, str(error))
