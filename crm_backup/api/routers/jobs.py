"""Restore job tracking router."""
import asyncio
import json
from typing import List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from crm_backup.backup import BackupManager
from crm_backup.backup.errors import JobNotFoundError
from crm_backup.backup.models import RestoreJobStatus

from ..config import settings
from ..dependencies import get_backup_manager
from ..exceptions import JobNotFound
from ..models import RestoreStatusResponse

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.get("/", response_model=List[RestoreStatusResponse])
async def list_jobs(
    status: Optional[RestoreJobStatus] = None,
    limit: int = 100,
    backup_manager: BackupManager = Depends(get_backup_manager),
):
    """List restore jobs with optional status filter."""
    jobs = await backup_manager.jobs.list_jobs(status=status, limit=limit)
    return [RestoreStatusResponse.from_job(job) for job in jobs]


@router.get("/{job_id}", response_model=RestoreStatusResponse)
async def get_job(
    job_id: str,
    backup_manager: BackupManager = Depends(get_backup_manager),
):
    """Get specific job details."""
    try:
        job = await backup_manager.get_restore_status(job_id)
    except JobNotFoundError:
        raise JobNotFound(job_id)
    return RestoreStatusResponse.from_job(job)


@router.get("/{job_id}/stream")
async def stream_job_progress(
    job_id: str,
    backup_manager: BackupManager = Depends(get_backup_manager),
):
    """Stream restore progress updates via Server-Sent Events."""
    async def event_generator():
        last_status = None
        last_progress = None

        while True:
            try:
                job = await backup_manager.get_restore_status(job_id)
            except JobNotFoundError:
                yield f"data: {json.dumps({'error': 'Job not found'})}\n\n"
                break

            # Send update if status or progress changed
            if job.status != last_status or job.progress != last_progress:
                yield f"data: {RestoreStatusResponse.from_job(job).model_dump_json(by_alias=True)}\n\n"
                last_status = job.status
                last_progress = job.progress

            # Stop streaming once the job is terminal
            if job.is_terminal:
                break

            await asyncio.sleep(settings.stream_poll_interval)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )
