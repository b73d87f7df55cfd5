"""Restore job tracking: one background restore at a time, pollable by id."""

import asyncio
import time
from typing import Any, Dict, List, Optional, Tuple

import redis.asyncio as redis

from .._utils import generate_id, logger, utc_now
from .catalog import BackupCatalog
from .errors import ConflictError, JobNotFoundError, PartialMergeError
from .merger import RestoreMerger
from .models import BackupType, MergeCounts, RestoreJob, RestoreJobStatus
from .snapshot import SnapshotWriter

JOB_KEY_PREFIX = "restore_job:"
RUNNING_MARKER_KEY = "restore_lock:running"


class RestoreJobTracker:
    """Creates restore jobs, runs them in the background and records progress.

    Job records live in Redis (``SETEX`` with a TTL) when a client is given,
    otherwise in process memory with the same expiry. Exclusivity is a
    ``SET NX`` marker in Redis, or an in-process check-and-set.
    """

    def __init__(
        self,
        catalog: BackupCatalog,
        writer: SnapshotWriter,
        merger: RestoreMerger,
        redis_client: Optional[redis.Redis] = None,
        job_ttl: int = 604800,
    ):
        self.catalog = catalog
        self.writer = writer
        self.merger = merger
        self.redis = redis_client
        self.job_ttl = job_ttl

        self._jobs: Dict[str, Tuple[float, str]] = {}
        self._running_job_id: Optional[str] = None
        self._tasks: Dict[str, asyncio.Task] = {}

    async def start_restore(self, backup_id: str, backup_type: Optional[BackupType] = None) -> str:
        """Validate, register and launch a restore. Returns the job id immediately.

        Raises:
            BackupNotFoundError: unknown backup
            ConflictError: another restore is running; no job is created
        """
        if backup_type is None:
            backup = await self.catalog.get_metadata(backup_id)
        else:
            backup = await self.catalog.find(backup_type, backup_id)

        job_id = generate_id("restore-")
        await self._acquire(job_id)

        job = RestoreJob(
            id=job_id,
            started_at=utc_now(),
            backup_id=backup.id,
            backup_type=backup.type,
        )
        try:
            await self._save(job)
        except Exception:
            await self._release(job_id)
            raise

        task = asyncio.create_task(self._run(job))
        self._tasks[job_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job_id, None))

        logger.info(f"Created restore job {job_id} for backup {backup.id}")
        return job_id

    async def get_status(self, job_id: str) -> RestoreJob:
        job = await self._load(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def list_jobs(self, status: Optional[RestoreJobStatus] = None, limit: int = 100) -> List[RestoreJob]:
        """Recent jobs, newest first."""
        jobs = [job for job in await self._load_all() if status is None or job.status == status]
        jobs.sort(key=lambda j: j.started_at, reverse=True)
        return jobs[:limit]

    async def running_job_id(self) -> Optional[str]:
        if self.redis:
            value = await self.redis.get(RUNNING_MARKER_KEY)
            return value.decode("utf-8") if isinstance(value, bytes) else value
        return self._running_job_id

    async def wait(self, job_id: str) -> RestoreJob:
        """Wait for a job started by this process to finish."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.shield(task)
        return await self.get_status(job_id)

    async def drain(self) -> None:
        """Let in-flight restores finish; used on shutdown."""
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)

    async def _run(self, job: RestoreJob) -> None:
        summary: Optional[Dict[str, MergeCounts]] = None
        try:
            job = await self._update(job, progress=10, current_step="Creating safety backup",
                                     message="Creating safety backup...")
            safety = await self.writer.create_snapshot(BackupType.MANUAL)
            job = await self._update(job, safety_backup_ref=safety.id)
            logger.info(f"Restore job {job.id}: safety backup {safety.id}")

            job = await self._update(job, progress=20, current_step="Loading backup data",
                                     message="Loading backup data...")
            payload = await self.catalog.load_payload(job.backup_id)

            async def on_entity_start(entity: str, position: int, total: int) -> None:
                nonlocal job
                job = await self._update(
                    job,
                    progress=30 + (position - 1) * 60 // total,
                    current_step=f"Merging {entity}",
                    message=f"Merging {entity}...",
                )

            async def on_entity_done(entity: str, position: int, total: int, counts: MergeCounts) -> None:
                nonlocal job
                job = await self._update(job, progress=30 + position * 60 // total)

            summary = await self.merger.merge(payload, on_entity_start, on_entity_done)

            totals = job.model_copy(update={"result_summary": summary}).totals()
            await self._update(
                job,
                status=RestoreJobStatus.COMPLETED,
                progress=100,
                current_step="Completed",
                message=(
                    f"Restore completed! {totals.inserted} inserted, "
                    f"{totals.updated} updated, {totals.skipped} skipped"
                ),
                completed_at=utc_now(),
                result_summary=summary,
            )
            logger.info(f"Restore job {job.id} completed: {totals.model_dump()}")

        except PartialMergeError as e:
            logger.error(f"Restore job {job.id} failed in {e.entity}: {e}")
            await self._fail(job, e, e.summary)
        except Exception as e:
            logger.error(f"Restore job {job.id} failed: {e}")
            await self._fail(job, e, summary)
        finally:
            await self._release(job.id)

    async def _fail(self, job: RestoreJob, error: BaseException, summary: Optional[Dict[str, MergeCounts]]) -> None:
        await self._update(
            job,
            status=RestoreJobStatus.FAILED,
            current_step="Failed",
            message=f"Restore failed: {error}",
            error=str(error),
            completed_at=utc_now(),
            result_summary=summary,
        )

    async def _update(self, job: RestoreJob, **changes: Any) -> RestoreJob:
        if "progress" in changes:
            # Never move backwards.
            changes["progress"] = max(job.progress, changes["progress"])
        updated = job.model_copy(update=changes)
        await self._save(updated)
        return updated

    async def _acquire(self, job_id: str) -> None:
        if self.redis:
            acquired = await self.redis.set(RUNNING_MARKER_KEY, job_id, nx=True, ex=self.job_ttl)
            if not acquired:
                raise ConflictError(await self.running_job_id())
            return

        # No await between check and set.
        if self._running_job_id is not None:
            raise ConflictError(self._running_job_id)
        self._running_job_id = job_id

    async def _release(self, job_id: str) -> None:
        if self.redis:
            if await self.running_job_id() == job_id:
                await self.redis.delete(RUNNING_MARKER_KEY)
            return
        if self._running_job_id == job_id:
            self._running_job_id = None

    async def _save(self, job: RestoreJob) -> None:
        data = job.model_dump_json()
        if self.redis:
            await self.redis.setex(f"{JOB_KEY_PREFIX}{job.id}", self.job_ttl, data)
            return
        self._jobs[job.id] = (time.monotonic() + self.job_ttl, data)

    async def _load(self, job_id: str) -> Optional[RestoreJob]:
        if self.redis:
            data = await self.redis.get(f"{JOB_KEY_PREFIX}{job_id}")
            return RestoreJob.model_validate_json(data) if data else None

        self._expire()
        entry = self._jobs.get(job_id)
        return RestoreJob.model_validate_json(entry[1]) if entry else None

    async def _load_all(self) -> List[RestoreJob]:
        if not self.redis:
            self._expire()
            return [RestoreJob.model_validate_json(data) for _, data in self._jobs.values()]

        # Use SCAN instead of KEYS to avoid blocking Redis
        keys = []
        async for key in self.redis.scan_iter(match=f"{JOB_KEY_PREFIX}*", count=100):
            keys.append(key)

        jobs = []
        for key in keys:
            data = await self.redis.get(key)
            if data:
                jobs.append(RestoreJob.model_validate_json(data))
        return jobs

    def _expire(self) -> None:
        now = time.monotonic()
        for job_id in [job_id for job_id, (expires_at, _) in self._jobs.items() if expires_at <= now]:
            del self._jobs[job_id]
