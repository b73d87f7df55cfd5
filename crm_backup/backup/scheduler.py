"""Daily backup trigger running as a single asyncio task."""

import asyncio
from datetime import datetime, time, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional
from zoneinfo import ZoneInfo

from .._utils import ensure_utc, logger, utc_now
from .settings_store import SettingsStore


class BackupScheduler:
    """Fires ``job`` once a day at the policy's ``daily_time``.

    The policy is re-read on every check, so edits to the schedule apply
    without a restart and a disabled policy skips the run.
    """

    def __init__(
        self,
        job: Callable[[], Awaitable[Any]],
        settings: SettingsStore,
        timezone: str = "Africa/Cairo",
        poll_interval: float = 60.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.job = job
        self.settings = settings
        self.tz = ZoneInfo(timezone)
        self.poll_interval = poll_interval
        self._clock = clock
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def next_run(self, after: Optional[datetime] = None) -> datetime:
        """First trigger time strictly after ``after``, in UTC."""
        local = ensure_utc(after or self._clock()).astimezone(self.tz)
        hour, minute = self.settings.get().schedule_hour_minute

        candidate = datetime.combine(local.date(), time(hour, minute), tzinfo=self.tz)
        if candidate <= local:
            candidate = datetime.combine(local.date() + timedelta(days=1), time(hour, minute), tzinfo=self.tz)
        return candidate.astimezone(timezone.utc)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Backup scheduler started, next run at {self.next_run().isoformat()}")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Backup scheduler stopped")

    async def _loop(self) -> None:
        since = self._clock()
        while True:
            target = self.next_run(since)
            now = self._clock()
            if now >= target:
                await self.trigger()
                since = now
                continue
            await asyncio.sleep(min((target - now).total_seconds(), self.poll_interval))

    async def trigger(self) -> bool:
        """Run the job now unless the policy is disabled. Returns whether it ran."""
        if not self.settings.get().enabled:
            logger.info("Auto-backup is disabled, skipping")
            return False

        try:
            await self.job()
        except Exception as e:
            # One failed day must not stop the schedule.
            logger.error(f"Scheduled backup failed: {e}")
        return True
