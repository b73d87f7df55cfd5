"""Grandfather-father-son rotation of scheduled backups."""

import calendar
from datetime import datetime, timedelta, tzinfo
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo

from .._utils import ensure_utc, logger, utc_now
from .catalog import BackupCatalog
from .errors import BackupError
from .models import BackupSet, BackupType, RetentionPolicy, SweepReport
from .utils import generate_backup_id


def subtract_months(value: datetime, months: int) -> datetime:
    """Same day and time ``months`` calendar months earlier, clamped to month end."""
    month_index = value.year * 12 + (value.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


class RetentionSweeper:
    """Classifies fresh snapshots into monthly/yearly tiers and prunes old entries.

    Classification is first-of-period: a snapshot becomes the Monthly entry
    of its calendar month if that month has none yet, and likewise for the
    year. Periods are computed in ``timezone``. Manual backups are never
    touched.
    """

    def __init__(self, catalog: BackupCatalog, timezone: str = "Africa/Cairo"):
        self.catalog = catalog
        self.tz: tzinfo = ZoneInfo(timezone)

    def _local(self, value: datetime) -> datetime:
        return ensure_utc(value).astimezone(self.tz)

    async def classify(self, snapshot: BackupSet) -> List[BackupSet]:
        """Add Monthly/Yearly entries for ``snapshot`` where its period has none."""
        if snapshot.type != BackupType.DAILY:
            return []

        local = self._local(snapshot.created_at)
        grouped = await self.catalog.list_grouped()

        added = []
        for backup_type, same_period in (
            (BackupType.MONTHLY, lambda b: (b.year, b.month) == (local.year, local.month)),
            (BackupType.YEARLY, lambda b: b.year == local.year),
        ):
            if any(same_period(self._local(b.created_at)) for b in grouped[backup_type.value]):
                continue

            entry = snapshot.model_copy(update={
                "id": generate_backup_id(backup_type, snapshot.created_at),
                "type": backup_type,
            })
            added.append(await self.catalog.add_entry(entry))
            logger.info(f"Classified {snapshot.id} as {backup_type.value} backup {entry.id}")

        return added

    def cutoffs(self, policy: RetentionPolicy, now: datetime) -> List[Tuple[BackupType, datetime]]:
        """Per-class cutoff; entries created strictly before it are expired. 0 disables a class."""
        now = ensure_utc(now)
        cutoffs = []
        if policy.retention_days > 0:
            cutoffs.append((BackupType.DAILY, now - timedelta(days=policy.retention_days)))
        if policy.retention_months > 0:
            cutoffs.append((BackupType.MONTHLY, subtract_months(now, policy.retention_months)))
        if policy.retention_years > 0:
            cutoffs.append((BackupType.YEARLY, subtract_months(now, policy.retention_years * 12)))
        return cutoffs

    async def prune(self, policy: RetentionPolicy, now: Optional[datetime] = None) -> Tuple[List[str], List[str]]:
        """Delete expired entries.

        Returns:
            (pruned ids, error messages); failures do not stop the sweep
        """
        now = now or utc_now()
        grouped = await self.catalog.list_grouped()

        pruned, errors = [], []
        for backup_type, cutoff in self.cutoffs(policy, now):
            for backup in grouped[backup_type.value]:
                if ensure_utc(backup.created_at) >= cutoff:
                    continue
                try:
                    if await self.catalog.delete_backup(backup.id):
                        pruned.append(backup.id)
                        logger.info(f"Pruned {backup_type.value} backup {backup.id}")
                except (BackupError, OSError) as e:
                    logger.error(f"Failed to prune {backup.id}: {e}")
                    errors.append(f"{backup.id}: {e}")

        return pruned, errors

    async def sweep(
        self,
        snapshot: Optional[BackupSet],
        policy: RetentionPolicy,
        now: Optional[datetime] = None,
    ) -> SweepReport:
        """Classify ``snapshot`` then prune. Never raises for catalog failures."""
        report = SweepReport()

        if snapshot is not None:
            try:
                report.classified = await self.classify(snapshot)
            except (BackupError, OSError) as e:
                logger.error(f"Failed to classify {snapshot.id}: {e}")
                report.errors.append(f"classify {snapshot.id}: {e}")

        try:
            report.pruned, prune_errors = await self.prune(policy, now)
            report.errors.extend(prune_errors)
        except (BackupError, OSError) as e:
            logger.error(f"Retention pruning failed: {e}")
            report.errors.append(f"prune: {e}")

        logger.info(
            f"Retention sweep: {len(report.classified)} classified, "
            f"{len(report.pruned)} pruned, {len(report.errors)} errors"
        )
        return report
