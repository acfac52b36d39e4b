"""Time-bucketed retention for remote backups.

Backups are kept per calendar period in four tiers, finest first:

- daily:   newest backup of each calendar day
- weekly:  newest backup of each ISO week
- monthly: newest backup of each calendar month
- yearly:  newest backup of each calendar year

Each tier keeps at most its configured count. A backup claimed by one tier
is never considered again by a coarser tier, so the number of kept backups
never exceeds the sum of the four counts. Everything not kept is deleted.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Hashable, List, Optional, Sequence

from .catalog import Backup, BackupCatalog
from .exceptions import VolbackError
from .storage_backend import RemoteStorage, normalize_remote_path

logger = logging.getLogger(__name__)


class Granularity(Enum):
    """Retention tiers in evaluation order."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


PERIOD_KEYS: Dict[Granularity, Callable[[datetime], Hashable]] = {
    Granularity.DAILY: lambda dt: dt.date(),
    Granularity.WEEKLY: lambda dt: tuple(dt.isocalendar())[:2],
    Granularity.MONTHLY: lambda dt: (dt.year, dt.month),
    Granularity.YEARLY: lambda dt: dt.year,
}


@dataclass(frozen=True)
class RetentionPolicy:
    """How many distinct-period backups to keep per tier; 0 disables a tier."""

    keep_daily: int = 0
    keep_weekly: int = 0
    keep_monthly: int = 0
    keep_yearly: int = 0

    def __post_init__(self) -> None:
        for granularity in Granularity:
            if self.count_for(granularity) < 0:
                raise ValueError(f"keep_{granularity.value} must be >= 0")

    def count_for(self, granularity: Granularity) -> int:
        count: int = getattr(self, f"keep_{granularity.value}")
        return count

    @property
    def enabled(self) -> bool:
        return any(self.count_for(granularity) > 0 for granularity in Granularity)

    @property
    def max_kept(self) -> int:
        return sum(self.count_for(granularity) for granularity in Granularity)


def sort_newest_first(backups: Sequence[Backup]) -> List[Backup]:
    """Sort by timestamp descending; equal timestamps keep input order."""
    return sorted(backups, key=lambda backup: backup.timestamp, reverse=True)


def compute_keep_set(
    backups: Sequence[Backup], policy: RetentionPolicy
) -> Dict[str, Granularity]:
    """Decide which backups to keep.

    Args:
        backups: Backups in any order
        policy: Per-tier retention counts

    Returns:
        Mapping of remote path to the tier that claimed it. A path absent
        from the mapping is to be deleted.
    """
    ordered = sort_newest_first(backups)
    keep: Dict[str, Granularity] = {}

    for granularity in Granularity:
        limit = policy.count_for(granularity)
        if limit <= 0:
            continue

        period_key = PERIOD_KEYS[granularity]
        used_periods = set()
        selected = 0
        for backup in ordered:
            if selected >= limit:
                break
            if backup.remote_path in keep:
                continue
            period = period_key(backup.timestamp)
            if period in used_periods:
                continue
            used_periods.add(period)
            keep[backup.remote_path] = granularity
            selected += 1

    return keep


@dataclass
class DeleteFailure:
    """A backup that should have been deleted but could not be."""

    remote_path: str
    error: str


@dataclass
class RetentionSummary:
    """Outcome of one retention pass."""

    path: str
    kept: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    failed: List[DeleteFailure] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def kept_count(self) -> int:
        return len(self.kept)

    @property
    def deleted_count(self) -> int:
        return len(self.deleted)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @property
    def complete(self) -> bool:
        return not self.failed


class RetentionOrchestrator:
    """Lists backups, applies the policy and deletes what is not kept."""

    def __init__(
        self,
        storage: RemoteStorage,
        policy: RetentionPolicy,
        catalog: Optional[BackupCatalog] = None,
    ):
        """
        Initialize RetentionOrchestrator.

        Args:
            storage: Backend holding the backups
            policy: Retention counts per tier
            catalog: Filename parser (default: BackupCatalog())
        """
        self.storage = storage
        self.policy = policy
        self.catalog = catalog if catalog is not None else BackupCatalog()

    def apply(self, path: str, dry_run: bool = False) -> RetentionSummary:
        """Prune the backups stored directly under ``path``.

        Listing errors propagate. Delete errors are logged, recorded in the
        summary and do not stop the remaining deletions.

        Args:
            path: Remote folder holding one backup group
            dry_run: Report what would be deleted without deleting

        Returns:
            RetentionSummary with kept, deleted, failed and skipped entries
        """
        path = normalize_remote_path(path)
        logger.info(f"Managing backup retention in {path}")

        catalog = self.catalog.build(self.storage.list_entries(path))
        summary = RetentionSummary(path=path, skipped=catalog.skipped, dry_run=dry_run)

        if not catalog.backups:
            logger.info("No backups found to process")
            return summary

        keep = compute_keep_set(catalog.backups, self.policy)

        for backup in sort_newest_first(catalog.backups):
            if backup.remote_path in keep:
                logger.info(
                    f"Keeping {keep[backup.remote_path].value} backup: {backup.remote_path}"
                )
                summary.kept.append(backup.remote_path)
                continue

            if dry_run:
                logger.info(f"Would delete old backup: {backup.remote_path}")
                summary.deleted.append(backup.remote_path)
                continue

            logger.info(f"Deleting old backup: {backup.remote_path}")
            try:
                self.storage.delete(backup.remote_path)
            except VolbackError as e:
                logger.warning(f"Failed to delete backup {backup.remote_path}: {e}")
                summary.failed.append(DeleteFailure(remote_path=backup.remote_path, error=str(e)))
                continue
            summary.deleted.append(backup.remote_path)

        logger.info(
            f"Retention completed for {path}: kept {summary.kept_count}, "
            f"deleted {summary.deleted_count}, failed {summary.failed_count}"
        )
        return summary
