"""Backup catalog: turn a remote listing into timestamped backups.

Archive names carry their creation time as ``YYYYMMDD.HHMMSS.7z`` in the
local time zone of the host that produced them. Files that do not follow
the layout are reported and left alone; they are never deleted.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List

from .exceptions import BackupNameError
from .storage_backend import ARCHIVE_SUFFIX, RemoteEntry

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d.%H%M%S"


@dataclass(frozen=True)
class Backup:
    """One archived snapshot stored remotely."""

    remote_path: str
    timestamp: datetime


def parse_backup_timestamp(filename: str) -> datetime:
    """Parse the timestamp embedded in a backup filename.

    Args:
        filename: Base name such as ``20240101.030000.7z``

    Returns:
        Naive datetime in local time

    Raises:
        BackupNameError: If the name does not match ``YYYYMMDD.HHMMSS[.7z]``
    """
    stem = filename[: -len(ARCHIVE_SUFFIX)] if filename.endswith(ARCHIVE_SUFFIX) else filename

    # strptime accepts single-digit fields; the layout requires fixed width
    digits = stem[:8] + stem[9:]
    if len(stem) != 15 or stem[8] != "." or not (digits.isascii() and digits.isdigit()):
        raise BackupNameError(f"Not a backup filename: {filename}", filename=filename)

    try:
        return datetime.strptime(stem, TIMESTAMP_FORMAT)
    except ValueError as e:
        raise BackupNameError(
            f"Invalid backup timestamp in {filename}: {e}", filename=filename
        ) from e


def format_backup_name(moment: datetime) -> str:
    """Return the archive filename for a backup taken at ``moment``."""
    return moment.strftime(TIMESTAMP_FORMAT) + ARCHIVE_SUFFIX


@dataclass
class CatalogResult:
    """Parsed backups plus the names that were skipped."""

    backups: List[Backup] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


class BackupCatalog:
    """Builds typed Backup records from raw remote entries."""

    def parse(self, filename: str) -> datetime:
        return parse_backup_timestamp(filename)

    def build(self, entries: Iterable[RemoteEntry]) -> CatalogResult:
        """Parse every entry, dropping those without a valid timestamp.

        Survivors keep their input order; no sorting happens here.
        """
        result = CatalogResult()
        for entry in entries:
            try:
                timestamp = self.parse(entry.name)
            except BackupNameError:
                logger.warning(f"Skipping file with invalid format: {entry.name}")
                result.skipped.append(entry.name)
                continue
            result.backups.append(Backup(remote_path=entry.path, timestamp=timestamp))
        return result
