"""Storage backend abstraction for backup archives.

A backend knows how to list, delete and upload archives under a remote
path. Large files go through an upload session: one start call carrying
the first chunk, any number of appends at strictly increasing offsets and
a finish call that commits the assembled file to its final path.
"""

import shutil
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import List

from .exceptions import StorageError

ARCHIVE_SUFFIX = ".7z"


def normalize_remote_path(path: str) -> str:
    """Return ``path`` with exactly one leading slash and no trailing slash.

    Empty segments are dropped, so ``"backups//app/"`` becomes
    ``"/backups/app"`` and ``""`` becomes ``"/"``.
    """
    parts = [part for part in path.split("/") if part]
    return "/" + "/".join(parts)


def join_remote_path(*parts: str) -> str:
    """Join remote path segments and enforce the leading slash."""
    return normalize_remote_path("/".join(parts))


@dataclass(frozen=True)
class RemoteEntry:
    """One file entry returned by a remote listing."""

    path: str  # Display path, e.g. "/backups/app/20240101.030000.7z"

    @property
    def name(self) -> str:
        return PurePosixPath(self.path).name


class RemoteStorage(ABC):
    """Abstract base class for remote archive stores.

    Implementations raise StorageError (or a subclass such as RemoteError)
    on any failed operation and never retry on their own.
    """

    @abstractmethod
    def list_entries(self, path: str) -> List[RemoteEntry]:
        """List archive files directly under ``path``.

        Only entries whose name ends in the archive suffix are returned;
        everything else is silently excluded.
        """

    @abstractmethod
    def delete(self, path: str) -> None:
        """Delete the file at ``path``."""

    @abstractmethod
    def upload_small(self, local_path: Path, remote_path: str) -> None:
        """Upload a whole file in a single request.

        Uses "add" mode with auto-rename, so an existing file at
        ``remote_path`` is never overwritten.
        """

    @abstractmethod
    def start_session(self, first_chunk: bytes) -> str:
        """Open an upload session with its first chunk; return the session id."""

    @abstractmethod
    def append_session(self, session_id: str, offset: int, chunk: bytes) -> None:
        """Append ``chunk`` to the session; ``offset`` must equal bytes received so far."""

    @abstractmethod
    def finish_session(self, session_id: str, offset: int, remote_path: str) -> None:
        """Commit the session to ``remote_path`` in "add" mode without auto-rename."""


class LocalFilesystemStorage(RemoteStorage):
    """Storage backend for a local directory (including NFS/SMB mounts).

    Remote paths map onto ``base_path``. Upload sessions are staged as
    files under ``base_path/.sessions`` until finished.
    """

    SESSIONS_DIR = ".sessions"

    def __init__(self, base_path: Path):
        """Initialize local filesystem backend.

        Args:
            base_path: Absolute base directory for stored archives

        Raises:
            ValueError: If base_path is not absolute
        """
        self.base_path = Path(base_path)
        if not self.base_path.is_absolute():
            raise ValueError(f"base_path must be absolute: {base_path}")

    def _resolve(self, remote_path: str) -> Path:
        return self.base_path / normalize_remote_path(remote_path).lstrip("/")

    def _session_file(self, session_id: str) -> Path:
        return self.base_path / self.SESSIONS_DIR / session_id

    def list_entries(self, path: str) -> List[RemoteEntry]:
        folder = self._resolve(path)
        if not folder.is_dir():
            return []

        entries = []
        for item in sorted(folder.iterdir()):
            if item.is_file() and item.name.endswith(ARCHIVE_SUFFIX):
                entries.append(RemoteEntry(path=join_remote_path(path, item.name)))
        return entries

    def delete(self, path: str) -> None:
        target = self._resolve(path)
        if not target.is_file():
            raise StorageError(f"Archive not found: {path}", remote_path=path)
        try:
            target.unlink()
        except OSError as e:
            raise StorageError(f"Failed to delete {path}: {e}", remote_path=path) from e

    def upload_small(self, local_path: Path, remote_path: str) -> None:
        local_path = Path(local_path)
        if not local_path.exists():
            raise FileNotFoundError(f"Source file not found: {local_path}")

        dest_path = self._autorename(self._resolve(remote_path))
        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(local_path, dest_path)
        except OSError as e:
            raise StorageError(
                f"Failed to store {remote_path}: {e}", remote_path=remote_path
            ) from e

    def start_session(self, first_chunk: bytes) -> str:
        session_id = uuid.uuid4().hex
        session_file = self._session_file(session_id)
        try:
            session_file.parent.mkdir(parents=True, exist_ok=True)
            session_file.write_bytes(first_chunk)
        except OSError as e:
            raise StorageError(f"Failed to start upload session: {e}") from e
        return session_id

    def append_session(self, session_id: str, offset: int, chunk: bytes) -> None:
        session_file = self._checked_session(session_id, offset)
        try:
            with open(session_file, "ab") as f:
                f.write(chunk)
        except OSError as e:
            raise StorageError(
                f"Failed to append to session {session_id}: {e}", session_id=session_id
            ) from e

    def finish_session(self, session_id: str, offset: int, remote_path: str) -> None:
        session_file = self._checked_session(session_id, offset)
        dest_path = self._resolve(remote_path)
        if dest_path.exists():
            raise StorageError(
                f"Conflict: {remote_path} already exists", remote_path=remote_path
            )
        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(session_file), str(dest_path))
        except OSError as e:
            raise StorageError(
                f"Failed to commit session {session_id}: {e}", session_id=session_id
            ) from e

    def _checked_session(self, session_id: str, offset: int) -> Path:
        session_file = self._session_file(session_id)
        if not session_file.is_file():
            raise StorageError(f"Unknown upload session: {session_id}", session_id=session_id)

        received = session_file.stat().st_size
        if received != offset:
            raise StorageError(
                f"Incorrect offset for session {session_id}: got {offset}, expected {received}",
                session_id=session_id,
                correct_offset=received,
            )
        return session_file

    @staticmethod
    def _autorename(dest_path: Path) -> Path:
        """Return ``dest_path`` or the first free ``name (N).ext`` sibling."""
        if not dest_path.exists():
            return dest_path

        stem = dest_path.name[: -len(dest_path.suffix)] if dest_path.suffix else dest_path.name
        counter = 1
        while True:
            candidate = dest_path.with_name(f"{stem} ({counter}){dest_path.suffix}")
            if not candidate.exists():
                return candidate
            counter += 1
