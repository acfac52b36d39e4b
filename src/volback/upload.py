"""Chunked upload of archive files to remote storage.

Files up to the chunk size go up in a single request. Larger files use an
upload session: the first chunk opens the session, each further chunk is
appended at the current cursor offset and a final call commits the file.
Every chunk except the last is exactly ``chunk_size`` bytes.

The session lives only as long as this process. Any failure aborts it and
the next attempt starts from byte zero.
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Callable, Optional

from .exceptions import UploadSessionAborted, VolbackError
from .storage_backend import RemoteStorage, normalize_remote_path

logger = logging.getLogger(__name__)

MIB = 1024 * 1024
DEFAULT_CHUNK_SIZE = 150 * MIB

ProgressCallback = Callable[[int, int], None]


class SessionState(Enum):
    """Lifecycle of a chunked upload session."""

    NOT_STARTED = "not_started"
    STARTED = "started"
    APPENDING = "appending"
    FINISHED = "finished"
    ABORTED = "aborted"


@dataclass
class UploadSession:
    """Cursor state of one remote upload session."""

    session_id: str
    cursor_offset: int
    total_size: int
    chunk_size: int

    @property
    def remaining(self) -> int:
        return self.total_size - self.cursor_offset

    @property
    def next_chunk_size(self) -> int:
        return min(self.chunk_size, self.remaining)


@dataclass
class UploadResult:
    """What an upload did."""

    remote_path: str
    size_bytes: int
    chunked: bool
    chunks: int


def chunk_count(size: int, chunk_size: int) -> int:
    """Number of chunks needed for ``size`` bytes (at least one)."""
    return max(1, -(-size // chunk_size))


class ChunkedUploadSession:
    """Transfers one local file to one remote path.

    Instances are single use: once ``upload()`` has finished or aborted,
    the state is terminal.
    """

    def __init__(
        self,
        storage: RemoteStorage,
        local_path: Path,
        remote_path: str,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        """
        Initialize upload session.

        Args:
            storage: Target backend
            local_path: File to upload; must support seek
            remote_path: Destination path (leading slash enforced)
            chunk_size: Single-request size limit and chunk size in bytes
            progress_callback: Optional callback(bytes_sent, total_bytes)
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")

        self.storage = storage
        self.local_path = Path(local_path)
        self.remote_path = normalize_remote_path(remote_path)
        self.chunk_size = chunk_size
        self.progress_callback = progress_callback
        self.state = SessionState.NOT_STARTED
        self.session: Optional[UploadSession] = None

    def upload(self) -> UploadResult:
        """Upload the file, choosing single-shot or session mode by size.

        Raises:
            FileNotFoundError: If the local file does not exist
            VolbackError: If the single-shot upload fails
            UploadSessionAborted: If any session call fails
        """
        if self.state is not SessionState.NOT_STARTED:
            raise RuntimeError(f"Upload already {self.state.value}")

        file_size = os.path.getsize(self.local_path)
        logger.info(
            f"Starting upload of {self.local_path.name} to {self.remote_path} "
            f"({file_size / MIB:.2f} MB)"
        )

        if file_size <= self.chunk_size:
            logger.info("Small file detected - using simple upload")
            self.storage.upload_small(self.local_path, self.remote_path)
            self.state = SessionState.FINISHED
            self._report(file_size, file_size)
            return UploadResult(
                remote_path=self.remote_path, size_bytes=file_size, chunked=False, chunks=1
            )

        total_chunks = chunk_count(file_size, self.chunk_size)
        logger.info(
            f"Large file detected - using chunked upload "
            f"({total_chunks} chunks of {self.chunk_size / MIB:.2f} MB)"
        )
        with open(self.local_path, "rb") as f:
            self._start(f, file_size)
            while self.session.cursor_offset < file_size:
                self._append(f, total_chunks)
        self._finish()

        logger.info(f"Upload completed successfully: {self.remote_path}")
        return UploadResult(
            remote_path=self.remote_path, size_bytes=file_size, chunked=True, chunks=total_chunks
        )

    def _start(self, f: BinaryIO, file_size: int) -> None:
        first_chunk = f.read(self.chunk_size)
        try:
            session_id = self.storage.start_session(first_chunk)
        except VolbackError as e:
            self._abort(f"Failed to start upload session: {e}", 0, e)

        self.session = UploadSession(
            session_id=session_id,
            cursor_offset=len(first_chunk),
            total_size=file_size,
            chunk_size=self.chunk_size,
        )
        self.state = SessionState.STARTED
        logger.info(f"Upload session {session_id} started with {len(first_chunk)} bytes")
        self._report(self.session.cursor_offset, file_size)

    def _append(self, f: BinaryIO, total_chunks: int) -> None:
        session = self.session
        offset = session.cursor_offset
        size = session.next_chunk_size
        chunk_number = offset // self.chunk_size + 1

        f.seek(offset)
        chunk = f.read(size)
        if len(chunk) != size:
            self._abort(
                f"Short read at offset {offset}: expected {size} bytes, got {len(chunk)}",
                offset,
            )

        logger.info(
            f"Uploading chunk {chunk_number}/{total_chunks} "
            f"(offset {offset / MIB:.2f} MB, size {size / MIB:.2f} MB)"
        )
        try:
            self.storage.append_session(session.session_id, offset, chunk)
        except VolbackError as e:
            self._abort(f"Failed to append chunk at offset {offset}: {e}", offset, e)

        session.cursor_offset = offset + size
        self.state = SessionState.APPENDING
        self._report(session.cursor_offset, session.total_size)

    def _finish(self) -> None:
        session = self.session
        logger.info("Finalizing upload")
        try:
            self.storage.finish_session(
                session.session_id, session.cursor_offset, self.remote_path
            )
        except VolbackError as e:
            self._abort(f"Failed to finish upload session: {e}", session.cursor_offset, e)
        self.state = SessionState.FINISHED

    def _abort(self, message: str, offset: int, cause: Optional[Exception] = None) -> None:
        self.state = SessionState.ABORTED
        session_id = self.session.session_id if self.session else None
        logger.error(message)
        raise UploadSessionAborted(
            message,
            session_id=session_id,
            offset=offset,
            remote_path=self.remote_path,
        ) from cause

    def _report(self, sent: int, total: int) -> None:
        if self.progress_callback:
            self.progress_callback(sent, total)


def upload_file(
    storage: RemoteStorage,
    local_path: Path,
    remote_path: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    progress_callback: Optional[ProgressCallback] = None,
) -> UploadResult:
    """Upload ``local_path`` to ``remote_path`` with a fresh session."""
    return ChunkedUploadSession(
        storage,
        local_path,
        remote_path,
        chunk_size=chunk_size,
        progress_callback=progress_callback,
    ).upload()
