"""Backup runner: archive, upload and prune each configured container."""

import logging
import shutil
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from .archiver import Archiver
from .catalog import format_backup_name
from .config import ContainerConfig
from .dependency_graph import DependencyGraph
from .docker_control import ContainerRuntime
from .exceptions import ContainerError, StorageError, VolbackError
from .logging_config import log_context
from .retention import RetentionOrchestrator, RetentionPolicy, RetentionSummary
from .storage_backend import RemoteStorage, join_remote_path
from .upload import DEFAULT_CHUNK_SIZE, upload_file

logger = logging.getLogger(__name__)

TEMP_DIR_PREFIX = "volback-"
STALE_TEMP_DIR_SECONDS = 24 * 60 * 60


class ContainerStatus(Enum):
    """Outcome of one container's backup."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ContainerResult:
    """Result of backing up a single container."""

    container: str
    backup_id: str
    status: ContainerStatus
    remote_path: Optional[str] = None
    error: Optional[str] = None
    retention: Optional[RetentionSummary] = None
    retention_error: Optional[str] = None
    duration: float = 0.0


@dataclass
class RunSummary:
    """Summary of a backup run over all containers."""

    results: List[ContainerResult] = field(default_factory=list)

    def _with_status(self, status: ContainerStatus) -> List[ContainerResult]:
        return [result for result in self.results if result.status is status]

    @property
    def succeeded(self) -> List[ContainerResult]:
        return self._with_status(ContainerStatus.SUCCEEDED)

    @property
    def failed(self) -> List[ContainerResult]:
        return self._with_status(ContainerStatus.FAILED)

    @property
    def skipped(self) -> List[ContainerResult]:
        return self._with_status(ContainerStatus.SKIPPED)

    @property
    def ok(self) -> bool:
        return all(result.status is ContainerStatus.SUCCEEDED for result in self.results)


def cleanup_stale_temp_dirs(temp_root: Path, max_age_seconds: float = STALE_TEMP_DIR_SECONDS) -> int:
    """Remove ``volback-*`` directories older than ``max_age_seconds``.

    Returns:
        Number of directories removed
    """
    temp_root = Path(temp_root)
    if not temp_root.is_dir():
        return 0

    removed = 0
    now = time.time()
    for entry in temp_root.iterdir():
        if not entry.is_dir() or not entry.name.startswith(TEMP_DIR_PREFIX):
            continue
        try:
            age = now - entry.stat().st_mtime
        except OSError:
            continue
        if age <= max_age_seconds:
            continue
        logger.info(f"Cleaning up old temporary directory: {entry}")
        try:
            shutil.rmtree(entry)
            removed += 1
        except OSError as e:
            logger.warning(f"Failed to remove old temporary directory {entry}: {e}")
    return removed


class BackupRunner:
    """Runs the backup pipeline for a set of containers.

    Containers are processed in dependency order. A failing container does
    not stop unrelated ones, but every container depending on it (directly
    or transitively) is skipped.
    """

    def __init__(
        self,
        storage: RemoteStorage,
        archiver: Archiver,
        runtime: ContainerRuntime,
        destination_path: str = "/",
        policy: Optional[RetentionPolicy] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        temp_root: Path = Path("/tmp"),
        fail_on_retention_error: bool = False,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize BackupRunner.

        Args:
            storage: Remote archive store
            archiver: Volume archiver
            runtime: Docker access for volumes and stop/start
            destination_path: Remote path prefix for all backup groups
            policy: Retention policy (default: disabled)
            chunk_size: Upload chunk size in bytes
            temp_root: Parent directory for per-run working directories
            fail_on_retention_error: Treat a failed retention pass as a container failure
            clock: Time source for archive names and temp directories
        """
        self.storage = storage
        self.archiver = archiver
        self.runtime = runtime
        self.destination_path = destination_path
        self.policy = policy if policy is not None else RetentionPolicy()
        self.chunk_size = chunk_size
        self.temp_root = Path(temp_root)
        self.fail_on_retention_error = fail_on_retention_error
        self.clock = clock

    def run(self, containers: Sequence[ContainerConfig]) -> RunSummary:
        """Back up every container.

        Raises:
            ConfigurationError: If dependencies are unknown or cyclic; raised
                before any container is touched
        """
        graph = DependencyGraph.from_containers(containers)
        by_name: Dict[str, ContainerConfig] = {c.container: c for c in containers}

        cleanup_stale_temp_dirs(self.temp_root)
        logger.info(f"Found {len(containers)} containers to process")

        summary = RunSummary()
        outcome: Dict[str, ContainerStatus] = {}
        for name in graph.topological_order():
            config = by_name[name]
            blocked = [
                dep for dep in graph.dependencies_of(name)
                if outcome.get(dep) is not ContainerStatus.SUCCEEDED
            ]
            if blocked:
                logger.warning(
                    f"Skipping container {name}: dependencies did not succeed: {', '.join(blocked)}"
                )
                result = ContainerResult(
                    container=name,
                    backup_id=config.backup_id,
                    status=ContainerStatus.SKIPPED,
                    error=f"Dependencies did not succeed: {', '.join(blocked)}",
                )
            else:
                result = self.backup_container(config)

            outcome[name] = result.status
            summary.results.append(result)

        logger.info(
            f"Backup run finished: {len(summary.succeeded)} succeeded, "
            f"{len(summary.failed)} failed, {len(summary.skipped)} skipped"
        )
        return summary

    def backup_container(self, config: ContainerConfig) -> ContainerResult:
        """Run the full pipeline for one container, capturing failures."""
        start_time = time.time()
        result = ContainerResult(
            container=config.container,
            backup_id=config.backup_id,
            status=ContainerStatus.SUCCEEDED,
        )

        with log_context(container=config.container, backup_id=config.backup_id):
            logger.info(f"Processing container: {config.container}")
            try:
                self._process(config, result)
            except (VolbackError, OSError) as e:
                logger.error(f"Backup of {config.container} failed: {e}")
                result.status = ContainerStatus.FAILED
                result.error = str(e)

        result.duration = time.time() - start_time
        return result

    def _process(self, config: ContainerConfig, result: ContainerResult) -> None:
        started_at = self.clock()
        work_dir = self.temp_root / (
            f"{TEMP_DIR_PREFIX}{config.container}-{started_at.strftime('%Y%m%d%H%M%S')}"
        )
        try:
            work_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create working directory {work_dir}: {e}") from e

        try:
            archive = self._archive(config, work_dir)

            remote_path = join_remote_path(
                self.destination_path, config.backup_id, format_backup_name(self.clock())
            )
            logger.info(f"Uploading backup to {remote_path}")
            upload_file(self.storage, archive, remote_path, chunk_size=self.chunk_size)
            result.remote_path = remote_path
            logger.info("Backup successfully uploaded")
        finally:
            logger.info(f"Cleaning up temporary directory: {work_dir}")
            shutil.rmtree(work_dir, ignore_errors=True)

        if self.policy.enabled:
            self._apply_retention(config, result)

    def _archive(self, config: ContainerConfig, work_dir: Path) -> Path:
        if config.stop:
            self.runtime.stop(config.container)

        try:
            volume_result = self.runtime.get_container_volumes(config.container)
            if not volume_result.succeeded:
                raise ContainerError(
                    f"Failed to get container volumes: {volume_result.error}",
                    container=config.container,
                )
            return self.archiver.run(config.container, volume_result.volumes, work_dir)
        finally:
            # Restart even when archiving failed so the service comes back up
            if config.stop:
                self.runtime.start(config.container)

    def _apply_retention(self, config: ContainerConfig, result: ContainerResult) -> None:
        retention_path = join_remote_path(self.destination_path, config.backup_id)
        orchestrator = RetentionOrchestrator(self.storage, self.policy)
        try:
            result.retention = orchestrator.apply(retention_path)
        except VolbackError as e:
            if self.fail_on_retention_error:
                raise
            logger.warning(f"Retention management failed for {retention_path}: {e}")
            result.retention_error = str(e)
