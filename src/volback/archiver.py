"""Archive creation for container volumes.

The runner only depends on the ``Archiver`` interface. ``PackmateArchiver``
runs the ``dublok/packmate`` image through the docker CLI: one 7z archive
per volume into a staging directory, then a single combined archive
``<container>.7z`` built from that directory.
"""

import base64
import logging
import shutil
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Sequence

from .docker_control import Volume
from .exceptions import ArchiveError
from .storage_backend import ARCHIVE_SUFFIX

logger = logging.getLogger(__name__)

PACKMATE_IMAGE = "dublok/packmate:latest"
PACKMATE_OPTIONS = [
    "--compression=0",
    "--method=copy",
    "--multithreading=true",
    "--extra=-ms=off",
]


def archivable_volumes(volumes: Sequence[Volume]) -> List[Volume]:
    """Drop tmpfs mounts and mounts without a host source."""
    selected = []
    for volume in volumes:
        if volume.type == "tmpfs":
            logger.info(f"Skipping tmpfs volume {volume.destination}")
            continue
        if not volume.source:
            logger.info(f"Skipping volume with empty source ({volume.destination})")
            continue
        selected.append(volume)
    return selected


def volume_archive_name(volume: Volume) -> str:
    """Name of a volume's archive inside the combined archive."""
    return base64.standard_b64encode(volume.source.encode("utf-8")).decode("ascii")


class Archiver(ABC):
    """Produces one local archive holding every volume of a container."""

    @abstractmethod
    def run(self, container: str, volumes: Sequence[Volume], output_dir: Path) -> Path:
        """Archive ``volumes`` and return the path of ``<output_dir>/<container>.7z``.

        Raises:
            ArchiveError: If archiving fails or the final archive is missing
        """


class PackmateArchiver(Archiver):
    """Archiver backed by the packmate container image."""

    def __init__(self, docker_binary: str = "docker", image: str = PACKMATE_IMAGE):
        self.docker_binary = docker_binary
        self.image = image

    def _execute(self, args: List[str]) -> str:
        command = [self.docker_binary] + args
        logger.debug(f"Executing: {' '.join(command)}")
        try:
            result = subprocess.run(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                check=False,
            )
        except OSError as e:
            raise ArchiveError(f"Failed to execute {self.docker_binary}: {e}") from e

        if result.returncode != 0:
            logger.error(f"Command failed with output: {result.stdout}")
            raise ArchiveError(
                f"Command failed with exit code {result.returncode}: {' '.join(args[:2])}",
                exit_code=result.returncode,
                output=result.stdout,
            )
        return result.stdout

    def pull_image(self) -> None:
        logger.info(f"Pulling the latest version of {self.image}")
        self._execute(["pull", self.image])

    def _pack(self, source: str, output_dir: Path, name: str) -> None:
        self._execute(
            [
                "run",
                "--rm",
                "-v",
                f"{source}:/source:ro",
                "-v",
                f"{output_dir}:/output",
                self.image,
                "--name",
                name,
            ]
            + PACKMATE_OPTIONS
        )

    def run(self, container: str, volumes: Sequence[Volume], output_dir: Path) -> Path:
        output_dir = Path(output_dir)
        staging_dir = output_dir / "temp" / container
        try:
            staging_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ArchiveError(f"Failed to create staging directory {staging_dir}: {e}") from e

        self.pull_image()

        selected = archivable_volumes(volumes)
        for index, volume in enumerate(selected, start=1):
            logger.info(
                f"Archiving volume {index}/{len(selected)}: "
                f"{volume.source} -> {volume.destination} ({volume.type})"
            )
            self._pack(volume.source, staging_dir, volume_archive_name(volume))

        final_archive = output_dir / f"{container}{ARCHIVE_SUFFIX}"
        self._pack(str(staging_dir), output_dir, container)
        if not final_archive.exists():
            raise ArchiveError(f"Final archive was not created at {final_archive}")

        shutil.rmtree(output_dir / "temp", ignore_errors=True)
        return final_archive
