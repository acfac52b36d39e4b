"""Docker Engine access: volume enumeration and container stop/start."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import docker
from docker.errors import DockerException

from .exceptions import ContainerError

logger = logging.getLogger(__name__)

API_TIMEOUT_SECONDS = 30
STOP_TIMEOUT_SECONDS = 10

STATUS_SUCCESS = "Success"
STATUS_FAILED = "Failed"


@dataclass
class Volume:
    """One mount of a container as reported by the Docker API."""

    source: str
    destination: str
    mode: str = ""
    read_only: bool = False
    type: str = ""
    name: str = ""

    @classmethod
    def from_mount(cls, mount: Dict[str, Any]) -> "Volume":
        return cls(
            source=mount.get("Source", ""),
            destination=mount.get("Destination", ""),
            mode=mount.get("Mode", ""),
            read_only=not mount.get("RW", True),
            type=mount.get("Type", ""),
            name=mount.get("Name", ""),
        )


@dataclass
class VolumeResult:
    """Result of enumerating a container's volumes."""

    container: str
    status: str
    volumes: List[Volume] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_SUCCESS


class ContainerRuntime:
    """Thin wrapper over the docker SDK used by the backup runner."""

    def __init__(self, client: Optional[docker.DockerClient] = None):
        """
        Initialize container runtime.

        Args:
            client: Optional DockerClient (default: from environment, 30s API timeout)
        """
        self._client = client

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            try:
                self._client = docker.from_env(timeout=API_TIMEOUT_SECONDS)
            except DockerException as e:
                raise ContainerError(f"Error initializing Docker client: {e}") from e
        return self._client

    def get_container_volumes(self, name: str) -> VolumeResult:
        """Inspect ``name`` and return its mounts.

        Inspection failures are reported through the result status rather
        than raised.
        """
        try:
            container = self.client.containers.get(name)
        except DockerException as e:
            logger.error(f"Failed to inspect container {name}: {e}")
            return VolumeResult(container=name, status=STATUS_FAILED, error=str(e))

        mounts = container.attrs.get("Mounts") or []
        volumes = [Volume.from_mount(mount) for mount in mounts]
        return VolumeResult(container=name, status=STATUS_SUCCESS, volumes=volumes)

    def stop(self, name: str) -> None:
        logger.info(f"Stopping container {name}")
        try:
            self.client.containers.get(name).stop(timeout=STOP_TIMEOUT_SECONDS)
        except DockerException as e:
            raise ContainerError(f"Failed to stop container {name}: {e}", container=name) from e

    def start(self, name: str) -> None:
        logger.info(f"Starting container {name}")
        try:
            self.client.containers.get(name).start()
        except DockerException as e:
            raise ContainerError(f"Failed to start container {name}: {e}", container=name) from e
