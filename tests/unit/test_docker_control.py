"""Tests for Docker volume enumeration and container control."""

from unittest.mock import MagicMock, patch

import pytest
from docker.errors import DockerException

from volback.docker_control import (
    API_TIMEOUT_SECONDS,
    STATUS_FAILED,
    STATUS_SUCCESS,
    STOP_TIMEOUT_SECONDS,
    ContainerRuntime,
    Volume,
)
from volback.exceptions import ContainerError

MOUNTS = [
    {
        "Type": "bind",
        "Source": "/srv/nextcloud/data",
        "Destination": "/var/www/html/data",
        "Mode": "rw",
        "RW": True,
    },
    {
        "Type": "volume",
        "Name": "nc_config",
        "Source": "/var/lib/docker/volumes/nc_config/_data",
        "Destination": "/var/www/html/config",
        "Mode": "z",
        "RW": False,
    },
]


class TestVolume:
    """Test suite for Volume."""

    def test_from_mount(self):
        """Test mapping a Docker mount description."""
        volume = Volume.from_mount(MOUNTS[1])
        assert volume.source == "/var/lib/docker/volumes/nc_config/_data"
        assert volume.destination == "/var/www/html/config"
        assert volume.type == "volume"
        assert volume.name == "nc_config"
        assert volume.read_only is True

    def test_from_mount_with_missing_fields(self):
        """Test that absent keys become empty defaults."""
        volume = Volume.from_mount({"Type": "tmpfs", "Destination": "/run"})
        assert volume.source == ""
        assert volume.read_only is False


class TestContainerRuntime:
    """Test suite for ContainerRuntime."""

    def test_get_container_volumes(self):
        """Test that mounts are read from the inspected container."""
        client = MagicMock()
        client.containers.get.return_value.attrs = {"Mounts": MOUNTS}

        result = ContainerRuntime(client).get_container_volumes("nextcloud")

        client.containers.get.assert_called_once_with("nextcloud")
        assert result.status == STATUS_SUCCESS
        assert result.succeeded is True
        assert [v.source for v in result.volumes] == [m["Source"] for m in MOUNTS]

    def test_get_container_volumes_without_mounts(self):
        """Test a container with no mounts."""
        client = MagicMock()
        client.containers.get.return_value.attrs = {"Mounts": None}

        result = ContainerRuntime(client).get_container_volumes("nextcloud")

        assert result.succeeded is True
        assert result.volumes == []

    def test_get_container_volumes_failure_is_reported(self):
        """Test that an inspection error is returned as a failed result."""
        client = MagicMock()
        client.containers.get.side_effect = DockerException("No such container: ghost")

        result = ContainerRuntime(client).get_container_volumes("ghost")

        assert result.status == STATUS_FAILED
        assert result.succeeded is False
        assert "No such container" in result.error

    def test_stop_uses_timeout(self):
        """Test that stop passes the graceful stop timeout."""
        client = MagicMock()

        ContainerRuntime(client).stop("db")

        client.containers.get.return_value.stop.assert_called_once_with(
            timeout=STOP_TIMEOUT_SECONDS
        )

    def test_stop_failure_raises(self):
        """Test that a failed stop raises ContainerError."""
        client = MagicMock()
        client.containers.get.return_value.stop.side_effect = DockerException("daemon gone")

        with pytest.raises(ContainerError, match="Failed to stop container db") as exc_info:
            ContainerRuntime(client).stop("db")

        assert exc_info.value.container == "db"

    def test_start_failure_raises(self):
        """Test that a failed start raises ContainerError."""
        client = MagicMock()
        client.containers.get.return_value.start.side_effect = DockerException("port in use")

        with pytest.raises(ContainerError, match="Failed to start container db"):
            ContainerRuntime(client).start("db")

    @patch("volback.docker_control.docker.from_env")
    def test_client_created_lazily_with_timeout(self, mock_from_env):
        """Test that the Docker client is created on first use."""
        runtime = ContainerRuntime()
        mock_from_env.assert_not_called()

        runtime.start("db")

        mock_from_env.assert_called_once_with(timeout=API_TIMEOUT_SECONDS)

    @patch("volback.docker_control.docker.from_env")
    def test_client_creation_failure_raises(self, mock_from_env):
        """Test that an unreachable daemon raises ContainerError."""
        mock_from_env.side_effect = DockerException("socket not found")

        with pytest.raises(ContainerError, match="Error initializing Docker client"):
            ContainerRuntime().get_container_volumes("db")
