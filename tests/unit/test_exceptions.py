"""Tests for custom exception hierarchy."""

import pytest

from volback.exceptions import (
    ArchiveError,
    AuthenticationError,
    BackupNameError,
    ConfigurationError,
    ContainerError,
    DependencyCycleError,
    NetworkError,
    RemoteError,
    StorageError,
    UploadSessionAborted,
    VolbackError,
)


class TestExceptionHierarchy:
    """Test suite for custom exception hierarchy."""

    def test_base_exception_is_volback_error(self):
        """Test that base exception is VolbackError."""
        error = VolbackError("Test error")
        assert isinstance(error, Exception)
        assert str(error) == "Test error"

    @pytest.mark.parametrize(
        "exc_class",
        [
            AuthenticationError,
            ConfigurationError,
            NetworkError,
            StorageError,
            ArchiveError,
            ContainerError,
            BackupNameError,
            UploadSessionAborted,
        ],
    )
    def test_all_errors_inherit_from_base(self, exc_class):
        """Test that every tool error can be caught as VolbackError."""
        with pytest.raises(VolbackError, match="boom"):
            raise exc_class("boom")

    def test_remote_error_is_storage_error(self):
        """Test that RemoteError is a StorageError carrying status and body."""
        error = RemoteError("Dropbox delete failed", status=409, body='{"error": "not_found"}')
        assert isinstance(error, StorageError)
        assert error.status == 409
        assert error.body == '{"error": "not_found"}'

    def test_dependency_cycle_error_is_configuration_error(self):
        """Test that a dependency cycle is a configuration problem."""
        error = DependencyCycleError("cycle", cycle=["a", "b", "a"])
        assert isinstance(error, ConfigurationError)
        assert error.cycle == ["a", "b", "a"]

    def test_dependency_cycle_error_defaults_to_empty_cycle(self):
        """Test that cycle defaults to an empty list."""
        assert DependencyCycleError("cycle").cycle == []


class TestExceptionContext:
    """Test suite for context stored on exceptions."""

    def test_kwargs_become_attributes(self):
        """Test that arbitrary context kwargs are stored as attributes."""
        error = StorageError("failed", remote_path="/backups/app/x.7z", correct_offset=10)
        assert error.remote_path == "/backups/app/x.7z"
        assert error.correct_offset == 10
        assert error.message == "failed"

    def test_network_error_is_retryable_by_default(self):
        """Test NetworkError retryable flag default and override."""
        assert NetworkError("timeout").retryable is True
        assert NetworkError("bad", retryable=False).retryable is False

    def test_upload_session_aborted_defaults(self):
        """Test UploadSessionAborted default session id and offset."""
        error = UploadSessionAborted("start failed")
        assert error.session_id is None
        assert error.offset == 0

    def test_upload_session_aborted_with_context(self):
        """Test UploadSessionAborted keeps session id, offset and extras."""
        error = UploadSessionAborted(
            "append failed", session_id="sess-1", offset=300, remote_path="/b/x.7z"
        )
        assert error.session_id == "sess-1"
        assert error.offset == 300
        assert error.remote_path == "/b/x.7z"

    def test_backup_name_error_keeps_filename(self):
        """Test BackupNameError exposes the offending filename."""
        error = BackupNameError("bad name", filename="notes.7z")
        assert error.filename == "notes.7z"

    def test_container_error_keeps_container(self):
        """Test ContainerError exposes the container name."""
        error = ContainerError("stop failed", container="db")
        assert error.container == "db"

    def test_exception_chaining_preserved(self):
        """Test that raise ... from keeps the original cause."""
        original = ValueError("original")
        try:
            raise AuthenticationError("wrapped") from original
        except AuthenticationError as e:
            assert e.__cause__ is original
