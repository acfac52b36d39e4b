"""Tests for backup filename parsing and the backup catalog."""

from datetime import datetime

import pytest

from volback.catalog import (
    Backup,
    BackupCatalog,
    format_backup_name,
    parse_backup_timestamp,
)
from volback.exceptions import BackupNameError
from volback.storage_backend import RemoteEntry


class TestParseBackupTimestamp:
    """Test suite for parse_backup_timestamp."""

    def test_parses_name_with_suffix(self):
        """Test parsing a regular archive name."""
        assert parse_backup_timestamp("20240315.142530.7z") == datetime(2024, 3, 15, 14, 25, 30)

    def test_parses_name_without_suffix(self):
        """Test that the suffix is optional."""
        assert parse_backup_timestamp("20240315.142530") == datetime(2024, 3, 15, 14, 25, 30)

    @pytest.mark.parametrize(
        "filename",
        [
            "notes.7z",
            "2024031.142530.7z",
            "20240315142530.7z",
            "20240315-142530.7z",
            "20240315.14253.7z",
            "2024031a.142530.7z",
            "20241315.142530.7z",
            "20240230.120000.7z",
            "20240315.250000.7z",
            "",
        ],
    )
    def test_rejects_invalid_names(self, filename):
        """Test that malformed or impossible timestamps raise BackupNameError."""
        with pytest.raises(BackupNameError) as exc_info:
            parse_backup_timestamp(filename)
        assert exc_info.value.filename == filename

    def test_format_backup_name_round_trips(self):
        """Test that generated names parse back to the same moment."""
        moment = datetime(2024, 1, 1, 3, 0, 0)
        name = format_backup_name(moment)
        assert name == "20240101.030000.7z"
        assert parse_backup_timestamp(name) == moment


class TestBackupCatalog:
    """Test suite for BackupCatalog.build."""

    def test_build_keeps_input_order(self):
        """Test that valid entries become Backups without being sorted."""
        entries = [
            RemoteEntry("/app/20240102.030000.7z"),
            RemoteEntry("/app/20240101.030000.7z"),
        ]

        result = BackupCatalog().build(entries)

        assert result.backups == [
            Backup("/app/20240102.030000.7z", datetime(2024, 1, 2, 3, 0, 0)),
            Backup("/app/20240101.030000.7z", datetime(2024, 1, 1, 3, 0, 0)),
        ]
        assert result.skipped == []

    def test_build_skips_invalid_names_with_warning(self, caplog):
        """Test that unparsable names are reported, not returned."""
        entries = [
            RemoteEntry("/app/20240101.030000.7z"),
            RemoteEntry("/app/manual-copy.7z"),
        ]

        with caplog.at_level("WARNING", logger="volback.catalog"):
            result = BackupCatalog().build(entries)

        assert [b.remote_path for b in result.backups] == ["/app/20240101.030000.7z"]
        assert result.skipped == ["manual-copy.7z"]
        assert "Skipping file with invalid format: manual-copy.7z" in caplog.text

    def test_build_empty_listing(self):
        """Test that an empty listing yields an empty catalog."""
        result = BackupCatalog().build([])
        assert result.backups == []
        assert result.skipped == []
