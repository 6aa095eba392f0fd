"""Tests for the artifacts module."""

from datetime import datetime

from vpsbackup.backup.artifacts import Artifact, parse_artifact_name, select_expired


class TestArtifact:
    """Test cases for artifact naming."""

    def test_names(self) -> None:
        """Test the artifact, archive and checksum names."""
        artifact = Artifact("web-01", datetime(2024, 3, 1, 2, 30, 5))

        assert artifact.name == "backup-web-01-20240301-023005.tar.gz.enc"
        assert artifact.archive_name == "backup-web-01-20240301-023005.tar.gz"
        assert artifact.checksum_name == "backup-web-01-20240301-023005.tar.gz.enc.sha256"

    def test_for_now_uses_clock(self) -> None:
        """Test the injected clock stamps the artifact."""
        artifact = Artifact.for_now("web-01", lambda: datetime(2024, 1, 2, 3, 4, 5, 678))
        assert artifact.created_at == datetime(2024, 1, 2, 3, 4, 5)


class TestParseArtifactName:
    """Test cases for recovering artifacts from remote names."""

    def test_full_timestamp(self) -> None:
        """Test the standard stamp."""
        artifact = parse_artifact_name("backup-web-01-20240301-023005.tar.gz.enc", "web-01")
        assert artifact == Artifact("web-01", datetime(2024, 3, 1, 2, 30, 5))

    def test_date_only_stamp(self) -> None:
        """Test date-only stamps are accepted."""
        artifact = parse_artifact_name("backup-web-01-20240301.tar.gz.enc", "web-01")
        assert artifact == Artifact("web-01", datetime(2024, 3, 1))

    def test_foreign_names(self) -> None:
        """Test names that are not this host's artifacts."""
        assert parse_artifact_name("backup-web-01-20240301.tar.gz.enc.sha256", "web-01") is None
        assert parse_artifact_name("backup-db-20240301.tar.gz.enc", "web-01") is None
        assert parse_artifact_name("backup-web-01-latest.tar.gz.enc", "web-01") is None
        assert parse_artifact_name("backup-web-01-20241399.tar.gz.enc", "web-01") is None
        assert parse_artifact_name("notes.txt", "web-01") is None

    def test_host_prefix_does_not_match_longer_host(self) -> None:
        """Test host 'web' never claims artifacts of host 'web-01'."""
        assert parse_artifact_name("backup-web-01-20240301.tar.gz.enc", "web") is None


class TestSelectExpired:
    """Test cases for max-keep selection."""

    NAMES = [
        "backup-h-20240101.tar.gz.enc",
        "backup-h-20240102.tar.gz.enc",
        "backup-h-20240103.tar.gz.enc",
        "backup-h-20240101.tar.gz.enc.sha256",
        "backup-other-20230101.tar.gz.enc",
    ]

    def test_keeps_newest(self) -> None:
        """Test the oldest artifact beyond max_keep is selected."""
        assert select_expired(self.NAMES, "h", 2) == ["backup-h-20240101.tar.gz.enc"]

    def test_orders_by_timestamp_not_listing(self) -> None:
        """Test mixed stamp formats sort chronologically."""
        names = [
            "backup-h-20240102-000001.tar.gz.enc",
            "backup-h-20240102.tar.gz.enc",
            "backup-h-20240101-235959.tar.gz.enc",
        ]
        assert select_expired(names, "h", 1) == [
            "backup-h-20240102.tar.gz.enc",
            "backup-h-20240101-235959.tar.gz.enc",
        ]

    def test_nothing_expired(self) -> None:
        """Test fewer artifacts than max_keep."""
        assert select_expired(self.NAMES, "h", 3) == []

    def test_zero_disables_pruning(self) -> None:
        """Test max_keep 0 selects nothing."""
        assert select_expired(self.NAMES, "h", 0) == []
