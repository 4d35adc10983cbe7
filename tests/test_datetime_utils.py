"""
Tests for datetime_utils module.
"""
import pytest
from datetime import datetime, timezone, timedelta
from app.utils.datetime_utils import (
    utc_now,
    parse_db_timestamp,
    is_older,
    time_ago,
)


class TestUtcNow:
    """Test utc_now() function."""

    def test_returns_timezone_aware(self):
        """utc_now() returns timezone-aware datetime."""
        now = utc_now()
        assert now.tzinfo == timezone.utc
        assert abs((now - datetime.now(timezone.utc)).total_seconds()) < 1


class TestParseDbTimestamp:
    """Test parse_db_timestamp() function."""

    def test_none_and_empty(self):
        """None and empty string return None."""
        assert parse_db_timestamp(None) is None
        assert parse_db_timestamp("") is None

    def test_iso_with_z_suffix(self):
        """Parses ISO format with Z suffix."""
        result = parse_db_timestamp("2024-01-13T12:00:00Z")
        assert result == datetime(2024, 1, 13, 12, 0, tzinfo=timezone.utc)

    def test_iso_with_offset(self):
        """Parses ISO format with an explicit offset."""
        result = parse_db_timestamp("2024-01-13T14:00:00+02:00")
        assert result == datetime(2024, 1, 13, 12, 0, tzinfo=timezone.utc)

    def test_naive_datetime_becomes_utc(self):
        """Naive datetime input is assumed UTC."""
        result = parse_db_timestamp(datetime(2024, 1, 13, 12, 0, 0))
        assert result.tzinfo == timezone.utc

    def test_invalid_input_returns_none(self):
        """Unparseable values return None."""
        assert parse_db_timestamp("not-a-date") is None
        assert parse_db_timestamp(12345) is None


class TestIsOlder:
    """Test is_older() used when merging change events."""

    def test_strictly_older(self):
        """An earlier revision is older."""
        assert is_older("2024-01-13T11:00:00Z", "2024-01-13T12:00:00Z") is True

    def test_equal_is_not_older(self):
        """Same timestamp is not older, so the incoming copy wins."""
        assert is_older("2024-01-13T12:00:00Z", "2024-01-13T12:00:00+00:00") is False

    def test_newer_is_not_older(self):
        """A later revision is not older."""
        assert is_older("2024-01-13T13:00:00Z", "2024-01-13T12:00:00Z") is False

    @pytest.mark.parametrize("candidate,reference", [
        (None, "2024-01-13T12:00:00Z"),
        ("2024-01-13T12:00:00Z", None),
        ("garbage", "2024-01-13T12:00:00Z"),
    ])
    def test_missing_timestamps_never_older(self, candidate, reference):
        """Without both timestamps nothing counts as older."""
        assert is_older(candidate, reference) is False


class TestTimeAgo:
    """Test time_ago() labels."""

    NOW = datetime(2024, 1, 13, 12, 0, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize("delta,label", [
        (timedelta(seconds=5), "5 sec ago"),
        (timedelta(minutes=5), "5 min ago"),
        (timedelta(hours=3), "3 hr ago"),
        (timedelta(days=2), "2 days ago"),
    ])
    def test_labels(self, delta, label):
        """Each range gets its own unit."""
        assert time_ago(self.NOW - delta, now=self.NOW) == label

    def test_future_clamped_to_zero(self):
        """Clock skew never yields a negative age."""
        assert time_ago(self.NOW + timedelta(seconds=30), now=self.NOW) == "0 sec ago"

    def test_unparseable_is_empty(self):
        """No timestamp, no label."""
        assert time_ago(None) == ""
