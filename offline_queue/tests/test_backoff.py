from datetime import datetime, timedelta, timezone

import pytest

from offline_queue.backoff import BackoffPolicy
from offline_queue.config import QueueSettings

T0 = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


class TestBackoffPolicy:
    @pytest.mark.parametrize("retry_count,seconds", [(0, 0), (1, 2), (2, 4), (3, 8), (6, 64)])
    def test_delay_doubles(self, retry_count, seconds):
        """Test the delay grows geometrically from the base."""
        assert BackoffPolicy().delay(retry_count) == timedelta(seconds=seconds)

    def test_delay_is_capped(self):
        """Test the delay never exceeds the cap."""
        policy = BackoffPolicy(cap_seconds=60)

        assert policy.delay(20) == timedelta(seconds=60)

    def test_next_attempt_at(self):
        """Test the next attempt is now plus the delay."""
        assert BackoffPolicy().next_attempt_at(2, T0) == T0 + timedelta(seconds=4)

    def test_expiry(self):
        """Test items are expired only once strictly past the max age."""
        policy = BackoffPolicy(max_inflight_age_seconds=3600)

        assert policy.is_expired(T0, T0 + timedelta(hours=1)) is False
        assert policy.is_expired(T0, T0 + timedelta(hours=1, seconds=1)) is True

    def test_from_settings(self):
        """Test the policy reads its knobs from queue settings."""
        settings = QueueSettings(
            BACKOFF_BASE_SECONDS=1, BACKOFF_FACTOR=3, BACKOFF_CAP_SECONDS=10, MAX_INFLIGHT_AGE_SECONDS=5
        )

        policy = BackoffPolicy.from_settings(settings)

        assert policy.delay(3) == timedelta(seconds=9)
        assert policy.delay(4) == timedelta(seconds=10)
        assert policy.max_inflight_age_seconds == 5
