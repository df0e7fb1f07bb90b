from dataclasses import dataclass
from datetime import datetime, timedelta

from .config import QueueSettings, queue_settings


@dataclass(frozen=True)
class BackoffPolicy:
    base_seconds: float = 2.0
    factor: float = 2.0
    cap_seconds: float = 300.0
    max_inflight_age_seconds: float = 24 * 3600

    @classmethod
    def from_settings(cls, settings: QueueSettings = queue_settings) -> "BackoffPolicy":
        return cls(
            base_seconds=settings.BACKOFF_BASE_SECONDS,
            factor=settings.BACKOFF_FACTOR,
            cap_seconds=settings.BACKOFF_CAP_SECONDS,
            max_inflight_age_seconds=settings.MAX_INFLIGHT_AGE_SECONDS,
        )

    def delay(self, retry_count: int) -> timedelta:
        if retry_count <= 0:
            return timedelta(0)
        seconds = min(self.cap_seconds, self.base_seconds * self.factor ** (retry_count - 1))
        return timedelta(seconds=seconds)

    def next_attempt_at(self, retry_count: int, now: datetime) -> datetime:
        return now + self.delay(retry_count)

    def is_expired(self, created_at: datetime, now: datetime) -> bool:
        return now - created_at > timedelta(seconds=self.max_inflight_age_seconds)
