"""Typed rate-limit telemetry consumed by the scheduler.

Telemetry is produced elsewhere (from response headers or usage polling);
it is validated once here and then read as plain attributes.
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field, field_validator

from code_accounts.utils.datetime_utils import ensure_utc


class RateLimitSnapshot(BaseModel):
    """Latest quota reading for one account."""

    model_config = ConfigDict(frozen=True)

    account_id: str = Field(..., min_length=1)
    used_percent: float = Field(..., description="Percent of the window quota used")
    window_minutes: int = Field(..., ge=0, description="Length of the quota window")
    reset_at: datetime | None = Field(default=None, description="Absolute reset time")
    reset_after_seconds: float | None = Field(
        default=None, ge=0, description="Reset countdown as of captured_at"
    )
    captured_at: datetime | None = None

    @field_validator("reset_at", "captured_at", mode="after")
    @classmethod
    def normalize_datetimes(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v)

    @property
    def window_seconds(self) -> float:
        return max(self.window_minutes, 1) * 60.0

    def seconds_until_reset(self, now: datetime) -> float | None:
        """Seconds from now until the window resets, or None if unknown."""
        if self.reset_at is not None:
            return max((self.reset_at - now).total_seconds(), 0.0)
        if self.reset_after_seconds is None:
            return None
        if self.captured_at is None:
            return self.reset_after_seconds
        elapsed = (now - self.captured_at).total_seconds()
        return max(self.reset_after_seconds - elapsed, 0.0)


class TelemetrySource(Protocol):
    """Anything able to list the latest snapshot per account."""

    def list_snapshots(self) -> Iterable[RateLimitSnapshot]: ...


class InMemoryTelemetry:
    """Keeps the most recent snapshot per account id."""

    def __init__(self, snapshots: Iterable[RateLimitSnapshot] = ()) -> None:
        self._snapshots: dict[str, RateLimitSnapshot] = {}
        for snapshot in snapshots:
            self.record(snapshot)

    def record(self, snapshot: RateLimitSnapshot) -> None:
        self._snapshots[snapshot.account_id] = snapshot

    def forget(self, account_id: str) -> bool:
        return self._snapshots.pop(account_id, None) is not None

    def get(self, account_id: str) -> RateLimitSnapshot | None:
        return self._snapshots.get(account_id)

    def list_snapshots(self) -> list[RateLimitSnapshot]:
        return list(self._snapshots.values())
