import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

WARNING_THRESHOLD = 80


class MalformedResponse(ValueError):
    """Upstream usage payload has no five-hour section."""


def parse_timestamp(value: str) -> datetime | None:
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, TypeError, AttributeError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def utc_timestamp(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Usage snapshot
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class UsageEntry:
    utilization: float = 0.0
    resets_at: str = ""

    @property
    def reset_dt(self) -> datetime | None:
        return parse_timestamp(self.resets_at)

    @property
    def percent(self) -> int:
        # Halves round up.
        return math.floor(self.utilization + 0.5)

    def time_remaining(self) -> str:
        dt = self.reset_dt
        if dt is None:
            return "—"
        now = datetime.now(timezone.utc)
        delta = dt - now
        total_seconds = int(delta.total_seconds())
        if total_seconds <= 0:
            return "now"
        days = total_seconds // 86400
        hours = (total_seconds % 86400) // 3600
        minutes = (total_seconds % 3600) // 60
        if days > 0:
            return f"{days}d {hours}h"
        if hours > 0:
            return f"{hours}h {minutes}m"
        return f"{minutes}m"

    def to_dict(self) -> dict:
        return {"utilization": self.utilization, "resetsAt": self.resets_at}


def _parse_entry(data: dict | None) -> UsageEntry | None:
    """Normalize an upstream ``five_hour``/``seven_day`` section."""
    if not isinstance(data, dict):
        return None
    try:
        utilization = float(data.get("utilization") or 0)
    except (TypeError, ValueError) as exc:
        raise MalformedResponse(f"bad utilization: {data.get('utilization')!r}") from exc
    return UsageEntry(
        utilization=utilization,
        resets_at=data.get("resets_at") or "",
    )


def _load_entry(data: Any) -> UsageEntry | None:
    """Read a wire-form (camelCase) entry, tolerating missing fields."""
    if not isinstance(data, dict):
        return None
    try:
        utilization = float(data.get("utilization") or 0)
    except (TypeError, ValueError):
        utilization = 0.0
    resets_at = data.get("resetsAt") or ""
    return UsageEntry(utilization=utilization, resets_at=str(resets_at))


@dataclass(frozen=True)
class UsageSnapshot:
    """One usage record as exchanged between the poller and the relay.

    ``seven_day`` is None for free-tier accounts, which have no weekly quota.
    """

    five_hour: UsageEntry = field(default_factory=UsageEntry)
    seven_day: UsageEntry | None = None
    updated_at: str = ""

    @classmethod
    def from_api(cls, payload: Any, now: datetime | None = None) -> "UsageSnapshot":
        if not isinstance(payload, dict):
            raise MalformedResponse(f"expected an object, got {type(payload).__name__}")
        five_hour = _parse_entry(payload.get("five_hour"))
        if five_hour is None:
            raise MalformedResponse("usage payload has no five_hour section")
        return cls(
            five_hour=five_hour,
            seven_day=_parse_entry(payload.get("seven_day")),
            updated_at=utc_timestamp(now),
        )

    @classmethod
    def from_dict(cls, data: Any) -> "UsageSnapshot":
        """Build a snapshot from its wire form. Missing sections fall back to defaults."""
        if not isinstance(data, dict):
            data = {}
        updated_at = data.get("updatedAt") or ""
        return cls(
            five_hour=_load_entry(data.get("fiveHour")) or UsageEntry(),
            seven_day=_load_entry(data.get("sevenDay")),
            updated_at=str(updated_at),
        )

    def to_dict(self) -> dict:
        return {
            "fiveHour": self.five_hour.to_dict(),
            "sevenDay": self.seven_day.to_dict() if self.seven_day else None,
            "updatedAt": self.updated_at,
        }

    @property
    def updated_dt(self) -> datetime | None:
        return parse_timestamp(self.updated_at)

    def age(self, now: datetime | None = None) -> float | None:
        """Seconds since the snapshot was produced, or None if ``updated_at`` is unusable."""
        dt = self.updated_dt
        if dt is None:
            return None
        now = now or datetime.now(timezone.utc)
        return (now - dt).total_seconds()

    @property
    def is_warning(self) -> bool:
        if self.five_hour.percent >= WARNING_THRESHOLD:
            return True
        return self.seven_day is not None and self.seven_day.percent >= WARNING_THRESHOLD

    def summary(self) -> str:
        text = f"5h {self.five_hour.percent}%"
        if self.seven_day is not None:
            text += f" | 7d {self.seven_day.percent}%"
        return text


# ---------------------------------------------------------------------------
# Upstream accounts
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OrganizationCandidate:
    uuid: str
    name: str = ""
    billing_type: str | None = None
    raven_type: str | None = None
    capabilities: frozenset[str] = frozenset()

    @classmethod
    def from_api(cls, data: dict) -> "OrganizationCandidate":
        return cls(
            uuid=str(data.get("uuid", "")),
            name=data.get("name") or "",
            billing_type=data.get("billing_type") or None,
            raven_type=data.get("raven_type") or None,
            capabilities=frozenset(data.get("capabilities") or ()),
        )
