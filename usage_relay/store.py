"""Short-lived usage file shared between the poller and the editor side.

The file is the only channel between two processes that cannot share memory.
It is deleted a fixed grace period after the last write, on shutdown, and on
startup when it is too old to trust, so usage data never lingers on disk.
"""

import asyncio
import json
import os
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from usage_relay.logger import get_logger
from usage_relay.models import UsageSnapshot

log = get_logger("store")

GRACE_SECONDS = 20.0
FRESHNESS_SECONDS = 60.0

Subscriber = Callable[[UsageSnapshot], None]


class EphemeralFileStore:
    """Single-slot, self-expiring JSON file owned by one relay process.

    Must be used from within a running asyncio event loop; the deletion timer
    is a handle on that loop.
    """

    def __init__(
        self,
        path: Path,
        grace_seconds: float = GRACE_SECONDS,
        freshness_seconds: float = FRESHNESS_SECONDS,
    ):
        self.path = Path(path)
        self.grace_seconds = grace_seconds
        self.freshness_seconds = freshness_seconds
        self._delete_handle: asyncio.TimerHandle | None = None

    def write(self, snapshot: UsageSnapshot | Any):
        """Overwrite the file and restart the grace period.

        Accepts a :class:`UsageSnapshot` or any JSON-compatible payload, which
        is written as-is.
        """
        data = snapshot.to_dict() if isinstance(snapshot, UsageSnapshot) else snapshot
        tmp_path = self.path.with_suffix(".tmp")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp_path, "w") as f:
            json.dump(data, f, indent=2)
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, self.path)
        log.info("usage_file_written", path=str(self.path))
        self.schedule_deletion(self.grace_seconds)

    def read(self) -> Any | None:
        try:
            with open(self.path) as f:
                return json.load(f)
        except FileNotFoundError:
            return None

    def schedule_deletion(self, after: float):
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._delete_handle = loop.call_later(max(0.0, after), self._expire)

    @property
    def pending_deletion(self) -> float | None:
        """Seconds until the armed deletion fires, or None when nothing is armed."""
        if self._delete_handle is None or self._delete_handle.cancelled():
            return None
        loop = asyncio.get_running_loop()
        return max(0.0, self._delete_handle.when() - loop.time())

    def try_rehydrate(self, subscriber: Subscriber | None = None) -> UsageSnapshot | None:
        """Reuse a file left by a previous run if it is still fresh."""
        try:
            with open(self.path) as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            log.warning("usage_file_unreadable", path=str(self.path), error=str(exc))
            self.delete()
            return None

        snapshot = UsageSnapshot.from_dict(data)
        age = snapshot.age(datetime.now(timezone.utc))
        if age is None or age >= self.freshness_seconds:
            log.info("usage_file_stale", path=str(self.path), age=age)
            self.delete()
            return None

        age = max(0.0, age)
        if subscriber is not None:
            subscriber(snapshot)
        self.schedule_deletion(max(0.0, self.grace_seconds - age))
        log.info("usage_file_rehydrated", path=str(self.path), age=round(age, 3))
        return snapshot

    def delete(self):
        if self.path.exists():
            self.path.unlink(missing_ok=True)
            log.info("usage_file_deleted", path=str(self.path))

    def stop(self):
        """Cancel the pending timer and remove the file."""
        self._cancel_timer()
        self.delete()

    def _expire(self):
        self._delete_handle = None
        self.delete()

    def _cancel_timer(self):
        if self._delete_handle is not None:
            self._delete_handle.cancel()
            self._delete_handle = None
