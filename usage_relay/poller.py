"""One usage poll cycle, and the timer that runs it."""

import enum
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from PySide6.QtCore import QObject, QThread, QTimer, Signal, Slot

from usage_relay.client import RelayUnreachable, UpstreamError
from usage_relay.logger import get_logger
from usage_relay.models import WARNING_THRESHOLD, MalformedResponse, UsageSnapshot
from usage_relay.resolver import NoCandidates, OrganizationCache, resolve_organization

log = get_logger("poller")

ERROR_BADGE = ("!", "#FF0000")
WARNING_COLOR = "#FF6600"
OK_COLOR = "#4CAF50"

Emitter = Callable[[UsageSnapshot], None]


class PollError(enum.Enum):
    NOT_AUTHENTICATED = "Not logged in to claude.ai"
    FETCH_FAILED = "Failed to fetch usage"
    MALFORMED_RESPONSE = "Invalid API response structure"

    @property
    def message(self) -> str:
        return self.value


@dataclass(frozen=True)
class PollResult:
    snapshot: UsageSnapshot | None = None
    error: PollError | None = None
    finished_at: float = field(default_factory=time.time)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def badge(self) -> tuple[str, str]:
        if self.snapshot is None:
            return ERROR_BADGE
        pct = self.snapshot.five_hour.percent
        return str(pct), WARNING_COLOR if pct >= WARNING_THRESHOLD else OK_COLOR


class UsagePollCycle:
    """Resolve the organization, fetch its usage, normalize and emit it.

    ``client`` needs ``list_organizations()`` and ``fetch_usage(uuid)``, both
    raising :class:`UpstreamError` on failure. Every :meth:`run` ends in
    exactly one :class:`PollResult`.
    """

    def __init__(self, client, cache: OrganizationCache | None = None, emitters: Iterable[Emitter] = ()):
        self.client = client
        self.cache = cache or OrganizationCache()
        self.emitters = list(emitters)
        self.last_result: PollResult | None = None

    def _organization_id(self) -> str | None:
        organization_id = self.cache.get()
        if organization_id:
            return organization_id
        try:
            organization_id = resolve_organization(self.client.list_organizations())
        except (UpstreamError, NoCandidates) as exc:
            log.warning("organization_lookup_failed", error=str(exc))
            return None
        self.cache.set(organization_id)
        return organization_id

    def _finish(self, snapshot: UsageSnapshot | None = None, error: PollError | None = None) -> PollResult:
        result = PollResult(snapshot=snapshot, error=error)
        self.last_result = result
        if error is not None:
            log.warning("poll_failed", error=error.name, message=error.message)
        return result

    def run(self) -> PollResult:
        organization_id = self._organization_id()
        if not organization_id:
            return self._finish(error=PollError.NOT_AUTHENTICATED)

        try:
            payload = self.client.fetch_usage(organization_id)
        except UpstreamError as exc:
            # The id may have been revoked or changed; resolve again next time.
            log.warning("usage_fetch_failed", uuid=organization_id, error=str(exc))
            self.cache.clear()
            return self._finish(error=PollError.FETCH_FAILED)

        try:
            snapshot = UsageSnapshot.from_api(payload)
        except MalformedResponse as exc:
            log.error("unexpected_usage_response", error=str(exc), payload=payload)
            return self._finish(error=PollError.MALFORMED_RESPONSE)

        self._emit(snapshot)
        log.info("usage_updated", **snapshot.to_dict())
        return self._finish(snapshot=snapshot)

    def _emit(self, snapshot: UsageSnapshot):
        for emit in self.emitters:
            try:
                emit(snapshot)
            except RelayUnreachable as exc:
                log.info("relay_unavailable", error=str(exc))

    def clear_organization(self):
        self.cache.clear()


class PollWorker(QThread):
    completed = Signal(object)

    def __init__(self, cycle: UsagePollCycle):
        super().__init__()
        self.cycle = cycle

    def run(self):
        result = self.cycle.run()
        self.completed.emit(result)


class UsagePoller(QObject):
    """Runs a poll cycle on a fixed Qt timer, one worker at a time."""

    polled = Signal(object)

    def __init__(self, cycle: UsagePollCycle, interval_s: float = 60, initial_delay_s: float = 6, parent=None):
        super().__init__(parent)
        self.cycle = cycle
        self._interval_ms = int(interval_s * 1000)
        self._initial_delay_ms = int(initial_delay_s * 1000)
        self._worker: PollWorker | None = None

        self._poll_timer = QTimer(self)
        self._poll_timer.timeout.connect(self.refresh)

        self._initial_timer = QTimer(self)
        self._initial_timer.setSingleShot(True)
        self._initial_timer.timeout.connect(self.refresh)

    def start(self):
        self._initial_timer.start(self._initial_delay_ms)
        self._poll_timer.start(self._interval_ms)
        log.info("poller_started", interval_ms=self._interval_ms, initial_delay_ms=self._initial_delay_ms)

    def stop(self):
        self._initial_timer.stop()
        self._poll_timer.stop()
        if self._worker:
            self._worker.wait()

    @property
    def is_polling(self) -> bool:
        return self._worker is not None and self._worker.isRunning()

    def refresh(self) -> bool:
        """Start a poll now unless one is in flight. Returns True if one was started."""
        if self.is_polling:
            return False
        self._worker = PollWorker(self.cycle)
        self._worker.completed.connect(self._on_completed)
        self._worker.start()
        return True

    @Slot(object)
    def _on_completed(self, result: PollResult):
        self.polled.emit(result)

    def clear_organization(self):
        self.cycle.clear_organization()
