import os

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from datetime import datetime, timedelta, timezone

import pytest
from PySide6.QtCore import QCoreApplication

from usage_relay.models import UsageEntry, UsageSnapshot, utc_timestamp


@pytest.fixture(scope="session")
def qapp_cls():
    return QCoreApplication


@pytest.fixture
def data_file(tmp_path):
    return tmp_path / ".claude-usage-data.json"


@pytest.fixture
def make_snapshot():
    def _make(age_seconds: float = 0, five_hour: float = 45, seven_day: float | None = 20):
        updated = datetime.now(timezone.utc) - timedelta(seconds=age_seconds)
        return UsageSnapshot(
            five_hour=UsageEntry(five_hour, "2025-01-01T10:00:00Z"),
            seven_day=UsageEntry(seven_day, "2025-01-05T10:00:00Z") if seven_day is not None else None,
            updated_at=utc_timestamp(updated),
        )

    return _make
