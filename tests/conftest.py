"""Shared fixtures for alert coordination tests."""

from datetime import datetime, timedelta, timezone

import pytest

from common.alert_store import AlertStore
from sos_alerts.replica import ReplicaConsumer

T0 = datetime(2026, 10, 18, 9, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable UTC clock shared by the store and the sweepers."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class RecordingConsumer(ReplicaConsumer):
    """Collects replica events in delivery order."""

    def __init__(self):
        self.events = []

    def on_created(self, alert):
        self.events.append(("created", alert.id, alert.status))

    def on_updated(self, alert, previous_status):
        self.events.append(("updated", alert.id, previous_status, alert.status))

    def on_removed(self, alert):
        self.events.append(("removed", alert.id))

    def of_type(self, kind):
        return [e for e in self.events if e[0] == kind]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "alerts.db")


@pytest.fixture
def store(db_path, clock):
    """Alert store on a temporary database with a controllable clock."""
    return AlertStore(db_path=db_path, clock=clock)


@pytest.fixture
def recorder():
    return RecordingConsumer()
