"""Tests for the SQLite shared alert store."""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from common.alert_store import (
    AlertKind,
    AlertStatus,
    AlertStore,
    AuditAction,
    Priority,
    StoreUnavailableError,
    UpdateResult,
)
from tests.conftest import T0


class TestCreate:
    """Alert creation."""

    def test_store_stamps_creation(self, store):
        alert = store.create(AlertKind.EMERGENCY_SOS, "medical_emergency", "B4", "32")

        assert alert.id
        assert alert.status == AlertStatus.PENDING
        assert alert.priority == Priority.HIGH
        assert alert.created_at == T0
        assert alert.updated_at == T0
        assert alert.version == 1

    def test_client_cannot_supply_protected_fields(self, store):
        with pytest.raises(ValueError):
            store.create(AlertKind.EMERGENCY_SOS, "theft", "B4", "32", created_at=T0 - timedelta(hours=1))
        with pytest.raises(ValueError):
            store.create(AlertKind.EMERGENCY_SOS, "theft", "B4", "32", priority="high")

    def test_duplicate_request_returns_existing(self, store):
        first = store.create(AlertKind.EMERGENCY_SOS, "theft", "B4", "32", request_id="req-1")
        second = store.create(AlertKind.EMERGENCY_SOS, "theft", "B4", "32", request_id="req-1")

        assert second.id == first.id
        assert len(store.list_alerts()) == 1

    def test_evidence_details_stored(self, store):
        alert = store.create(
            AlertKind.EVIDENCE_COMPLAINT,
            "dirty_coach",
            "A1",
            "12",
            description="Bins overflowing",
            image_url="https://img.example/1.jpg",
            train_number="12951",
            reference="RR123456",
        )

        loaded = store.get_alert(alert.id)
        assert loaded.description == "Bins overflowing"
        assert loaded.train_number == "12951"
        assert loaded.reference == "RR123456"
        assert loaded.kind == AlertKind.EVIDENCE_COMPLAINT

    def test_get_missing_alert(self, store):
        assert store.get_alert("nope") is None


class TestConditionalUpdate:
    """Compare-and-set on status."""

    @pytest.fixture
    def alert(self, store):
        return store.create(AlertKind.EMERGENCY_SOS, "harassment", "B2", "7")

    def test_update_from_expected_status(self, store, clock, alert):
        clock.advance(30)
        result = store.conditional_update(
            alert.id, AlertStatus.PENDING, {"status": AlertStatus.ASSIGNED, "assigned_by": "unit-7"}
        )

        assert result == UpdateResult.OK
        loaded = store.get_alert(alert.id)
        assert loaded.status == AlertStatus.ASSIGNED
        assert loaded.assigned_by == "unit-7"
        assert loaded.assigned_at == T0 + timedelta(seconds=30)
        assert loaded.updated_at == T0 + timedelta(seconds=30)
        assert loaded.version == 2
        assert loaded.created_at == T0

    def test_conflict_leaves_record_unchanged(self, store, alert):
        result = store.conditional_update(
            alert.id, AlertStatus.ESCALATED, {"status": AlertStatus.ASSIGNED}
        )

        assert result == UpdateResult.CONFLICT
        loaded = store.get_alert(alert.id)
        assert loaded.status == AlertStatus.PENDING
        assert loaded.version == 1

    def test_expected_status_set(self, store, alert):
        result = store.conditional_update(
            alert.id,
            {AlertStatus.PENDING, AlertStatus.ESCALATED},
            {"status": AlertStatus.ASSIGNED},
        )
        assert result == UpdateResult.OK

    def test_not_found(self, store):
        result = store.conditional_update(
            "missing", AlertStatus.PENDING, {"status": AlertStatus.ESCALATED}
        )
        assert result == UpdateResult.NOT_FOUND

    def test_immutable_fields_rejected(self, store, alert):
        with pytest.raises(ValueError):
            store.conditional_update(alert.id, AlertStatus.PENDING, {"priority": "low"})
        with pytest.raises(ValueError):
            store.conditional_update(alert.id, AlertStatus.PENDING, {"created_at": "2020-01-01"})

        assert store.get_alert(alert.id).priority == Priority.HIGH

    def test_concurrent_writers_only_one_wins(self, db_path, clock, alert):
        stores = [AlertStore(db_path=db_path, clock=clock) for _ in range(8)]

        def attempt(s):
            return s.conditional_update(
                alert.id, AlertStatus.PENDING, {"status": AlertStatus.ESCALATED}
            )

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(attempt, stores))

        assert results.count(UpdateResult.OK) == 1
        assert results.count(UpdateResult.CONFLICT) == 7
        assert stores[0].get_alert(alert.id).version == 2

    def test_audit_trail(self, store, alert):
        store.conditional_update(alert.id, AlertStatus.PENDING, {"status": AlertStatus.ESCALATED}, "console-1")
        store.conditional_update(alert.id, AlertStatus.PENDING, {"status": AlertStatus.ESCALATED}, "console-2")

        entries = store.get_audit_log(alert.id)

        assert [e.action for e in entries] == [AuditAction.CREATED, AuditAction.ESCALATED]
        assert entries[1].performed_by == "console-1"


class TestQueries:
    """Listing and statistics."""

    def test_list_newest_first(self, store, clock):
        first = store.create(AlertKind.EMERGENCY_SOS, "theft", "B1", "1")
        clock.advance(5)
        second = store.create(AlertKind.EMERGENCY_SOS, "theft", "B1", "2")

        assert [a.id for a in store.list_alerts()] == [second.id, first.id]

    def test_list_open_alerts_excludes_resolved(self, store):
        done = store.create(AlertKind.EMERGENCY_SOS, "theft", "B1", "1")
        open_alert = store.create(AlertKind.EMERGENCY_SOS, "theft", "B1", "2")
        store.conditional_update(done.id, AlertStatus.PENDING, {"status": AlertStatus.ASSIGNED})
        store.conditional_update(done.id, AlertStatus.ASSIGNED, {"status": AlertStatus.RESOLVED})

        assert [a.id for a in store.list_open_alerts()] == [open_alert.id]

    def test_snapshot_keeps_open_alerts_and_caps_resolved(self, store, clock):
        old_open = store.create(AlertKind.EMERGENCY_SOS, "theft", "B1", "1")
        resolved = []
        for seat in ("2", "3", "4"):
            clock.advance(5)
            alert = store.create(AlertKind.EMERGENCY_SOS, "theft", "B1", seat)
            store.conditional_update(alert.id, AlertStatus.PENDING, {"status": AlertStatus.ASSIGNED})
            store.conditional_update(alert.id, AlertStatus.ASSIGNED, {"status": AlertStatus.RESOLVED})
            resolved.append(alert)

        snapshot = store.snapshot(limit=2)

        assert [a.id for a in snapshot] == [resolved[2].id, resolved[1].id, old_open.id]

    def test_list_filters(self, store):
        store.create(AlertKind.EMERGENCY_SOS, "theft", "B1", "1")
        evidence = store.create(AlertKind.EVIDENCE_COMPLAINT, "overpricing", "A1", "9")

        assert [a.id for a in store.list_alerts(kind=AlertKind.EVIDENCE_COMPLAINT)] == [evidence.id]
        assert [a.id for a in store.list_alerts(coach="A1", seat="9")] == [evidence.id]
        assert store.list_alerts(status=AlertStatus.RESOLVED) == []

    def test_stats(self, store):
        a = store.create(AlertKind.EMERGENCY_SOS, "medical_emergency", "B1", "1")
        store.create(AlertKind.EVIDENCE_COMPLAINT, "overpricing", "A1", "9")
        store.conditional_update(a.id, AlertStatus.PENDING, {"status": AlertStatus.ESCALATED})

        stats = store.get_stats()

        assert stats["total"] == 2
        assert stats["today"] == 2
        assert stats["status_escalated"] == 1
        assert stats["status_pending"] == 1
        assert stats["kind_sos"] == 1
        assert stats["priority_high"] == 1


class TestSubscribe:
    """Snapshot streaming."""

    @pytest.mark.asyncio
    async def test_snapshots_delivered_on_change(self, store):
        alert = store.create(AlertKind.EMERGENCY_SOS, "theft", "B1", "1")
        stream = store.subscribe(poll_interval=0.01)

        first = await stream.__anext__()
        assert [a.id for a in first] == [alert.id]

        store.conditional_update(alert.id, AlertStatus.PENDING, {"status": AlertStatus.ESCALATED})
        second = await asyncio.wait_for(stream.__anext__(), timeout=2)

        assert second[0].status == AlertStatus.ESCALATED
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_lost_store_raises(self, store, monkeypatch):
        def broken(*args, **kwargs):
            raise StoreUnavailableError("disk gone")

        monkeypatch.setattr(store, "snapshot", broken)

        with pytest.raises(StoreUnavailableError):
            await store.subscribe(poll_interval=0.01).__anext__()
