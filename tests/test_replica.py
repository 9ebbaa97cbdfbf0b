"""Tests for the replica synchronizer."""

import asyncio
from dataclasses import replace

import pytest

from common.alert_store import AlertKind, AlertStatus, StoreUnavailableError
from sos_alerts.replica import ReplicaConsumer, ReplicaSynchronizer


async def wait_for(predicate, timeout=2.0):
    """Poll until predicate() is true or fail the test."""
    for _ in range(int(timeout / 0.01)):
        if predicate():
            return
        await asyncio.sleep(0.01)
    pytest.fail("condition not reached in time")


class FlakyStore:
    """Wraps a real store; the first subscription dies after one snapshot."""

    def __init__(self, store):
        self.store = store
        self.subscriptions = 0

    def snapshot(self, limit=500):
        return self.store.snapshot(limit)

    async def subscribe(self, poll_interval=1.0, limit=500):
        self.subscriptions += 1
        if self.subscriptions == 1:
            yield self.store.snapshot(limit)
            raise StoreUnavailableError("connection reset")
        async for snapshot in self.store.subscribe(poll_interval=poll_interval, limit=limit):
            yield snapshot


class TestApplySnapshot:
    """Diffing snapshots into change events."""

    def test_new_alerts_emit_created(self, store, recorder):
        a = store.create(AlertKind.EMERGENCY_SOS, "theft", "B4", "32")
        b = store.create(AlertKind.EMERGENCY_SOS, "harassment", "S2", "10")
        replica = ReplicaSynchronizer(store)
        replica.register_consumer(recorder)

        events = replica.apply_snapshot(store.list_alerts())

        assert events == 2
        assert {e[1] for e in recorder.of_type("created")} == {a.id, b.id}
        assert len(replica) == 2

    def test_status_change_emits_updated(self, store, recorder):
        alert = store.create(AlertKind.EMERGENCY_SOS, "theft", "B4", "32")
        replica = ReplicaSynchronizer(store)
        replica.register_consumer(recorder)
        replica.apply_snapshot(store.list_alerts())

        store.conditional_update(alert.id, AlertStatus.PENDING, {"status": AlertStatus.ESCALATED})
        replica.apply_snapshot(store.list_alerts())

        assert recorder.of_type("updated") == [
            ("updated", alert.id, AlertStatus.PENDING, AlertStatus.ESCALATED)
        ]
        assert replica.get(alert.id).status == AlertStatus.ESCALATED

    def test_duplicate_snapshot_is_silent(self, store, recorder):
        store.create(AlertKind.EMERGENCY_SOS, "theft", "B4", "32")
        replica = ReplicaSynchronizer(store)
        replica.register_consumer(recorder)
        snapshot = store.list_alerts()

        replica.apply_snapshot(snapshot)
        assert replica.apply_snapshot(snapshot) == 0
        assert len(recorder.events) == 1

    def test_stale_delivery_ignored(self, store, recorder):
        alert = store.create(AlertKind.EMERGENCY_SOS, "theft", "B4", "32")
        replica = ReplicaSynchronizer(store)
        stale = store.list_alerts()

        store.conditional_update(alert.id, AlertStatus.PENDING, {"status": AlertStatus.ASSIGNED})
        replica.apply_snapshot(store.list_alerts())
        replica.register_consumer(recorder)

        assert replica.apply_snapshot(stale) == 0
        assert replica.get(alert.id).status == AlertStatus.ASSIGNED
        assert recorder.events == []

    def test_status_never_regresses(self, store):
        alert = store.create(AlertKind.EMERGENCY_SOS, "theft", "B4", "32")
        store.conditional_update(alert.id, AlertStatus.PENDING, {"status": AlertStatus.ESCALATED})
        replica = ReplicaSynchronizer(store)
        current = store.get_alert(alert.id)
        replica.apply_snapshot([current])

        bogus = replace(current, status=AlertStatus.PENDING, version=current.version + 1)
        replica.apply_snapshot([bogus])

        assert replica.get(alert.id).status == AlertStatus.ESCALATED

    def test_authoritative_snapshot_never_regresses(self, store, recorder):
        alert = store.create(AlertKind.EMERGENCY_SOS, "theft", "B4", "32")
        replica = ReplicaSynchronizer(store)
        older = store.get_alert(alert.id)
        store.conditional_update(alert.id, AlertStatus.PENDING, {"status": AlertStatus.ESCALATED})
        replica.apply_snapshot([store.get_alert(alert.id)])
        replica.register_consumer(recorder)

        assert replica.apply_snapshot([older], authoritative=True) == 0
        assert replica.get(alert.id).status == AlertStatus.ESCALATED
        assert recorder.events == []

    def test_authoritative_status_change_emits_updated(self, store, recorder):
        alert = store.create(AlertKind.EMERGENCY_SOS, "theft", "B4", "32")
        replica = ReplicaSynchronizer(store)
        store.conditional_update(alert.id, AlertStatus.PENDING, {"status": AlertStatus.ESCALATED})
        local = store.get_alert(alert.id)
        replica.apply_snapshot([replace(local, version=local.version + 5)])
        replica.register_consumer(recorder)

        store.conditional_update(alert.id, AlertStatus.ESCALATED, {"status": AlertStatus.ASSIGNED})
        replica.apply_snapshot([store.get_alert(alert.id)], authoritative=True)

        assert replica.get(alert.id).status == AlertStatus.ASSIGNED
        assert recorder.of_type("updated") == [
            ("updated", alert.id, AlertStatus.ESCALATED, AlertStatus.ASSIGNED)
        ]

    def test_missing_alert_emits_removed(self, store, recorder):
        a = store.create(AlertKind.EMERGENCY_SOS, "theft", "B4", "32")
        b = store.create(AlertKind.EMERGENCY_SOS, "theft", "B4", "33")
        replica = ReplicaSynchronizer(store)
        replica.register_consumer(recorder)
        replica.apply_snapshot(store.list_alerts())

        replica.apply_snapshot([store.get_alert(b.id)])

        assert recorder.of_type("removed") == [("removed", a.id)]
        assert replica.get(a.id) is None

    def test_failing_consumer_does_not_block_others(self, store, recorder):
        class Broken(ReplicaConsumer):
            def on_created(self, alert):
                raise RuntimeError("display gone")

        store.create(AlertKind.EMERGENCY_SOS, "theft", "B4", "32")
        replica = ReplicaSynchronizer(store)
        replica.register_consumer(Broken())
        replica.register_consumer(recorder)

        replica.apply_snapshot(store.list_alerts())

        assert len(recorder.of_type("created")) == 1

    def test_alerts_newest_first(self, store, clock):
        first = store.create(AlertKind.EMERGENCY_SOS, "theft", "B4", "32")
        clock.advance(10)
        second = store.create(AlertKind.EMERGENCY_SOS, "theft", "B4", "33")
        replica = ReplicaSynchronizer(store)
        replica.apply_snapshot(store.list_alerts())

        assert [a.id for a in replica.alerts()] == [second.id, first.id]


class TestSubscription:
    """Background subscription lifecycle."""

    @pytest.mark.asyncio
    async def test_follows_store_changes(self, store, recorder):
        alert = store.create(AlertKind.EMERGENCY_SOS, "medical_emergency", "B4", "32")
        replica = ReplicaSynchronizer(store, poll_interval=0.01)
        replica.register_consumer(recorder)

        await replica.start()
        assert await replica.wait_ready(timeout=2.0)

        store.conditional_update(alert.id, AlertStatus.PENDING, {"status": AlertStatus.ASSIGNED})
        await wait_for(lambda: recorder.of_type("updated"))
        await replica.stop()

        assert recorder.of_type("created") == [("created", alert.id, AlertStatus.PENDING)]
        assert recorder.of_type("updated") == [
            ("updated", alert.id, AlertStatus.PENDING, AlertStatus.ASSIGNED)
        ]
        assert not replica.is_running

    @pytest.mark.asyncio
    async def test_resubscribes_after_loss(self, store, recorder):
        alert = store.create(AlertKind.EMERGENCY_SOS, "theft", "B4", "32")
        flaky = FlakyStore(store)
        replica = ReplicaSynchronizer(flaky, poll_interval=0.01, resubscribe_delay=0.01)
        replica.register_consumer(recorder)

        await replica.start()
        await wait_for(lambda: flaky.subscriptions >= 2 and replica.snapshots_applied >= 2)

        store.conditional_update(alert.id, AlertStatus.PENDING, {"status": AlertStatus.ESCALATED})
        await wait_for(lambda: recorder.of_type("updated"))
        await replica.stop()

        assert replica.resubscriptions >= 1
        assert len(recorder.of_type("created")) == 1
        assert len(recorder.of_type("updated")) == 1

    @pytest.mark.asyncio
    async def test_wait_ready_times_out_without_snapshot(self, store):
        replica = ReplicaSynchronizer(store)
        assert await replica.wait_ready(timeout=0.05) is False

    @pytest.mark.asyncio
    async def test_refresh_pulls_snapshot(self, store, recorder):
        store.create(AlertKind.EMERGENCY_SOS, "theft", "B4", "32")
        replica = ReplicaSynchronizer(store)
        replica.register_consumer(recorder)

        assert await replica.refresh() == 1
        assert len(replica) == 1


class TestSnapshotWindow:
    """More alerts in the store than the snapshot limit."""

    @pytest.mark.asyncio
    async def test_old_open_alert_stays_in_replica(self, store, clock, recorder):
        old = store.create(AlertKind.EMERGENCY_SOS, "medical_emergency", "B4", "32")
        for seat in ("40", "41"):
            clock.advance(10)
            newer = store.create(AlertKind.EMERGENCY_SOS, "theft", "B4", seat)
            store.conditional_update(newer.id, AlertStatus.PENDING, {"status": AlertStatus.ASSIGNED})

        replica = ReplicaSynchronizer(store, snapshot_limit=2)
        replica.register_consumer(recorder)
        await replica.refresh()
        await replica.refresh()

        assert replica.get(old.id).status == AlertStatus.PENDING
        assert recorder.of_type("removed") == []

    @pytest.mark.asyncio
    async def test_resolved_history_ages_out_quietly(self, store, clock, recorder):
        resolved = []
        for seat in ("1", "2", "3"):
            clock.advance(10)
            alert = store.create(AlertKind.EMERGENCY_SOS, "theft", "C1", seat)
            store.conditional_update(alert.id, AlertStatus.PENDING, {"status": AlertStatus.ASSIGNED})
            store.conditional_update(alert.id, AlertStatus.ASSIGNED, {"status": AlertStatus.RESOLVED})
            resolved.append(alert)

        replica = ReplicaSynchronizer(store, snapshot_limit=3)
        await replica.refresh()
        replica.register_consumer(recorder)
        replica.snapshot_limit = 1
        await replica.refresh()

        assert [a.id for a in replica.alerts()] == [resolved[-1].id]
        assert recorder.events == []
        assert store.get_alert(resolved[0].id) is not None

    @pytest.mark.asyncio
    async def test_old_alert_resolved_now_is_delivered(self, store, clock, recorder):
        old = store.create(AlertKind.EMERGENCY_SOS, "theft", "B4", "32")
        store.conditional_update(old.id, AlertStatus.PENDING, {"status": AlertStatus.ASSIGNED})
        clock.advance(10)
        newer = store.create(AlertKind.EMERGENCY_SOS, "theft", "B4", "33")
        store.conditional_update(newer.id, AlertStatus.PENDING, {"status": AlertStatus.ASSIGNED})
        store.conditional_update(newer.id, AlertStatus.ASSIGNED, {"status": AlertStatus.RESOLVED})

        replica = ReplicaSynchronizer(store, snapshot_limit=1)
        await replica.refresh()
        replica.register_consumer(recorder)

        clock.advance(10)
        store.conditional_update(old.id, AlertStatus.ASSIGNED, {"status": AlertStatus.RESOLVED})
        await replica.refresh()

        assert replica.get(old.id).status == AlertStatus.RESOLVED
        assert recorder.of_type("updated") == [
            ("updated", old.id, AlertStatus.ASSIGNED, AlertStatus.RESOLVED)
        ]
        assert recorder.of_type("removed") == []
