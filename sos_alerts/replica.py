"""
Replica synchronizer.

Keeps this process's in-memory copy of the alert list in step with the
shared store and tells local consumers (console feed, sweeper, views)
about every change. The store is the only source of truth: snapshots are
applied as delivered and never overridden locally.
"""

import asyncio
import logging
from typing import Optional

from common.alert_store.base import SharedAlertStore
from common.alert_store.models import Alert, AlertStatus, StoreUnavailableError

logger = logging.getLogger(__name__)


class ReplicaConsumer:
    """Receives change events from a ReplicaSynchronizer.

    Subclasses override the hooks they care about.
    """

    def on_created(self, alert: Alert) -> None:
        pass

    def on_updated(self, alert: Alert, previous_status: AlertStatus) -> None:
        pass

    def on_removed(self, alert: Alert) -> None:
        pass


class ReplicaSynchronizer:
    """
    Owns the process-local replica of the alert list.

    Responsibilities:
    - Hold one long-lived subscription to the store
    - Diff each snapshot against the replica and emit created/updated events
    - Ignore duplicate and stale deliveries so no transition is seen twice
    - Re-subscribe after subscription loss, trusting the next snapshot fully
    """

    def __init__(
        self,
        store: SharedAlertStore,
        poll_interval: float = 1.0,
        resubscribe_delay: float = 2.0,
        snapshot_limit: int = 500,
    ):
        self.store = store
        self.poll_interval = poll_interval
        self.resubscribe_delay = resubscribe_delay
        self.snapshot_limit = snapshot_limit

        # alert_id -> Alert, as last delivered by the store
        self._alerts: dict[str, Alert] = {}
        self._consumers: list[ReplicaConsumer] = []

        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._ready = asyncio.Event()

        self.snapshots_applied = 0
        self.resubscriptions = 0

    def register_consumer(self, consumer: ReplicaConsumer) -> None:
        """Add a consumer to be told about every change."""
        self._consumers.append(consumer)

    def unregister_consumer(self, consumer: ReplicaConsumer) -> None:
        if consumer in self._consumers:
            self._consumers.remove(consumer)

    # Replica access

    def get(self, alert_id: str) -> Optional[Alert]:
        """Get the locally known state of an alert."""
        return self._alerts.get(alert_id)

    def alerts(self) -> list[Alert]:
        """All locally known alerts, newest first."""
        return sorted(
            self._alerts.values(),
            key=lambda a: a.created_at,
            reverse=True,
        )

    def alerts_with_status(self, status: AlertStatus) -> list[Alert]:
        return [a for a in self.alerts() if a.status == status]

    def __len__(self) -> int:
        return len(self._alerts)

    def drop(self, alert_id: str) -> Optional[Alert]:
        """Remove an alert the store no longer knows about."""
        alert = self._alerts.pop(alert_id, None)
        if alert:
            logger.info(f"Dropped alert {alert_id} from replica")
            self._emit("on_removed", alert)
        return alert

    # Snapshot handling

    def apply_snapshot(
        self,
        snapshot: list[Alert],
        authoritative: bool = False,
    ) -> int:
        """
        Merge a full snapshot into the replica.

        A snapshot holds every unresolved alert, so an unresolved local
        alert missing from it has been removed from the store. A resolved
        one missing from it has only aged out of the resolved history and
        is forgotten without an event.

        Args:
            snapshot: Every alert the subscription currently matches
            authoritative: First snapshot after (re)subscribing; replaces
                any local state outright

        Returns:
            Number of change events emitted
        """
        events = 0
        seen: set[str] = set()

        for incoming in snapshot:
            seen.add(incoming.id)
            local = self._alerts.get(incoming.id)

            if local is None:
                self._alerts[incoming.id] = incoming
                self._emit("on_created", incoming)
                events += 1
                continue

            if incoming.version <= local.version and not authoritative:
                # Duplicate or out-of-date delivery
                continue

            if incoming.status.rank < local.status.rank:
                logger.warning(
                    f"Ignoring regression of {incoming.id} from "
                    f"{local.status.value} to {incoming.status.value}"
                )
                continue

            if incoming.version < local.version:
                logger.warning(
                    f"Replica of {incoming.id} was ahead of the store "
                    f"(v{local.version} > v{incoming.version}); taking store state"
                )

            self._alerts[incoming.id] = incoming
            if incoming.version > local.version or incoming.status != local.status:
                self._emit("on_updated", incoming, local.status)
                events += 1

        for alert_id in [a for a in self._alerts if a not in seen]:
            if self._alerts[alert_id].status == AlertStatus.RESOLVED:
                del self._alerts[alert_id]
                continue
            self.drop(alert_id)
            events += 1

        self.snapshots_applied += 1
        self._ready.set()
        return events

    async def refresh(self) -> int:
        """Pull one snapshot straight from the store and apply it."""
        snapshot = await asyncio.to_thread(self.store.snapshot, self.snapshot_limit)
        return self.apply_snapshot(snapshot)

    def _emit(self, hook: str, *args) -> None:
        for consumer in list(self._consumers):
            try:
                getattr(consumer, hook)(*args)
            except Exception as e:
                logger.error(f"Replica consumer {consumer!r} failed in {hook}: {e}")

    # Subscription lifecycle

    async def start(self) -> None:
        """Start the background subscription task."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._subscription_loop())
        logger.info("Replica synchronizer started")

    async def stop(self) -> None:
        """Close the subscription. The shared store is left untouched."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Replica synchronizer stopped")

    async def wait_ready(self, timeout: Optional[float] = None) -> bool:
        """Wait until the first snapshot has been applied."""
        try:
            await asyncio.wait_for(self._ready.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    @property
    def is_running(self) -> bool:
        return self._running

    async def _subscription_loop(self) -> None:
        """Hold the subscription open, re-subscribing whenever it drops."""
        while self._running:
            authoritative = True
            try:
                async for snapshot in self.store.subscribe(
                    poll_interval=self.poll_interval,
                    limit=self.snapshot_limit,
                ):
                    self.apply_snapshot(snapshot, authoritative=authoritative)
                    authoritative = False
            except StoreUnavailableError as e:
                logger.warning(
                    f"Alert subscription lost: {e}; "
                    f"re-subscribing in {self.resubscribe_delay}s"
                )
            except Exception as e:
                logger.error(f"Error in alert subscription: {e}")

            if not self._running:
                break
            self.resubscriptions += 1
            await asyncio.sleep(self.resubscribe_delay)
