"""
Escalation sweeper.

Every watching process runs its own sweeper against its local replica.
On each tick, pending alerts older than the grace period are moved to
escalated with a write conditioned on the status the sweeper observed,
so however many processes race, the store accepts exactly one of them.
Losing that race is normal and is not an error.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from common.alert_store.base import SharedAlertStore
from common.alert_store.models import (
    Alert,
    AlertStatus,
    StoreUnavailableError,
    UpdateResult,
)
from common.alert_store.store import utc_now

from .replica import ReplicaSynchronizer
from .state_machine import check_transition

logger = logging.getLogger(__name__)

DEFAULT_GRACE_PERIOD_SECONDS = 120
DEFAULT_SWEEP_INTERVAL_SECONDS = 5


class SweepOutcome(Enum):
    """What happened to one escalation attempt."""

    ESCALATED = "escalated"              # This process won the write
    ALREADY_APPLIED = "already_applied"  # Another writer got there first
    NOT_FOUND = "not_found"              # Alert no longer exists
    RETRY = "retry"                      # Store unreachable, try next tick


class EscalationSweeper:
    """
    Timer-driven escalation of overdue pending alerts.

    Responsibilities:
    - Scan the local replica on a fixed interval
    - Issue pending -> escalated conditional writes for overdue alerts
    - Absorb conflicts and leave transport failures to the next tick
    """

    def __init__(
        self,
        store: SharedAlertStore,
        replica: ReplicaSynchronizer,
        grace_period_seconds: float = DEFAULT_GRACE_PERIOD_SECONDS,
        interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        observer_id: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.replica = replica
        self.grace_period = timedelta(seconds=grace_period_seconds)
        self.interval_seconds = interval_seconds
        self.observer_id = observer_id or "sweeper"
        self._clock = clock or utc_now

        # Alerts with a write still in flight are not re-issued
        self._in_flight: set[str] = set()

        self._sweep_task: Optional[asyncio.Task] = None
        self._write_tasks: set[asyncio.Task] = set()
        self._running = False

        # Counters
        self.ticks = 0
        self.escalated = 0
        self.conflicts = 0
        self.failures = 0

    def is_overdue(self, alert: Alert, now: Optional[datetime] = None) -> bool:
        """Check whether a pending alert has outlived the grace period."""
        if alert.status != AlertStatus.PENDING or alert.created_at is None:
            return False
        now = now or self._clock()
        return now - alert.created_at > self.grace_period

    def overdue_alerts(self, now: Optional[datetime] = None) -> list[Alert]:
        now = now or self._clock()
        return [
            a for a in self.replica.alerts_with_status(AlertStatus.PENDING)
            if self.is_overdue(a, now)
        ]

    def sweep(self, now: Optional[datetime] = None) -> list[asyncio.Task]:
        """
        Schedule escalation writes for every overdue alert.

        Does not wait for the writes, so a slow store never holds up the
        timer. Must be called from a running event loop.

        Returns:
            The scheduled write tasks
        """
        now = now or self._clock()
        self.ticks += 1
        tasks = []

        for alert in self.overdue_alerts(now):
            if alert.id in self._in_flight:
                logger.debug(f"Escalation of {alert.id} still in flight, skipping")
                continue

            self._in_flight.add(alert.id)
            task = asyncio.create_task(self._escalate(alert))
            self._write_tasks.add(task)
            task.add_done_callback(self._write_done)
            tasks.append(task)

        return tasks

    async def sweep_once(self, now: Optional[datetime] = None) -> dict[str, SweepOutcome]:
        """Run one sweep and wait for its writes.

        Returns:
            Mapping of alert ID to the outcome of its escalation attempt
        """
        tasks = self.sweep(now)
        results = await asyncio.gather(*tasks, return_exceptions=True)
        return dict(r for r in results if not isinstance(r, BaseException))

    async def _escalate(self, alert: Alert) -> tuple[str, SweepOutcome]:
        """Issue the conditional pending -> escalated write for one alert."""
        try:
            check_transition(alert.status, AlertStatus.ESCALATED, alert.id)
            result = await asyncio.to_thread(
                self.store.conditional_update,
                alert.id,
                alert.status,
                {"status": AlertStatus.ESCALATED},
                self.observer_id,
            )
        except StoreUnavailableError as e:
            self.failures += 1
            logger.warning(f"Escalation write for {alert.id} failed, will retry next tick: {e}")
            return alert.id, SweepOutcome.RETRY
        finally:
            self._in_flight.discard(alert.id)

        if result is UpdateResult.OK:
            self.escalated += 1
            waited = int((self._clock() - alert.created_at).total_seconds())
            logger.warning(
                f"Alert {alert.id} ({alert.category}, coach {alert.coach} "
                f"seat {alert.seat}) escalated after {waited}s unassigned"
            )
            return alert.id, SweepOutcome.ESCALATED

        if result is UpdateResult.CONFLICT:
            # Someone else already moved it; the next snapshot will show how
            self.conflicts += 1
            logger.debug(f"Escalation of {alert.id} already applied elsewhere")
            return alert.id, SweepOutcome.ALREADY_APPLIED

        logger.info(f"Alert {alert.id} no longer exists in the store")
        self.replica.drop(alert.id)
        return alert.id, SweepOutcome.NOT_FOUND

    def _write_done(self, task: asyncio.Task) -> None:
        """Forget a finished write and log any unexpected failure."""
        self._write_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.failures += 1
            logger.error(f"Escalation write failed unexpectedly: {error!r}")

    # Timer loop

    async def start(self) -> None:
        """Start the background sweep loop."""
        if self._running:
            return

        self._running = True
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info(
            f"Escalation sweeper started (grace {self.grace_period.total_seconds():.0f}s, "
            f"every {self.interval_seconds}s)"
        )

    async def stop(self) -> None:
        """Stop sweeping and abandon writes still in flight."""
        self._running = False
        tasks = [t for t in (self._sweep_task, *self._write_tasks) if t]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._sweep_task = None
        self._in_flight.clear()
        logger.info("Escalation sweeper stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    async def _sweep_loop(self) -> None:
        """Background loop that sweeps on a fixed interval."""
        while self._running:
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Error in escalation sweep: {e}")

            await asyncio.sleep(self.interval_seconds)

    def get_stats(self) -> dict:
        return {
            "running": self._running,
            "ticks": self.ticks,
            "escalated": self.escalated,
            "conflicts": self.conflicts,
            "failures": self.failures,
            "in_flight": len(self._in_flight),
        }
