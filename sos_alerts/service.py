"""
Per-process alert coordination service.

Ties together the components every monitoring console runs:
- Replica Synchronizer: one subscription to the shared store
- Escalation Sweeper: timer-driven escalation against the replica
- Command Handler: operator assign/investigate/resolve
- Feed logger: prints the live alert feed

Processes share nothing but the store; there is no leader and no lock.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from common.alert_store.base import SharedAlertStore
from common.alert_store.models import Alert, AlertStatus, Priority
from common.alert_store.store import AlertStore

from .commands import CommandHandler
from .config import config as app_config
from .replica import ReplicaConsumer, ReplicaSynchronizer
from .sweeper import EscalationSweeper
from .views import dashboard_summary, format_remaining, remaining_seconds

logger = logging.getLogger(__name__)


@dataclass
class ServiceConfig:
    """Configuration for one coordination process."""

    db_path: Optional[str] = None
    observer_id: str = field(default_factory=lambda: app_config.OBSERVER_ID)
    grace_period_seconds: int = 120
    sweep_interval_seconds: float = 5
    poll_interval_seconds: float = 1.0
    resubscribe_delay_seconds: float = 2.0
    snapshot_limit: int = 500
    ready_timeout_seconds: float = 10.0
    sweeper_enabled: bool = True

    @classmethod
    def from_env(cls) -> "ServiceConfig":
        """Create configuration from the environment-backed Config."""
        return cls(
            db_path=app_config.ALERT_DB_PATH,
            observer_id=app_config.OBSERVER_ID,
            grace_period_seconds=app_config.ESCALATION_GRACE_SECONDS,
            sweep_interval_seconds=app_config.SWEEP_INTERVAL_SECONDS,
            poll_interval_seconds=app_config.SUBSCRIPTION_POLL_SECONDS,
            resubscribe_delay_seconds=app_config.RESUBSCRIBE_DELAY_SECONDS,
            snapshot_limit=app_config.SNAPSHOT_LIMIT,
        )


class AlertFeedLogger(ReplicaConsumer):
    """Writes the live feed to the log, one line per change."""

    def __init__(self, grace_period_seconds: int = 120):
        self.grace_period_seconds = grace_period_seconds

    def on_created(self, alert: Alert) -> None:
        countdown = ""
        if alert.status == AlertStatus.PENDING:
            left = remaining_seconds(alert, grace_period_seconds=self.grace_period_seconds)
            countdown = f" [{format_remaining(left)}]"
        level = logging.WARNING if alert.priority == Priority.HIGH else logging.INFO
        logger.log(
            level,
            f"NEW {alert.kind.value.upper()} {alert.coach}/{alert.seat} "
            f"{alert.category} ({alert.priority.value}) {alert.status.value}{countdown}",
        )

    def on_updated(self, alert: Alert, previous_status: AlertStatus) -> None:
        if alert.status == previous_status:
            return
        level = logging.WARNING if alert.status == AlertStatus.ESCALATED else logging.INFO
        logger.log(
            level,
            f"{alert.coach}/{alert.seat} {alert.category}: "
            f"{previous_status.value} -> {alert.status.value}",
        )

    def on_removed(self, alert: Alert) -> None:
        logger.info(f"{alert.coach}/{alert.seat} {alert.category}: removed from store")


class AlertCoordinationService:
    """
    Main orchestrator for one watching process.

    Stopping the service closes its subscription and sweep loop without
    touching the shared store or any other process.
    """

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        store: Optional[SharedAlertStore] = None,
    ):
        self.config = config or ServiceConfig.from_env()
        self.store = store or AlertStore(db_path=self.config.db_path)

        self._init_components()

        self._running = False
        self._stop_event: Optional[asyncio.Event] = None

    def _init_components(self) -> None:
        """Initialize all service components."""
        self.replica = ReplicaSynchronizer(
            self.store,
            poll_interval=self.config.poll_interval_seconds,
            resubscribe_delay=self.config.resubscribe_delay_seconds,
            snapshot_limit=self.config.snapshot_limit,
        )

        self.sweeper = EscalationSweeper(
            self.store,
            self.replica,
            grace_period_seconds=self.config.grace_period_seconds,
            interval_seconds=self.config.sweep_interval_seconds,
            observer_id=self.config.observer_id,
        )

        self.commands = CommandHandler(self.store, replica=self.replica)

        self.feed = AlertFeedLogger(self.config.grace_period_seconds)
        self.replica.register_consumer(self.feed)

    async def start(self) -> None:
        """Start the subscription and, once it has data or the ready timeout passes, the sweeper."""
        if self._running:
            return

        self._running = True
        self._stop_event = asyncio.Event()

        logger.info(f"Starting alert coordination service as {self.config.observer_id}")
        await self.replica.start()
        if not await self.replica.wait_ready(timeout=self.config.ready_timeout_seconds):
            logger.warning(
                f"No alert snapshot after {self.config.ready_timeout_seconds}s; "
                f"sweeping will begin once the subscription delivers one"
            )

        if self.config.sweeper_enabled:
            await self.sweeper.start()

    async def stop(self) -> None:
        """Stop all activity of this process."""
        if not self._running:
            return

        self._running = False
        await self.sweeper.stop()
        await self.replica.stop()
        if self._stop_event:
            self._stop_event.set()
        logger.info("Alert coordination service stopped")

    async def run(self) -> None:
        """Run until stop() is called or the task is cancelled."""
        await self.start()
        try:
            await self._stop_event.wait()
        finally:
            await self.stop()

    # Status and statistics

    def get_status(self) -> dict:
        """Get current service status."""
        return {
            "running": self._running,
            "observer_id": self.config.observer_id,
            "replica": {
                "running": self.replica.is_running,
                "alerts": len(self.replica),
                "snapshots_applied": self.replica.snapshots_applied,
                "resubscriptions": self.replica.resubscriptions,
            },
            "sweeper": self.sweeper.get_stats(),
            "summary": dashboard_summary(self.replica.alerts()),
        }
