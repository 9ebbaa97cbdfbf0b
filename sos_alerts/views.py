"""
Read-only projections of alert state for consoles and passenger screens.

Nothing here is ever written back to the store: countdowns and elapsed
timers are recomputed from created_at and the current time on demand.
"""

from datetime import datetime
from typing import Iterable, Optional

from common.alert_store.models import Alert, AlertStatus
from common.alert_store.store import utc_now

from .sweeper import DEFAULT_GRACE_PERIOD_SECONDS

ACTIVE_STATUSES = (AlertStatus.PENDING, AlertStatus.ESCALATED)


def _elapsed_seconds(alert: Alert, now: Optional[datetime]) -> int:
    now = now or utc_now()
    return max(0, int((now - alert.created_at).total_seconds()))


def remaining_seconds(
    alert: Alert,
    now: Optional[datetime] = None,
    grace_period_seconds: int = DEFAULT_GRACE_PERIOD_SECONDS,
) -> int:
    """Seconds left before a pending alert escalates (0 once overdue).

    Alerts that are no longer pending have no countdown and report 0.
    """
    if alert.status != AlertStatus.PENDING:
        return 0
    return max(0, grace_period_seconds - _elapsed_seconds(alert, now))


def format_remaining(seconds: int) -> str:
    """Format a countdown, e.g. '1m 42s left'."""
    if seconds <= 0:
        return "Escalation due"
    mins, secs = divmod(seconds, 60)
    if mins:
        return f"{mins}m {secs}s left"
    return f"{secs}s left"


def elapsed_clock(alert: Alert, now: Optional[datetime] = None) -> str:
    """Time since the alert was raised as MM:SS."""
    mins, secs = divmod(_elapsed_seconds(alert, now), 60)
    return f"{mins:02d}:{secs:02d}"


def time_ago(alert: Alert, now: Optional[datetime] = None) -> str:
    """Coarse age, e.g. 'Just now' or '5m ago'."""
    if alert.created_at is None:
        return "Just now"
    mins = _elapsed_seconds(alert, now) // 60
    if mins < 1:
        return "Just now"
    return f"{mins}m ago"


def dashboard_summary(alerts: Iterable[Alert]) -> dict[str, int]:
    """Headline counters shown above the live feed."""
    alerts = list(alerts)
    return {
        "active": sum(1 for a in alerts if a.status in ACTIVE_STATUSES),
        "escalated": sum(1 for a in alerts if a.status == AlertStatus.ESCALATED),
        "assigned": sum(1 for a in alerts if a.status == AlertStatus.ASSIGNED),
        "total": len(alerts),
    }


def protocol_status(alerts: Iterable[Alert]) -> dict[str, str | bool]:
    """Banner shown at the bottom of the console."""
    if any(a.status == AlertStatus.ESCALATED for a in alerts):
        return {
            "emergency": True,
            "title": "Emergency Protocol Active",
            "detail": "High-priority alerts left unassigned have been escalated.",
        }
    return {
        "emergency": False,
        "title": "System Integrity: 100%",
        "detail": "Real-time sync active.",
    }


def alert_card(
    alert: Alert,
    now: Optional[datetime] = None,
    grace_period_seconds: int = DEFAULT_GRACE_PERIOD_SECONDS,
) -> dict:
    """Alert serialized together with its display-only projections."""
    now = now or utc_now()
    remaining = remaining_seconds(alert, now, grace_period_seconds)
    card = alert.to_dict()
    card.update({
        "received": time_ago(alert, now),
        "elapsed": elapsed_clock(alert, now),
        "remaining_seconds": remaining,
        "countdown": format_remaining(remaining) if alert.status == AlertStatus.PENDING else None,
        "urgent": alert.status == AlertStatus.ESCALATED,
    })
    return card
