"""Alert status transitions.

pending -> assigned        operator assignment
pending -> escalated       grace period elapsed with no assignment
assigned -> investigating  operator marks in progress
assigned -> resolved       operator resolves
escalated -> assigned      urgent assignment
investigating -> resolved  operator resolves

Nothing ever returns to pending and resolved is terminal.
"""

from common.alert_store.models import AlertStatus

ALLOWED_TRANSITIONS: dict[AlertStatus, frozenset[AlertStatus]] = {
    AlertStatus.PENDING: frozenset({AlertStatus.ASSIGNED, AlertStatus.ESCALATED}),
    AlertStatus.ASSIGNED: frozenset({AlertStatus.INVESTIGATING, AlertStatus.RESOLVED}),
    AlertStatus.ESCALATED: frozenset({AlertStatus.ASSIGNED}),
    AlertStatus.INVESTIGATING: frozenset({AlertStatus.RESOLVED}),
    AlertStatus.RESOLVED: frozenset(),
}


class InvalidTransition(Exception):
    """Attempted status change that is not an edge of the lifecycle."""

    def __init__(
        self,
        alert_id: str | None,
        current: AlertStatus,
        target: AlertStatus,
    ):
        self.alert_id = alert_id
        self.current = current
        self.target = target
        label = f"Alert {alert_id}" if alert_id else "Alert"
        super().__init__(
            f"{label} cannot move from {current.value} to {target.value}"
        )


def can_transition(current: AlertStatus, target: AlertStatus) -> bool:
    """Check whether current -> target is an allowed edge."""
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def check_transition(
    current: AlertStatus,
    target: AlertStatus,
    alert_id: str | None = None,
) -> None:
    """Raise InvalidTransition unless current -> target is allowed."""
    if not can_transition(current, target):
        raise InvalidTransition(alert_id, current, target)


def source_statuses(target: AlertStatus) -> frozenset[AlertStatus]:
    """Statuses from which target can be reached in one step."""
    return frozenset(
        status for status, targets in ALLOWED_TRANSITIONS.items()
        if target in targets
    )
