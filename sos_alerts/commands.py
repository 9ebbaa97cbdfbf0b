"""
Operator commands.

Assignment and resolution follow the same discipline as the sweeper:
check the edge locally, then write conditioned on the statuses the edge
may start from. Losing a race to another operator is reported as
"already handled", not as a failure.
"""

import logging
from enum import Enum
from typing import Optional

from common.alert_store.base import SharedAlertStore
from common.alert_store.models import (
    Alert,
    AlertStatus,
    StoreUnavailableError,
    UpdateResult,
)

from .replica import ReplicaSynchronizer
from .state_machine import check_transition, source_statuses

logger = logging.getLogger(__name__)


class CommandResult(Enum):
    """Outcome reported to the operator who issued a command."""

    OK = "ok"
    ALREADY_HANDLED = "already_handled"
    NOT_FOUND = "not_found"
    TRANSPORT_ERROR = "transport_error"

    @property
    def message(self) -> str:
        return {
            CommandResult.OK: "Done",
            CommandResult.ALREADY_HANDLED: "Alert already handled",
            CommandResult.NOT_FOUND: "Alert not found",
            CommandResult.TRANSPORT_ERROR: "Alert store unreachable, try again",
        }[self]


class CommandHandler:
    """Applies operator-initiated transitions."""

    def __init__(
        self,
        store: SharedAlertStore,
        replica: Optional[ReplicaSynchronizer] = None,
    ):
        self.store = store
        self.replica = replica

    def assign(self, alert_id: str, operator: Optional[str] = None) -> CommandResult:
        """Assign a pending or escalated alert to a unit."""
        return self._transition(
            alert_id,
            AlertStatus.ASSIGNED,
            operator,
            {"assigned_by": operator},
        )

    def start_investigation(self, alert_id: str, operator: Optional[str] = None) -> CommandResult:
        """Mark an assigned alert as being worked on."""
        return self._transition(alert_id, AlertStatus.INVESTIGATING, operator)

    def resolve(
        self,
        alert_id: str,
        operator: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> CommandResult:
        """Close an assigned or investigating alert."""
        patch = {"resolved_by": operator}
        if notes:
            patch["notes"] = notes
        return self._transition(alert_id, AlertStatus.RESOLVED, operator, patch)

    def _observe(self, alert_id: str) -> Optional[Alert]:
        """Current status as this process sees it."""
        if self.replica is not None:
            alert = self.replica.get(alert_id)
            if alert is not None:
                return alert
        return self.store.get_alert(alert_id)

    def _transition(
        self,
        alert_id: str,
        target: AlertStatus,
        operator: Optional[str],
        extra: Optional[dict] = None,
    ) -> CommandResult:
        """
        Validate locally, then write conditioned on the allowed source statuses.

        Raises:
            InvalidTransition: If the observed status has no edge to target
        """
        try:
            observed = self._observe(alert_id)
        except StoreUnavailableError as e:
            logger.error(f"Cannot read alert {alert_id} for {target.value}: {e}")
            return CommandResult.TRANSPORT_ERROR

        if observed is None:
            logger.warning(f"No alert {alert_id} to move to {target.value}")
            return CommandResult.NOT_FOUND

        check_transition(observed.status, target, alert_id)

        patch = {"status": target}
        if extra:
            patch.update({k: v for k, v in extra.items() if v is not None})

        try:
            result = self.store.conditional_update(
                alert_id,
                source_statuses(target),
                patch,
                performed_by=operator,
            )
        except StoreUnavailableError as e:
            logger.error(f"Failed to move alert {alert_id} to {target.value}: {e}")
            return CommandResult.TRANSPORT_ERROR

        if result is UpdateResult.OK:
            logger.info(f"Alert {alert_id} {target.value} by {operator}")
            return CommandResult.OK

        if result is UpdateResult.CONFLICT:
            logger.info(f"Alert {alert_id} already handled; {target.value} by {operator} not applied")
            return CommandResult.ALREADY_HANDLED

        if self.replica is not None:
            self.replica.drop(alert_id)
        return CommandResult.NOT_FOUND
