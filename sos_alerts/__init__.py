"""
Real-time coordination of passenger safety alerts.

Components:
- State machine: allowed status transitions
- Replica Synchronizer: process-local copy of the shared alert list
- Escalation Sweeper: escalates pending alerts left unassigned too long
- Command Handler: operator assign / investigate / resolve
- Intake: SOS and evidence submissions from field clients
- Views: countdown and summary projections (never persisted)
- Service: per-process orchestrator
"""

from .state_machine import (
    ALLOWED_TRANSITIONS,
    InvalidTransition,
    can_transition,
    check_transition,
    source_statuses,
)
from .replica import ReplicaConsumer, ReplicaSynchronizer
from .sweeper import EscalationSweeper, SweepOutcome
from .commands import CommandHandler, CommandResult
from .intake import alerts_for_seat, report_sos, submit_evidence
from .service import AlertCoordinationService, AlertFeedLogger, ServiceConfig

__all__ = [
    # State machine
    "ALLOWED_TRANSITIONS",
    "InvalidTransition",
    "can_transition",
    "check_transition",
    "source_statuses",
    # Replica
    "ReplicaConsumer",
    "ReplicaSynchronizer",
    # Escalation
    "EscalationSweeper",
    "SweepOutcome",
    # Commands
    "CommandHandler",
    "CommandResult",
    # Intake
    "alerts_for_seat",
    "report_sos",
    "submit_evidence",
    # Service
    "AlertCoordinationService",
    "AlertFeedLogger",
    "ServiceConfig",
]
