"""Data models for the shared alert store."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class AlertKind(Enum):
    """Kinds of alerts raised by field clients."""
    EMERGENCY_SOS = "sos"
    EVIDENCE_COMPLAINT = "evidence"


class AlertStatus(Enum):
    """Alert lifecycle status."""
    PENDING = "pending"              # Raised, nobody has picked it up yet
    ASSIGNED = "assigned"            # An operator took ownership
    INVESTIGATING = "investigating"  # Unit on site / work in progress
    ESCALATED = "escalated"          # Grace period elapsed without assignment
    RESOLVED = "resolved"            # Closed

    @property
    def rank(self) -> int:
        """Position along the lifecycle; every allowed transition increases it."""
        return STATUS_RANK[self]


STATUS_RANK: dict[AlertStatus, int] = {
    AlertStatus.PENDING: 0,
    AlertStatus.ESCALATED: 1,
    AlertStatus.ASSIGNED: 2,
    AlertStatus.INVESTIGATING: 3,
    AlertStatus.RESOLVED: 4,
}


class Priority(Enum):
    """Alert priority, fixed at creation."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AuditAction(Enum):
    """Actions tracked in audit log."""
    CREATED = "created"
    ASSIGNED = "assigned"
    INVESTIGATING = "investigating"
    ESCALATED = "escalated"
    RESOLVED = "resolved"


class UpdateResult(Enum):
    """Outcome of a conditional update."""
    OK = "ok"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"


class StoreUnavailableError(Exception):
    """The shared store could not be reached."""


# Categories offered by the SOS client
SOS_CATEGORIES = (
    "vendor_overpricing",
    "harassment",
    "medical_emergency",
    "theft",
)

# Categories offered by the evidence client
EVIDENCE_CATEGORIES = (
    "overpricing",
    "dirty_coach",
    "staff_misconduct",
    "unauthorized_vendor",
)

PRIORITY_BY_CATEGORY: dict[str, Priority] = {
    "medical_emergency": Priority.HIGH,
    "harassment": Priority.HIGH,
    "theft": Priority.MEDIUM,
    "vendor_overpricing": Priority.LOW,
}

DEFAULT_PRIORITY = Priority.MEDIUM


def derive_priority(category: str) -> Priority:
    """Look up the priority for an incident category."""
    return PRIORITY_BY_CATEGORY.get(category, DEFAULT_PRIORITY)


def parse_datetime(val) -> datetime | None:
    if val is None:
        return None
    if isinstance(val, datetime):
        return val
    return datetime.fromisoformat(val)


@dataclass
class Alert:
    """A single reported incident tracked through its status lifecycle.

    Only ``status`` and the operator fields change after creation; the
    store is the only writer of timestamps and ``version``.
    """
    id: str
    kind: AlertKind
    category: str
    priority: Priority
    status: AlertStatus
    coach: str
    seat: str
    created_at: datetime
    updated_at: datetime
    version: int = 1

    # Evidence details
    train_number: str | None = None
    description: str | None = None
    image_url: str | None = None
    reporter_id: str | None = None
    reference: str | None = None
    request_id: str | None = None

    # Transition details
    escalated_at: datetime | None = None
    assigned_at: datetime | None = None
    assigned_by: str | None = None
    investigating_at: datetime | None = None
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    notes: str | None = None

    @property
    def is_open(self) -> bool:
        """Check if alert still needs handling."""
        return self.status != AlertStatus.RESOLVED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        def iso(val: datetime | None) -> str | None:
            return val.isoformat() if val else None

        return {
            "id": self.id,
            "kind": self.kind.value,
            "category": self.category,
            "priority": self.priority.value,
            "status": self.status.value,
            "coach": self.coach,
            "seat": self.seat,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
            "version": self.version,
            "train_number": self.train_number,
            "description": self.description,
            "image_url": self.image_url,
            "reporter_id": self.reporter_id,
            "reference": self.reference,
            "escalated_at": iso(self.escalated_at),
            "assigned_at": iso(self.assigned_at),
            "assigned_by": self.assigned_by,
            "investigating_at": iso(self.investigating_at),
            "resolved_at": iso(self.resolved_at),
            "resolved_by": self.resolved_by,
            "notes": self.notes,
        }

    @classmethod
    def from_row(cls, row) -> "Alert":
        """Create from a database row (sqlite3.Row or mapping)."""
        return cls(
            id=row["id"],
            kind=AlertKind(row["kind"]),
            category=row["category"],
            priority=Priority(row["priority"]),
            status=AlertStatus(row["status"]),
            coach=row["coach"],
            seat=row["seat"],
            created_at=parse_datetime(row["created_at"]),
            updated_at=parse_datetime(row["updated_at"]),
            version=row["version"],
            train_number=row["train_number"],
            description=row["description"],
            image_url=row["image_url"],
            reporter_id=row["reporter_id"],
            reference=row["reference"],
            request_id=row["request_id"],
            escalated_at=parse_datetime(row["escalated_at"]),
            assigned_at=parse_datetime(row["assigned_at"]),
            assigned_by=row["assigned_by"],
            investigating_at=parse_datetime(row["investigating_at"]),
            resolved_at=parse_datetime(row["resolved_at"]),
            resolved_by=row["resolved_by"],
            notes=row["notes"],
        )


@dataclass
class AlertAuditEntry:
    """Audit log entry for alert actions."""
    id: int
    alert_id: str
    action: AuditAction
    performed_by: str | None
    performed_at: datetime
    details: str | None = None

    @classmethod
    def from_row(cls, row: tuple) -> "AlertAuditEntry":
        """Create from database row tuple."""
        return cls(
            id=row[0],
            alert_id=row[1],
            action=AuditAction(row[2]),
            performed_by=row[3],
            performed_at=parse_datetime(row[4]),
            details=row[5],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "alert_id": self.alert_id,
            "action": self.action.value,
            "performed_by": self.performed_by,
            "performed_at": self.performed_at.isoformat() if self.performed_at else None,
            "details": self.details,
        }
