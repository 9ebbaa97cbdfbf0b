"""Shared alert store.

Provides the contract every process uses to coordinate alerts:
- create() stamps creation time and priority on the store side
- conditional_update() applies a change only from an expected status
- subscribe() streams full snapshots of the alert list
"""

from .models import (
    Alert,
    AlertAuditEntry,
    AlertKind,
    AlertStatus,
    AuditAction,
    Priority,
    StoreUnavailableError,
    UpdateResult,
    derive_priority,
    EVIDENCE_CATEGORIES,
    SOS_CATEGORIES,
)
from .base import SharedAlertStore
from .store import AlertStore

__all__ = [
    "Alert",
    "AlertAuditEntry",
    "AlertKind",
    "AlertStatus",
    "AuditAction",
    "Priority",
    "StoreUnavailableError",
    "UpdateResult",
    "derive_priority",
    "EVIDENCE_CATEGORIES",
    "SOS_CATEGORIES",
    "SharedAlertStore",
    "AlertStore",
]
