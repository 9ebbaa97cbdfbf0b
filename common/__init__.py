"""Common components shared by the alert coordination services."""

from .alert_store import (
    Alert,
    AlertKind,
    AlertStatus,
    AlertStore,
    Priority,
    SharedAlertStore,
    StoreUnavailableError,
    UpdateResult,
)

__all__ = [
    "Alert",
    "AlertKind",
    "AlertStatus",
    "AlertStore",
    "Priority",
    "SharedAlertStore",
    "StoreUnavailableError",
    "UpdateResult",
]
