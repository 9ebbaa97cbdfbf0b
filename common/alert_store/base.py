"""Abstract contract for the shared alert store."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Collection
from typing import Any

from .models import Alert, AlertKind, AlertStatus, UpdateResult


class SharedAlertStore(ABC):
    """Store shared by every process that watches or raises alerts.

    Implementations must stamp ``created_at`` themselves and must apply
    ``conditional_update`` atomically: of several writers expecting the
    same status, exactly one gets ``UpdateResult.OK``.
    """

    @abstractmethod
    def create(
        self,
        kind: AlertKind,
        category: str,
        coach: str,
        seat: str,
        request_id: str | None = None,
        **details: Any,
    ) -> Alert:
        """Create a pending alert and return the stored record.

        Args:
            kind: SOS or evidence complaint
            category: Incident category, used to derive priority
            coach: Coach identifier
            seat: Seat identifier
            request_id: Client-side identity used to drop duplicate submissions
            **details: Optional evidence details (description, image_url, ...)

        Returns:
            The stored Alert (the existing one for a repeated request_id)

        Raises:
            StoreUnavailableError: If the store cannot be reached
        """
        pass

    @abstractmethod
    def get_alert(self, alert_id: str) -> Alert | None:
        """Get an alert by ID."""
        pass

    @abstractmethod
    def list_alerts(
        self,
        status: AlertStatus | list[AlertStatus] | None = None,
        kind: AlertKind | None = None,
        coach: str | None = None,
        seat: str | None = None,
        limit: int = 500,
    ) -> list[Alert]:
        """List alerts ordered by creation time, newest first."""
        pass

    @abstractmethod
    def snapshot(self, limit: int = 500) -> list[Alert]:
        """Every unresolved alert plus the ``limit`` most recently resolved ones.

        Open alerts are never cut off, so nothing still awaiting escalation
        or handling can fall out of a replica.
        """
        pass

    @abstractmethod
    def conditional_update(
        self,
        alert_id: str,
        expected_status: AlertStatus | Collection[AlertStatus],
        patch: dict[str, Any],
        performed_by: str | None = None,
    ) -> UpdateResult:
        """Apply ``patch`` only if the alert's status is one of ``expected_status``.

        Returns:
            OK, CONFLICT (status did not match) or NOT_FOUND

        Raises:
            StoreUnavailableError: If the store cannot be reached
            ValueError: If the patch touches an immutable field
        """
        pass

    @abstractmethod
    def subscribe(
        self,
        poll_interval: float = 1.0,
        limit: int = 500,
    ) -> AsyncIterator[list[Alert]]:
        """Stream ``snapshot(limit)`` results, newest first.

        The first snapshot is delivered immediately, later ones whenever
        any record changes. Raises StoreUnavailableError when the
        subscription is lost.
        """
        pass
