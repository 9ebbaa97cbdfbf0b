"""Alert creation on behalf of field clients (SOS button, evidence capture)."""

import logging
import random
from typing import Optional

from common.alert_store.base import SharedAlertStore
from common.alert_store.models import Alert, AlertKind

logger = logging.getLogger(__name__)


def generate_reference() -> str:
    """Human-readable complaint reference shown to the passenger, e.g. RR482913."""
    return f"RR{random.randint(100000, 999999)}"


def _require_location(coach: str, seat: str) -> tuple[str, str]:
    if not isinstance(coach or "", str) or not isinstance(seat or "", str):
        raise ValueError("coach and seat must be text")
    coach = (coach or "").strip()
    seat = (seat or "").strip()
    if not coach or not seat:
        raise ValueError("coach and seat are required")
    return coach, seat


def report_sos(
    store: SharedAlertStore,
    coach: str,
    seat: str,
    category: str,
    request_id: Optional[str] = None,
) -> Alert:
    """Raise an emergency SOS alert.

    Args:
        store: Shared alert store
        coach: Coach identifier (e.g. "B4")
        seat: Seat identifier
        category: Incident category (medical_emergency, harassment, ...)
        request_id: Client-generated ID so a retried submission is not duplicated

    Returns:
        The stored alert
    """
    coach, seat = _require_location(coach, seat)
    if not category:
        raise ValueError("category is required")

    alert = store.create(
        AlertKind.EMERGENCY_SOS,
        category,
        coach,
        seat,
        request_id=request_id,
    )
    logger.info(f"SOS {alert.id} raised from {coach}/{seat}: {category} ({alert.priority.value})")
    return alert


def submit_evidence(
    store: SharedAlertStore,
    coach: str,
    seat: str,
    category: str,
    description: str = "",
    image_url: Optional[str] = None,
    train_number: Optional[str] = None,
    reporter_id: Optional[str] = None,
    request_id: Optional[str] = None,
) -> Alert:
    """File an evidence complaint (photo or QR-scanned seat report)."""
    coach, seat = _require_location(coach, seat)
    if not category:
        raise ValueError("category is required")

    alert = store.create(
        AlertKind.EVIDENCE_COMPLAINT,
        category,
        coach,
        seat,
        request_id=request_id,
        description=description or None,
        image_url=image_url,
        train_number=train_number,
        reporter_id=reporter_id,
        reference=generate_reference(),
    )
    logger.info(f"Evidence {alert.reference} ({alert.id}) filed from {coach}/{seat}: {category}")
    return alert


def alerts_for_seat(store: SharedAlertStore, coach: str, seat: str) -> list[Alert]:
    """Alerts raised from one seat, newest first (QR seat lookup)."""
    coach, seat = _require_location(coach, seat)
    return store.list_alerts(coach=coach, seat=seat)
