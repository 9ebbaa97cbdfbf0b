"""SQLite-backed shared alert store.

Several processes may open the same database file; WAL journaling lets
them read while one of them writes, and every status change goes through
a single guarded UPDATE so concurrent writers cannot both win.
"""

import asyncio
import logging
import os
import sqlite3
import uuid
from collections.abc import AsyncIterator, Callable, Collection
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .base import SharedAlertStore
from .models import (
    Alert,
    AlertAuditEntry,
    AlertKind,
    AlertStatus,
    AuditAction,
    StoreUnavailableError,
    UpdateResult,
    derive_priority,
)

logger = logging.getLogger(__name__)

# Fields a conditional update may touch; everything else is fixed at creation
MUTABLE_FIELDS = frozenset({"status", "assigned_by", "resolved_by", "notes"})

# Optional details a field client may attach at creation
DETAIL_FIELDS = ("train_number", "description", "image_url", "reporter_id", "reference")

STATUS_TIMESTAMP_COLUMN: dict[AlertStatus, str] = {
    AlertStatus.ESCALATED: "escalated_at",
    AlertStatus.ASSIGNED: "assigned_at",
    AlertStatus.INVESTIGATING: "investigating_at",
    AlertStatus.RESOLVED: "resolved_at",
}

STATUS_AUDIT_ACTION: dict[AlertStatus, AuditAction] = {
    AlertStatus.ESCALATED: AuditAction.ESCALATED,
    AlertStatus.ASSIGNED: AuditAction.ASSIGNED,
    AlertStatus.INVESTIGATING: AuditAction.INVESTIGATING,
    AlertStatus.RESOLVED: AuditAction.RESOLVED,
}

ALERT_COLUMNS = """
    id, request_id, kind, category, priority, status, coach, seat,
    train_number, description, image_url, reporter_id, reference,
    created_at, updated_at, version,
    escalated_at, assigned_at, assigned_by, investigating_at,
    resolved_at, resolved_by, notes
"""


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AlertStore(SharedAlertStore):
    """SQLite implementation of the shared alert store."""

    def __init__(
        self,
        db_path: str | None = None,
        clock: Callable[[], datetime] | None = None,
        timeout: float = 5.0,
    ):
        """Initialize alert store.

        Args:
            db_path: Path to SQLite database. Defaults to ALERT_DB_PATH env var
                     or ~/.railrakshak/alerts.db
            clock: Source of store timestamps (UTC). Defaults to the system clock.
            timeout: Seconds to wait on a locked database before giving up
        """
        if db_path:
            self.db_path = os.path.expanduser(db_path)
        else:
            self.db_path = os.path.expanduser(
                os.environ.get("ALERT_DB_PATH", "~/.railrakshak/alerts.db")
            )
        self._clock = clock or utc_now
        self.timeout = timeout

        # Ensure directory exists
        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self._init_db()

    def _init_db(self) -> None:
        """Initialize database schema."""
        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path) as f:
            schema = f.read()

        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(schema)

    @contextmanager
    def _connect(self):
        """Open a connection, commit on success and always close it.

        Driver errors other than integrity violations surface as
        StoreUnavailableError.
        """
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Cannot open alert store {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.IntegrityError:
            conn.rollback()
            raise
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Alert store error: {e}") from e
        finally:
            conn.close()

    def _now(self) -> datetime:
        return self._clock()

    @staticmethod
    def _iso(value: datetime) -> str:
        return value.isoformat(timespec="microseconds")

    def _generate_id(self) -> str:
        """Generate a unique alert ID."""
        return str(uuid.uuid4())

    # Core alert operations

    def create(
        self,
        kind: AlertKind,
        category: str,
        coach: str,
        seat: str,
        request_id: str | None = None,
        **details: Any,
    ) -> Alert:
        """Save a new pending alert.

        Priority is derived from category here and never written again.
        A repeated request_id returns the alert stored by the first call.
        """
        unknown = set(details) - set(DETAIL_FIELDS)
        if unknown:
            raise ValueError(f"Unsupported alert fields: {', '.join(sorted(unknown))}")

        alert_id = self._generate_id()
        now = self._iso(self._now())
        priority = derive_priority(category)

        try:
            with self._connect() as conn:
                conn.execute(
                    f"""
                    INSERT INTO alerts (
                        id, request_id, kind, category, priority, status,
                        coach, seat, {', '.join(DETAIL_FIELDS)},
                        created_at, updated_at, version
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1)
                    """,
                    (
                        alert_id, request_id, kind.value, category, priority.value,
                        AlertStatus.PENDING.value, coach, seat,
                        *(details.get(name) for name in DETAIL_FIELDS),
                        now, now,
                    )
                )

                # Audit log
                conn.execute(
                    """
                    INSERT INTO alert_audit (alert_id, action, performed_by, performed_at, details)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (alert_id, AuditAction.CREATED.value, details.get("reporter_id"), now, category)
                )
        except sqlite3.IntegrityError:
            if request_id is None:
                raise
            existing = self.get_alert_by_request(request_id)
            if existing is None:
                raise
            logger.info(f"Duplicate submission {request_id}, returning alert {existing.id}")
            return existing

        logger.info(
            f"Created {kind.value} alert {alert_id} ({category}, {priority.value}) "
            f"at coach {coach} seat {seat}"
        )

        alert = self.get_alert(alert_id)
        if alert is None:
            raise StoreUnavailableError(f"Alert {alert_id} vanished after insert")
        return alert

    def get_alert(self, alert_id: str) -> Alert | None:
        """Get an alert by ID."""
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {ALERT_COLUMNS} FROM alerts WHERE id = ?",
                (alert_id,)
            ).fetchone()

        return Alert.from_row(row) if row else None

    def get_alert_by_request(self, request_id: str) -> Alert | None:
        """Get an alert by the client request ID it was submitted with."""
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {ALERT_COLUMNS} FROM alerts WHERE request_id = ?",
                (request_id,)
            ).fetchone()

        return Alert.from_row(row) if row else None

    # Status updates

    def conditional_update(
        self,
        alert_id: str,
        expected_status: AlertStatus | Collection[AlertStatus],
        patch: dict[str, Any],
        performed_by: str | None = None,
    ) -> UpdateResult:
        """Apply patch if, and only if, the stored status is one of expected_status."""
        if isinstance(expected_status, AlertStatus):
            expected = [expected_status]
        else:
            expected = list(expected_status)
        if not expected:
            raise ValueError("expected_status must name at least one status")

        illegal = set(patch) - MUTABLE_FIELDS
        if illegal:
            raise ValueError(f"Cannot update immutable fields: {', '.join(sorted(illegal))}")

        now = self._iso(self._now())
        set_parts = ["updated_at = ?", "version = version + 1"]
        params: list[Any] = [now]

        new_status = AlertStatus(patch["status"]) if "status" in patch else None
        if new_status is not None:
            set_parts.append("status = ?")
            params.append(new_status.value)
            column = STATUS_TIMESTAMP_COLUMN.get(new_status)
            if column:
                set_parts.append(f"{column} = ?")
                params.append(now)

        for key in ("assigned_by", "resolved_by", "notes"):
            if key in patch:
                set_parts.append(f"{key} = ?")
                params.append(patch[key])

        placeholders = ",".join("?" * len(expected))
        params.append(alert_id)
        params.extend(s.value for s in expected)

        with self._connect() as conn:
            cursor = conn.execute(
                f"""
                UPDATE alerts SET {', '.join(set_parts)}
                WHERE id = ? AND status IN ({placeholders})
                """,
                params
            )

            if cursor.rowcount == 0:
                exists = conn.execute(
                    "SELECT 1 FROM alerts WHERE id = ?", (alert_id,)
                ).fetchone()
                result = UpdateResult.CONFLICT if exists else UpdateResult.NOT_FOUND
            else:
                if new_status is not None:
                    conn.execute(
                        """
                        INSERT INTO alert_audit (alert_id, action, performed_by, performed_at, details)
                        VALUES (?, ?, ?, ?, ?)
                        """,
                        (
                            alert_id,
                            STATUS_AUDIT_ACTION.get(new_status, AuditAction.CREATED).value,
                            performed_by,
                            now,
                            f"from {'/'.join(s.value for s in expected)}",
                        )
                    )
                result = UpdateResult.OK

        if result is UpdateResult.OK:
            logger.debug(f"Alert {alert_id} updated by {performed_by}: {patch}")
        else:
            logger.debug(f"Conditional update of {alert_id} by {performed_by}: {result.value}")
        return result

    # Query methods

    def list_alerts(
        self,
        status: AlertStatus | list[AlertStatus] | None = None,
        kind: AlertKind | None = None,
        coach: str | None = None,
        seat: str | None = None,
        limit: int = 500,
    ) -> list[Alert]:
        """List alerts with optional filters.

        Args:
            status: Filter by status (single or list)
            kind: Filter by alert kind
            coach: Filter by coach
            seat: Filter by seat
            limit: Maximum results

        Returns:
            Matching alerts, newest first
        """
        conditions = []
        params: list[Any] = []

        if status:
            if isinstance(status, list):
                placeholders = ",".join("?" * len(status))
                conditions.append(f"status IN ({placeholders})")
                params.extend(s.value for s in status)
            else:
                conditions.append("status = ?")
                params.append(status.value)

        if kind:
            conditions.append("kind = ?")
            params.append(kind.value)

        if coach:
            conditions.append("coach = ?")
            params.append(coach)

        if seat:
            conditions.append("seat = ?")
            params.append(seat)

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        params.append(limit)

        with self._connect() as conn:
            cursor = conn.execute(
                f"""
                SELECT {ALERT_COLUMNS}
                FROM alerts
                WHERE {where_clause}
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
                """,
                params
            )
            return [Alert.from_row(row) for row in cursor.fetchall()]

    def list_open_alerts(self) -> list[Alert]:
        """List all alerts that still need handling."""
        return self.list_alerts(
            status=[
                AlertStatus.PENDING,
                AlertStatus.ESCALATED,
                AlertStatus.ASSIGNED,
                AlertStatus.INVESTIGATING,
            ],
        )

    def snapshot(self, limit: int = 500) -> list[Alert]:
        """Every unresolved alert plus the most recently resolved ones.

        Only resolved history is capped. It is ordered by last change so
        an old alert resolved just now is still delivered.

        Args:
            limit: Maximum number of resolved alerts to include

        Returns:
            Alerts newest first
        """
        with self._connect() as conn:
            open_rows = conn.execute(
                f"""
                SELECT {ALERT_COLUMNS}
                FROM alerts
                WHERE status != ?
                ORDER BY created_at DESC, rowid DESC
                """,
                (AlertStatus.RESOLVED.value,)
            ).fetchall()
            resolved_rows = conn.execute(
                f"""
                SELECT {ALERT_COLUMNS}
                FROM alerts
                WHERE status = ?
                ORDER BY updated_at DESC, rowid DESC
                LIMIT ?
                """,
                (AlertStatus.RESOLVED.value, limit)
            ).fetchall()

        alerts = [Alert.from_row(row) for row in (*open_rows, *resolved_rows)]
        alerts.sort(key=lambda a: a.created_at, reverse=True)
        return alerts

    def get_audit_log(self, alert_id: str) -> list[AlertAuditEntry]:
        """Get audit history for an alert."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                SELECT id, alert_id, action, performed_by, performed_at, details
                FROM alert_audit
                WHERE alert_id = ?
                ORDER BY id ASC
                """,
                (alert_id,)
            )

            return [AlertAuditEntry.from_row(tuple(row)) for row in cursor.fetchall()]

    # Subscription

    async def subscribe(
        self,
        poll_interval: float = 1.0,
        limit: int = 500,
    ) -> AsyncIterator[list[Alert]]:
        """Poll the database and yield snapshot(limit) whenever it changes."""
        last_signature: tuple | None = None

        while True:
            snapshot = await asyncio.to_thread(self.snapshot, limit)
            signature = tuple((a.id, a.version) for a in snapshot)

            if signature != last_signature:
                last_signature = signature
                yield snapshot

            await asyncio.sleep(poll_interval)

    # Statistics

    def get_stats(self) -> dict[str, int]:
        """Get alert counts by status, kind and priority."""
        with self._connect() as conn:
            stats = {}

            for column in ("status", "kind", "priority"):
                cursor = conn.execute(
                    f"SELECT {column}, COUNT(*) FROM alerts GROUP BY {column}"
                )
                for row in cursor:
                    stats[f"{column}_{row[0]}"] = row[1]

            stats["total"] = conn.execute("SELECT COUNT(*) FROM alerts").fetchone()[0]

            today = self._now().date().isoformat()
            stats["today"] = conn.execute(
                "SELECT COUNT(*) FROM alerts WHERE substr(created_at, 1, 10) = ?",
                (today,)
            ).fetchone()[0]

            return stats
