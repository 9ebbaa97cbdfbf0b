"""API routes for monitoring consoles and field clients."""

from datetime import datetime, timezone
from functools import wraps
from flask import Blueprint, jsonify, request, current_app

from common.alert_store import AlertKind, AlertStatus, StoreUnavailableError
from sos_alerts.commands import CommandResult
from sos_alerts.intake import alerts_for_seat, report_sos, submit_evidence
from sos_alerts.state_machine import InvalidTransition
from sos_alerts.views import alert_card, dashboard_summary, protocol_status

api_bp = Blueprint("api", __name__)

COMMAND_STATUS_CODES = {
    CommandResult.OK: 200,
    CommandResult.ALREADY_HANDLED: 409,
    CommandResult.NOT_FOUND: 404,
    CommandResult.TRANSPORT_ERROR: 503,
}


def check_api_key(f):
    """Decorator to check API key for protected endpoints."""
    @wraps(f)
    def decorated(*args, **kwargs):
        api_key = current_app.config.get("DASHBOARD_API_KEY")

        # If no API key configured, allow all requests (dev mode)
        if not api_key:
            return f(*args, **kwargs)

        # Check key from query param or header
        provided_key = request.args.get("key") or request.headers.get("X-API-Key")

        if provided_key != api_key:
            return jsonify({"error": "Invalid or missing API key"}), 401

        return f(*args, **kwargs)

    return decorated


@api_bp.errorhandler(StoreUnavailableError)
def store_unavailable(error):
    return jsonify({"error": "Alert store unavailable"}), 503


def _grace() -> int:
    return current_app.config.get("ESCALATION_GRACE_SECONDS", 120)


def _json_object() -> dict | None:
    """Request body as a dict; {} when absent, None when not a JSON object."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    return data if isinstance(data, dict) else None


def _not_an_object():
    return jsonify({"error": "Request body must be a JSON object"}), 400


def _operator(data: dict) -> str:
    return data.get("user") or request.headers.get("X-User", "Dashboard User")


@api_bp.route("/health", methods=["GET"])
def health():
    """Liveness check."""
    return jsonify({
        "status": "ok",
        "service": "RailRakshak alert coordination",
        "time": datetime.now(timezone.utc).isoformat(),
    })


@api_bp.route("/alerts", methods=["GET"])
@check_api_key
def list_alerts():
    """List alerts, newest first, with their countdown projections."""
    store = current_app.alert_store

    status_param = request.args.get("status")
    kind_param = request.args.get("kind")
    coach = request.args.get("coach")
    limit = request.args.get("limit", type=int, default=current_app.config.get("ALERTS_PER_PAGE", 100))

    filter_kwargs = {"limit": limit}

    if status_param:
        try:
            filter_kwargs["status"] = AlertStatus(status_param)
        except ValueError:
            return jsonify({"error": f"Invalid status: {status_param}"}), 400

    if kind_param:
        try:
            filter_kwargs["kind"] = AlertKind(kind_param)
        except ValueError:
            return jsonify({"error": f"Invalid kind: {kind_param}"}), 400

    if coach:
        filter_kwargs["coach"] = coach

    alerts = store.list_alerts(**filter_kwargs)
    now = datetime.now(timezone.utc)

    return jsonify({
        "alerts": [alert_card(a, now, _grace()) for a in alerts],
        "count": len(alerts),
    })


@api_bp.route("/alerts/<alert_id>", methods=["GET"])
@check_api_key
def get_alert(alert_id):
    """Get a single alert by ID."""
    alert = current_app.alert_store.get_alert(alert_id)
    if not alert:
        return jsonify({"error": "Alert not found"}), 404

    return jsonify(alert_card(alert, grace_period_seconds=_grace()))


@api_bp.route("/alerts/<alert_id>/audit", methods=["GET"])
@check_api_key
def get_audit_log(alert_id):
    """Get the transition history of an alert."""
    store = current_app.alert_store
    if not store.get_alert(alert_id):
        return jsonify({"error": "Alert not found"}), 404

    return jsonify({
        "alert_id": alert_id,
        "entries": [e.to_dict() for e in store.get_audit_log(alert_id)],
    })


@api_bp.route("/alerts/sos", methods=["POST"])
def create_sos():
    """Raise an SOS alert from a passenger device."""
    data = _json_object()
    if data is None:
        return _not_an_object()

    try:
        alert = report_sos(
            current_app.alert_store,
            coach=data.get("coach", ""),
            seat=data.get("seat", ""),
            category=data.get("category", ""),
            request_id=data.get("request_id"),
        )
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify(alert.to_dict()), 201


@api_bp.route("/alerts/evidence", methods=["POST"])
def create_evidence():
    """File an evidence complaint from a passenger device."""
    data = _json_object()
    if data is None:
        return _not_an_object()

    try:
        alert = submit_evidence(
            current_app.alert_store,
            coach=data.get("coach", ""),
            seat=data.get("seat", ""),
            category=data.get("category", ""),
            description=data.get("description", ""),
            image_url=data.get("image_url"),
            train_number=data.get("train_number"),
            reporter_id=data.get("reporter_id"),
            request_id=data.get("request_id"),
        )
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify(alert.to_dict()), 201


def _run_command(alert_id: str, action: str):
    data = _json_object()
    if data is None:
        return _not_an_object()

    handler = current_app.commands
    operator = _operator(data)

    try:
        if action == "assign":
            result = handler.assign(alert_id, operator)
        elif action == "investigate":
            result = handler.start_investigation(alert_id, operator)
        else:
            result = handler.resolve(alert_id, operator, notes=data.get("notes"))
    except InvalidTransition as e:
        return jsonify({
            "success": False,
            "error": str(e),
            "status": e.current.value,
        }), 400

    body = {
        "success": result is CommandResult.OK,
        "alert_id": alert_id,
        "result": result.value,
        "message": result.message,
    }
    if result is CommandResult.OK:
        alert = current_app.alert_store.get_alert(alert_id)
        body["status"] = alert.status.value if alert else None

    return jsonify(body), COMMAND_STATUS_CODES[result]


@api_bp.route("/alerts/<alert_id>/assign", methods=["POST"])
@check_api_key
def assign_alert(alert_id):
    """Assign a unit to a pending or escalated alert."""
    return _run_command(alert_id, "assign")


@api_bp.route("/alerts/<alert_id>/investigate", methods=["POST"])
@check_api_key
def investigate_alert(alert_id):
    """Mark an assigned alert as in progress."""
    return _run_command(alert_id, "investigate")


@api_bp.route("/alerts/<alert_id>/resolve", methods=["POST"])
@check_api_key
def resolve_alert(alert_id):
    """Resolve an assigned or investigating alert."""
    return _run_command(alert_id, "resolve")


@api_bp.route("/stats", methods=["GET"])
@check_api_key
def get_stats():
    """Get alert statistics."""
    return jsonify(current_app.alert_store.get_stats())


@api_bp.route("/summary", methods=["GET"])
@check_api_key
def get_summary():
    """Headline counters and protocol banner for the console."""
    alerts = current_app.alert_store.list_alerts()
    return jsonify({
        "station": current_app.config.get("STATION_CODE"),
        "counts": dashboard_summary(alerts),
        "protocol": protocol_status(alerts),
    })


@api_bp.route("/seats/<coach>/<seat>", methods=["GET"])
def seat_alerts(coach, seat):
    """Alerts raised from a seat (target of the seat QR code)."""
    alerts = alerts_for_seat(current_app.alert_store, coach, seat)
    return jsonify({
        "coach": coach,
        "seat": seat,
        "alerts": [alert_card(a, grace_period_seconds=_grace()) for a in alerts],
        "count": len(alerts),
    })
