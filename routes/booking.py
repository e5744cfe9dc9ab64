from datetime import datetime

from flask import Blueprint, request, jsonify, current_app, g

from models import db
from models.service import Service
from models.user import UserRole
from security.rbac import require_roles
from services import booking_workflow as workflow
from services.errors import InvalidBookingRequest, InvalidTransition, ServiceNotFound
from services.notifications import booking_summary
from services.state_machine import parse_status
from utils.audit import log_event
from utils.auth_context import login_required

booking_bp = Blueprint("booking", __name__, url_prefix="/bookings")


def _parse_iso(dt_str) -> datetime:
    # Expect ISO format like "2026-01-20T18:00:00" or with an offset / "Z"
    if not isinstance(dt_str, str) or not dt_str.strip():
        raise InvalidBookingRequest("start_time is required")
    value = dt_str.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        return workflow.to_utc_naive(datetime.fromisoformat(value))
    except ValueError:
        raise InvalidBookingRequest("Invalid datetime format. Use ISO e.g. 2026-01-20T18:00:00")


def _parse_id(value, name: str) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise InvalidBookingRequest(f"{name} must be an integer")
    if parsed <= 0:
        raise InvalidBookingRequest(f"{name} must be positive")
    return parsed


def _resolve_business_id(service_id: int, business_id=None) -> int:
    if business_id is not None:
        return _parse_id(business_id, "business_id")
    service = db.session.get(Service, service_id)
    if service is None:
        raise ServiceNotFound(service_id=service_id)
    return service.business_id


def _booking_json(b) -> dict:
    out = b.to_dict()
    out["summary"] = booking_summary(b)
    return out


def parse_status_filter(raw):
    """Comma-separated ``status`` query value as a list of BookingStatus, or None."""
    values = [s for s in (raw or "").split(",") if s.strip()]
    try:
        return [parse_status(s) for s in values] or None
    except InvalidTransition:
        raise InvalidBookingRequest(f"Unknown status filter: {raw!r}", status=raw)


def _status_filter():
    return parse_status_filter(request.args.get("status"))


# ---------- availability check ----------
@booking_bp.get("/availability")
def check_availability():
    service_id = _parse_id(request.args.get("service_id"), "service_id")
    start_time = _parse_iso(request.args.get("start_time"))
    business_id = _resolve_business_id(service_id, request.args.get("business_id"))

    slot = workflow.validate_slot(business_id, service_id, start_time)
    return jsonify(
        available=True,
        business_id=slot.business.id,
        service_id=slot.service.id,
        start_time=slot.start_time.isoformat(),
        end_time=slot.end_time.isoformat(),
        price=slot.service.price,
    ), 200


# ---------- CUSTOMERS: request a booking ----------
@booking_bp.post("")
@require_roles(UserRole.CUSTOMER)
def create_booking():
    if current_app.config.get("REQUIRE_VERIFIED_EMAIL", True) and not g.user.email_verified:
        return jsonify(error="Email verification required before booking"), 403

    data = request.get_json(silent=True) or {}
    service_id = _parse_id(data.get("service_id"), "service_id")
    start_time = _parse_iso(data.get("start_time"))
    business_id = _resolve_business_id(service_id, data.get("business_id"))

    notes = data.get("notes")
    if notes is not None:
        max_len = current_app.config.get("BOOKING_NOTES_MAX_LEN", 1000)
        if not isinstance(notes, str) or len(notes) > max_len:
            raise InvalidBookingRequest(f"notes must be text of at most {max_len} characters")
        notes = notes.strip() or None

    booking = workflow.create_booking(
        business_id=business_id,
        service_id=service_id,
        customer_id=g.user.id,
        start_time=start_time,
        notes=notes,
    )

    log_event(
        "BOOKING_CREATE",
        user_id=g.user.id,
        entity="booking",
        entity_id=booking.id,
        metadata={"service_id": service_id, "start_time": booking.start_time.isoformat()},
    )
    return jsonify(_booking_json(booking)), 201


# ---------- own bookings ----------
@booking_bp.get("")
@require_roles(UserRole.CUSTOMER, UserRole.BUSINESS)
def my_bookings():
    if g.user.role == UserRole.BUSINESS:
        rows = workflow.list_bookings(business_id=g.user.id, status=_status_filter())
    else:
        rows = workflow.list_bookings(customer_id=g.user.id, status=_status_filter())
    return jsonify([_booking_json(b) for b in rows]), 200


@booking_bp.get("/upcoming")
@require_roles(UserRole.CUSTOMER, UserRole.BUSINESS)
def upcoming_bookings():
    rows = workflow.list_upcoming(g.user.id, g.user.role)
    return jsonify([_booking_json(b) for b in rows]), 200


@booking_bp.get("/<int:booking_id>")
@login_required
def get_booking(booking_id: int):
    booking = workflow.get_booking(booking_id, g.user.id, g.user.role)
    return jsonify(_booking_json(booking)), 200


# ---------- status workflow ----------
def _change_status(booking_id: int, new_status):
    booking = workflow.transition_status(booking_id, new_status, g.user.id, g.user.role)
    log_event(
        "BOOKING_STATUS_CHANGE",
        user_id=g.user.id,
        entity="booking",
        entity_id=booking.id,
        metadata={"status": booking.status.value, "actor_role": g.user.role.value},
    )
    return jsonify(_booking_json(booking)), 200


@booking_bp.post("/<int:booking_id>/status")
@login_required
def update_status(booking_id: int):
    data = request.get_json(silent=True) or {}
    if not data.get("status"):
        return jsonify(error="status is required"), 400
    return _change_status(booking_id, data["status"])


@booking_bp.post("/<int:booking_id>/confirm")
@login_required
def confirm_booking(booking_id: int):
    return _change_status(booking_id, "confirmed")


@booking_bp.post("/<int:booking_id>/cancel")
@login_required
def cancel_booking(booking_id: int):
    return _change_status(booking_id, "cancelled")


@booking_bp.post("/<int:booking_id>/complete")
@login_required
def complete_booking(booking_id: int):
    return _change_status(booking_id, "completed")
