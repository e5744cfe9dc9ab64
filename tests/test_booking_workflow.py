from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from models import db
from models.booking import Booking, BookingStatus
from models.service import Service
from services import booking_workflow as workflow
from services.errors import (
    BookingCreationFailed,
    BookingNotFound,
    BusinessNotFound,
    InvalidBookingRequest,
    InvalidTransition,
    ServiceNotFound,
    SlotUnavailable,
    Unauthorized,
)


# ---------- slot validation ----------
def test_overlapping_request_is_rejected_and_back_to_back_succeeds(business, service, customer, other_customer, add_booking, tomorrow_at):
    existing = add_booking(service, other_customer, tomorrow_at(10))

    with pytest.raises(SlotUnavailable) as exc:
        workflow.create_booking(business.id, service.id, customer.id, tomorrow_at(10, 30))
    assert exc.value.details["conflicting_booking_id"] == existing.id

    booking = workflow.create_booking(business.id, service.id, customer.id, tomorrow_at(11))
    assert booking.status is BookingStatus.PENDING
    assert booking.start_time == tomorrow_at(11)
    assert booking.end_time == tomorrow_at(12)
    assert booking.date == tomorrow_at(11).date()


def test_booking_ending_when_existing_starts_is_allowed(business, service, customer, other_customer, add_booking, tomorrow_at):
    add_booking(service, other_customer, tomorrow_at(10))
    slot = workflow.validate_slot(business.id, service.id, tomorrow_at(9))
    assert slot.end_time == tomorrow_at(10)


@pytest.mark.parametrize("hour,minute", [(9, 30), (10, 0), (10, 59)])
def test_any_overlap_conflicts(business, service, other_customer, add_booking, tomorrow_at, hour, minute):
    add_booking(service, other_customer, tomorrow_at(10))
    with pytest.raises(SlotUnavailable):
        workflow.validate_slot(business.id, service.id, tomorrow_at(hour, minute))


def test_pending_bookings_block_the_slot(business, service, other_customer, add_booking, tomorrow_at):
    add_booking(service, other_customer, tomorrow_at(10), status=BookingStatus.PENDING)
    with pytest.raises(SlotUnavailable):
        workflow.validate_slot(business.id, service.id, tomorrow_at(10, 15))


@pytest.mark.parametrize("status", [BookingStatus.CANCELLED, BookingStatus.COMPLETED])
def test_inactive_bookings_do_not_block(business, service, other_customer, add_booking, tomorrow_at, status):
    add_booking(service, other_customer, tomorrow_at(10), status=status)
    workflow.validate_slot(business.id, service.id, tomorrow_at(10))


def test_other_business_bookings_do_not_block(business, other_business, service, other_customer, add_booking, tomorrow_at):
    nails = Service(business_id=other_business.id, name="Manicure", price=2000, duration=45)
    db.session.add(nails)
    db.session.commit()
    add_booking(nails, other_customer, tomorrow_at(10))

    workflow.validate_slot(business.id, service.id, tomorrow_at(10))


def test_start_time_in_the_past_is_rejected(business, service):
    with pytest.raises(InvalidBookingRequest):
        workflow.validate_slot(business.id, service.id, datetime.utcnow() - timedelta(minutes=5))


def test_start_time_equal_to_now_is_accepted(business, service, tomorrow_at):
    now = tomorrow_at(8)
    slot = workflow.validate_slot(business.id, service.id, now, now=now)
    assert slot.start_time == now


def test_aware_start_time_is_stored_as_utc(business, service, customer, tomorrow_at):
    plus_two = timezone(timedelta(hours=2))
    local = tomorrow_at(12).replace(tzinfo=plus_two)
    booking = workflow.create_booking(business.id, service.id, customer.id, local)
    assert booking.start_time == tomorrow_at(10)


def test_unavailable_service_cannot_be_booked(business, service, tomorrow_at):
    service.is_available = False
    db.session.commit()
    with pytest.raises(ServiceNotFound):
        workflow.validate_slot(business.id, service.id, tomorrow_at(10))


def test_service_must_belong_to_business(other_business, service, tomorrow_at):
    with pytest.raises(ServiceNotFound):
        workflow.validate_slot(other_business.id, service.id, tomorrow_at(10))


def test_unknown_service(business, tomorrow_at):
    with pytest.raises(ServiceNotFound):
        workflow.validate_slot(business.id, 4040, tomorrow_at(10))


def test_business_must_exist_and_be_a_business(customer, service, tomorrow_at):
    with pytest.raises(BusinessNotFound):
        workflow.validate_slot(4040, service.id, tomorrow_at(10))
    with pytest.raises(BusinessNotFound):
        workflow.validate_slot(customer.id, service.id, tomorrow_at(10))


# ---------- creation ----------
def test_creation_snapshots_price(business, service, customer, tomorrow_at):
    booking = workflow.create_booking(business.id, service.id, customer.id, tomorrow_at(10), notes="Short on the sides")
    assert booking.total_amount == 3500
    assert booking.notes == "Short on the sides"

    service.price = 9900
    db.session.commit()
    db.session.expire_all()

    assert db.session.get(Booking, booking.id).total_amount == 3500


def test_unknown_customer_is_rejected(business, service, tomorrow_at):
    with pytest.raises(InvalidBookingRequest):
        workflow.create_booking(business.id, service.id, 4040, tomorrow_at(10))
    assert Booking.query.count() == 0


def test_exclusion_constraint_violation_maps_to_slot_unavailable(business, service, customer, tomorrow_at, monkeypatch):
    error = IntegrityError("INSERT INTO bookings", {}, Exception('violates exclusion constraint "booking_no_overlap"'))

    def fail_commit():
        raise error

    monkeypatch.setattr(db.session(), "commit", fail_commit)
    with pytest.raises(SlotUnavailable):
        workflow.create_booking(business.id, service.id, customer.id, tomorrow_at(10))


def test_other_integrity_errors_fail_creation(business, service, customer, tomorrow_at, monkeypatch):
    error = IntegrityError("INSERT INTO bookings", {}, Exception("FOREIGN KEY constraint failed"))

    def fail_commit():
        raise error

    monkeypatch.setattr(db.session(), "commit", fail_commit)
    with pytest.raises(BookingCreationFailed):
        workflow.create_booking(business.id, service.id, customer.id, tomorrow_at(10))


# ---------- status transitions ----------
def test_confirm_complete_then_customer_cancel_is_invalid(business, service, customer, tomorrow_at, sent_emails):
    booking = workflow.create_booking(business.id, service.id, customer.id, tomorrow_at(10))

    booking = workflow.transition_status(booking.id, "confirmed", business.id, "business")
    assert booking.status is BookingStatus.CONFIRMED

    booking = workflow.transition_status(booking.id, "completed", business.id, "business")
    assert booking.status is BookingStatus.COMPLETED

    with pytest.raises(InvalidTransition):
        workflow.transition_status(booking.id, "cancelled", customer.id, "customer")

    assert [e["status"] for e in sent_emails] == ["confirmed", "completed"]
    assert sent_emails[0]["email"] == customer.email
    assert sent_emails[0]["summary"]["service"] == "Haircut"
    assert sent_emails[0]["summary"]["business"] == "Fade Barbers"


def test_customer_cannot_confirm(business, service, customer, tomorrow_at, sent_emails):
    booking = workflow.create_booking(business.id, service.id, customer.id, tomorrow_at(10))
    with pytest.raises(Unauthorized):
        workflow.transition_status(booking.id, "confirmed", customer.id, "customer")
    assert db.session.get(Booking, booking.id).status is BookingStatus.PENDING
    assert sent_emails == []


@pytest.mark.parametrize("first", [None, "confirmed"])
def test_customer_can_cancel_own_active_booking(business, service, customer, tomorrow_at, sent_emails, first):
    booking = workflow.create_booking(business.id, service.id, customer.id, tomorrow_at(10))
    if first:
        workflow.transition_status(booking.id, first, business.id, "business")

    booking = workflow.transition_status(booking.id, "cancelled", customer.id, "customer")
    assert booking.status is BookingStatus.CANCELLED


def test_cancelled_booking_frees_the_slot(business, service, customer, other_customer, tomorrow_at, sent_emails):
    booking = workflow.create_booking(business.id, service.id, customer.id, tomorrow_at(10))
    workflow.transition_status(booking.id, "cancelled", customer.id, "customer")

    again = workflow.create_booking(business.id, service.id, other_customer.id, tomorrow_at(10))
    assert again.status is BookingStatus.PENDING


def test_other_business_is_unauthorized(business, other_business, service, customer, tomorrow_at):
    booking = workflow.create_booking(business.id, service.id, customer.id, tomorrow_at(10))
    with pytest.raises(Unauthorized):
        workflow.transition_status(booking.id, "confirmed", other_business.id, "business")


def test_other_customer_is_unauthorized(business, service, customer, other_customer, tomorrow_at):
    booking = workflow.create_booking(business.id, service.id, customer.id, tomorrow_at(10))
    with pytest.raises(Unauthorized):
        workflow.transition_status(booking.id, "cancelled", other_customer.id, "customer")


def test_admin_can_cancel_any_booking(business, service, customer, admin, tomorrow_at, sent_emails):
    booking = workflow.create_booking(business.id, service.id, customer.id, tomorrow_at(10))
    booking = workflow.transition_status(booking.id, "cancelled", admin.id, "admin")
    assert booking.status is BookingStatus.CANCELLED


def test_self_transition_is_invalid(business, service, customer, tomorrow_at):
    booking = workflow.create_booking(business.id, service.id, customer.id, tomorrow_at(10))
    with pytest.raises(InvalidTransition):
        workflow.transition_status(booking.id, "pending", business.id, "business")


def test_pending_cannot_be_completed(business, service, customer, tomorrow_at):
    booking = workflow.create_booking(business.id, service.id, customer.id, tomorrow_at(10))
    with pytest.raises(InvalidTransition):
        workflow.transition_status(booking.id, "completed", business.id, "business")


def test_unknown_booking(business):
    with pytest.raises(BookingNotFound):
        workflow.transition_status(4040, "confirmed", business.id, "business")


def test_status_change_survives_notifier_failure(business, service, customer, tomorrow_at):
    booking = workflow.create_booking(business.id, service.id, customer.id, tomorrow_at(10))

    def broken_notifier(email, status, summary):
        raise RuntimeError("mail relay down")

    workflow.transition_status(booking.id, "confirmed", business.id, "business", notifier=broken_notifier)

    db.session.expire_all()
    stored = db.session.get(Booking, booking.id)
    assert stored.status is BookingStatus.CONFIRMED
    assert stored.updated_at >= stored.created_at


# ---------- listing ----------
def test_list_bookings_orders_by_start_time_and_filters(business, service, customer, other_customer, add_booking, tomorrow_at):
    late = add_booking(service, customer, tomorrow_at(15))
    early = add_booking(service, other_customer, tomorrow_at(9), status=BookingStatus.PENDING)
    cancelled = add_booking(service, customer, tomorrow_at(12), status=BookingStatus.CANCELLED)

    assert [b.id for b in workflow.list_bookings(business_id=business.id)] == [early.id, cancelled.id, late.id]
    assert [b.id for b in workflow.list_bookings(customer_id=customer.id)] == [cancelled.id, late.id]
    assert [b.id for b in workflow.list_bookings(business_id=business.id, status="pending")] == [early.id]
    assert [b.id for b in workflow.list_bookings(business_id=business.id, status=["pending", "confirmed"])] == [early.id, late.id]


def test_list_upcoming_skips_past_and_inactive(business, service, customer, add_booking, tomorrow_at):
    upcoming = add_booking(service, customer, tomorrow_at(10))
    add_booking(service, customer, tomorrow_at(12), status=BookingStatus.CANCELLED)
    add_booking(service, customer, tomorrow_at(14) - timedelta(days=3))

    assert [b.id for b in workflow.list_upcoming(customer.id, "customer")] == [upcoming.id]
    assert [b.id for b in workflow.list_upcoming(business.id, "business")] == [upcoming.id]


def test_get_booking_checks_ownership(business, service, customer, other_customer, add_booking, tomorrow_at):
    booking = add_booking(service, customer, tomorrow_at(10))
    assert workflow.get_booking(booking.id, customer.id, "customer").id == booking.id
    with pytest.raises(Unauthorized):
        workflow.get_booking(booking.id, other_customer.id, "customer")
    with pytest.raises(BookingNotFound):
        workflow.get_booking(4040, customer.id, "customer")
