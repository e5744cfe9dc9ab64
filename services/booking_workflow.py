"""Booking availability and status workflow.

Slot validation and booking creation share one transaction that holds a write
lock before the overlap query, so two requests for the same business cannot
both pass the check and insert overlapping bookings. PostgreSQL locks the
business row (``SELECT ... FOR UPDATE``) and the ``booking_no_overlap``
exclusion constraint (see migrations) backs this up. SQLite has no row locks,
so the transaction is opened with ``BEGIN IMMEDIATE``, which takes the
database write lock up front.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import db
from models.booking import ACTIVE_STATUSES, Booking, BookingStatus
from models.service import Service
from models.user import User, UserRole
from security.rbac import check_ownership, check_transition_permission, parse_role
from services import notifications
from services.errors import (
    BookingCreationFailed,
    BookingError,
    BookingNotFound,
    BookingUpdateFailed,
    BusinessNotFound,
    InvalidBookingRequest,
    ServiceNotFound,
    SlotUnavailable,
)
from services.state_machine import check_transition, parse_status

logger = logging.getLogger(__name__)

OVERLAP_CONSTRAINT = "booking_no_overlap"


@dataclass(frozen=True)
class SlotCheck:
    business: User
    service: Service
    start_time: datetime
    end_time: datetime


def to_utc_naive(value: datetime) -> datetime:
    # stored datetimes are naive UTC
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _begin_write_lock() -> None:
    conn = db.session.connection()
    if conn.dialect.name != "sqlite":
        return
    # FOR UPDATE is a no-op on SQLite; take the database write lock instead
    if not conn.connection.dbapi_connection.in_transaction:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def _get_business(business_id, lock=False) -> User:
    q = User.query.filter_by(id=business_id)
    if lock:
        q = q.with_for_update()
    business = q.first()
    if business is None or business.role != UserRole.BUSINESS:
        raise BusinessNotFound(business_id=business_id)
    return business


def _get_bookable_service(business_id, service_id) -> Service:
    service = db.session.get(Service, service_id)
    if service is None or service.business_id != business_id:
        raise ServiceNotFound(service_id=service_id)
    if not service.is_available:
        raise ServiceNotFound("Service is not available for booking", service_id=service_id)
    return service


def find_conflict(business_id, start_time: datetime, end_time: datetime):
    """First active booking of the business overlapping [start_time, end_time), if any."""
    return (
        Booking.query
        .filter(
            Booking.business_id == business_id,
            Booking.status.in_(ACTIVE_STATUSES),
            Booking.start_time < end_time,
            Booking.end_time > start_time,
        )
        .order_by(Booking.start_time.asc())
        .first()
    )


def _check_slot(business_id, service_id, start_time, now=None, lock=False) -> SlotCheck:
    business = _get_business(business_id, lock=lock)
    service = _get_bookable_service(business.id, service_id)

    start_time = to_utc_naive(start_time)
    now = now or datetime.utcnow()
    if start_time < now:
        raise InvalidBookingRequest("start_time must not be in the past", start_time=start_time.isoformat())

    end_time = start_time + timedelta(minutes=service.duration)
    conflict = find_conflict(business.id, start_time, end_time)
    if conflict is not None:
        raise SlotUnavailable(
            conflicting_booking_id=conflict.id,
            start_time=start_time.isoformat(),
            end_time=end_time.isoformat(),
        )
    return SlotCheck(business=business, service=service, start_time=start_time, end_time=end_time)


def validate_slot(business_id, service_id, start_time: datetime, now=None) -> SlotCheck:
    """Check whether ``service_id`` can be booked at ``start_time``.

    Raises BusinessNotFound, ServiceNotFound, InvalidBookingRequest or
    SlotUnavailable. Read only; nothing is reserved.
    """
    return _check_slot(business_id, service_id, start_time, now=now)


def _is_overlap_violation(exc: IntegrityError) -> bool:
    return OVERLAP_CONSTRAINT in str(getattr(exc, "orig", exc))


def create_booking(business_id, service_id, customer_id, start_time: datetime, notes=None, now=None) -> Booking:
    """Validate the slot and insert a pending booking in one transaction."""
    try:
        _begin_write_lock()
        customer = db.session.get(User, customer_id)
        if customer is None:
            raise InvalidBookingRequest("Unknown customer", customer_id=customer_id)

        slot = _check_slot(business_id, service_id, start_time, now=now, lock=True)

        created_at = datetime.utcnow()
        booking = Booking(
            business_id=slot.business.id,
            service_id=slot.service.id,
            customer_id=customer.id,
            date=slot.start_time.date(),
            start_time=slot.start_time,
            end_time=slot.end_time,
            status=BookingStatus.PENDING,
            notes=notes,
            total_amount=slot.service.price,
            created_at=created_at,
            updated_at=created_at,
        )
        db.session.add(booking)
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        if _is_overlap_violation(exc):
            raise SlotUnavailable() from exc
        logger.error("Booking insert rejected for business %s: %s", business_id, exc)
        raise BookingCreationFailed() from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Booking insert failed for business %s: %s", business_id, exc)
        raise BookingCreationFailed() from exc
    except BookingError:
        db.session.rollback()
        raise

    logger.info(
        "Booking %s created: business=%s service=%s customer=%s %s-%s",
        booking.id, booking.business_id, booking.service_id, booking.customer_id,
        booking.start_time.isoformat(), booking.end_time.isoformat(),
    )
    return booking


def _notify_status_change(booking: Booking, notifier) -> bool:
    customer = booking.customer
    if customer is None or not customer.email:
        logger.warning("Booking %s has no customer email; status email skipped", booking.id)
        return False
    try:
        delivered = notifier(customer.email, booking.status.value, notifications.booking_summary(booking))
    except Exception:
        # the status change stands even when the email cannot be sent
        logger.exception("Status notification for booking %s failed", booking.id)
        return False
    return bool(delivered)


def transition_status(booking_id, new_status, actor_id, actor_role, notifier=None) -> Booking:
    """Move a booking to ``new_status`` on behalf of an actor.

    Raises BookingNotFound, Unauthorized or InvalidTransition. The customer
    is emailed after the change is committed; delivery problems are logged.
    """
    target = parse_status(new_status)
    role = parse_role(actor_role)

    booking = Booking.query.filter_by(id=booking_id).with_for_update().first()
    if booking is None:
        raise BookingNotFound(booking_id=booking_id)

    try:
        check_ownership(booking, actor_id, role)
        check_transition(booking.status, target)
        check_transition_permission(role, booking.status, target)
    except BookingError:
        db.session.rollback()
        raise

    previous = booking.status
    booking.status = target
    booking.updated_at = datetime.utcnow()
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Status change of booking %s failed: %s", booking_id, exc)
        raise BookingUpdateFailed(booking_id=booking_id) from exc

    logger.info(
        "Booking %s: %s -> %s by %s %s",
        booking.id, previous.value, target.value, role.value, actor_id,
    )
    _notify_status_change(booking, notifier or notifications.send_status_update)
    return booking


def list_bookings(business_id=None, customer_id=None, status=None):
    """Bookings matching the filters, earliest first."""
    q = Booking.query
    if business_id is not None:
        q = q.filter(Booking.business_id == business_id)
    if customer_id is not None:
        q = q.filter(Booking.customer_id == customer_id)
    if status:
        if isinstance(status, (str, BookingStatus)):
            statuses = [parse_status(status)]
        else:
            statuses = [parse_status(s) for s in status]
        q = q.filter(Booking.status.in_(statuses))
    return q.order_by(Booking.start_time.asc(), Booking.id.asc()).all()


def list_upcoming(user_id, role, now=None):
    role = parse_role(role)
    now = now or datetime.utcnow()
    column = Booking.business_id if role is UserRole.BUSINESS else Booking.customer_id
    return (
        Booking.query
        .filter(
            column == user_id,
            Booking.status.in_(ACTIVE_STATUSES),
            Booking.start_time >= now,
        )
        .order_by(Booking.start_time.asc())
        .all()
    )


def get_booking(booking_id, actor_id, actor_role) -> Booking:
    booking = db.session.get(Booking, booking_id)
    if booking is None:
        raise BookingNotFound(booking_id=booking_id)
    check_ownership(booking, actor_id, parse_role(actor_role))
    return booking
