from functools import wraps
from flask import g, jsonify

from models.booking import BookingStatus
from models.user import UserRole
from services.errors import Unauthorized

# transitions a customer may request on their own booking
CUSTOMER_TRANSITIONS = frozenset({
    (BookingStatus.PENDING, BookingStatus.CANCELLED),
    (BookingStatus.CONFIRMED, BookingStatus.CANCELLED),
})


def parse_role(value) -> UserRole:
    if isinstance(value, UserRole):
        return value
    try:
        return UserRole((value or "").strip().lower())
    except (ValueError, AttributeError):
        raise Unauthorized(f"Unknown actor role: {value!r}")


def require_roles(*roles: UserRole):
    """
    Usage: @require_roles(UserRole.BUSINESS)
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = getattr(g, "user", None)
            if user is None:
                return jsonify(error="Authentication required"), 401

            if user.role not in roles:
                return jsonify(error="Forbidden"), 403

            return fn(*args, **kwargs)
        return wrapper
    return decorator


def check_ownership(booking, actor_id: int, actor_role: UserRole) -> None:
    """Raise Unauthorized unless the actor is a party to the booking."""
    if actor_role is UserRole.ADMIN:
        return
    if actor_role is UserRole.BUSINESS:
        owner_id = booking.business_id
    elif actor_role is UserRole.CUSTOMER:
        owner_id = booking.customer_id
    else:
        raise Unauthorized(f"Unknown actor role: {actor_role!r}")

    if owner_id != actor_id:
        raise Unauthorized("Booking belongs to another account", booking_id=booking.id)


def check_transition_permission(actor_role: UserRole, current: BookingStatus, target: BookingStatus) -> None:
    """Raise Unauthorized when the role may not perform a legal transition."""
    if actor_role in (UserRole.ADMIN, UserRole.BUSINESS):
        return
    if actor_role is UserRole.CUSTOMER:
        if (current, target) in CUSTOMER_TRANSITIONS:
            return
        raise Unauthorized(
            f"Customers cannot mark a booking {target.value}",
            current=current.value,
            requested=target.value,
        )
    raise Unauthorized(f"Unknown actor role: {actor_role!r}")
