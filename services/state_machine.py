from models.booking import BookingStatus
from services.errors import InvalidTransition

ALLOWED_TRANSITIONS = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}


def parse_status(value) -> BookingStatus:
    if isinstance(value, BookingStatus):
        return value
    try:
        return BookingStatus((value or "").strip().lower())
    except (ValueError, AttributeError):
        raise InvalidTransition(f"Unknown booking status: {value!r}", status=value)


def is_terminal(status: BookingStatus) -> bool:
    return not ALLOWED_TRANSITIONS[status]


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def check_transition(current: BookingStatus, target: BookingStatus) -> None:
    if can_transition(current, target):
        return
    if is_terminal(current):
        message = f"Booking is already {current.value}"
    else:
        message = f"Cannot change booking status from {current.value} to {target.value}"
    raise InvalidTransition(message, current=current.value, requested=target.value)
