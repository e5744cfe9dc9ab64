"""Typed failures raised by the booking workflow.

Each error carries a stable ``code`` and the HTTP status the API layer
answers with. ``app.create_app`` registers a handler that renders them as
``{"error": ..., "code": ..., "details": ...}``.
"""


class BookingError(Exception):
    code = "booking/error"
    status_code = 400
    message = "Booking request failed"

    def __init__(self, message=None, **details):
        self.message = message or self.message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class InvalidBookingRequest(BookingError):
    code = "booking/invalid-data"
    status_code = 400
    message = "Invalid booking data"


class ServiceNotFound(BookingError):
    code = "service/not-found"
    status_code = 404
    message = "Service not found"


class BusinessNotFound(BookingError):
    code = "business/not-found"
    status_code = 404
    message = "Business not found"


class BookingNotFound(BookingError):
    code = "booking/not-found"
    status_code = 404
    message = "Booking not found"


class SlotUnavailable(BookingError):
    code = "booking/slot-unavailable"
    status_code = 409
    message = "Selected time slot is not available"


class InvalidTransition(BookingError):
    code = "booking/invalid-transition"
    status_code = 400
    message = "Booking status change not allowed"


class Unauthorized(BookingError):
    code = "auth/unauthorized"
    status_code = 403
    message = "You are not authorized to perform this action"


class BookingCreationFailed(BookingError):
    code = "booking/creation-failed"
    status_code = 500
    message = "Failed to create booking"


class BookingUpdateFailed(BookingError):
    code = "booking/update-failed"
    status_code = 500
    message = "Failed to update booking"
