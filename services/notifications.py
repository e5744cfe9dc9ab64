import logging
from html import escape

from flask import current_app

from utils.emailer import send_email

logger = logging.getLogger(__name__)


def booking_summary(booking) -> dict:
    """Human readable details of a booking, as shown in customer emails."""
    service = booking.service
    business = booking.business
    return {
        "service": service.name if service else f"Service #{booking.service_id}",
        "business": business.display_name if business else f"Business #{booking.business_id}",
        "date": booking.start_time.strftime("%A, %d %B %Y"),
        "time": f"{booking.start_time:%H:%M} - {booking.end_time:%H:%M}",
    }


def _details_text(summary: dict) -> str:
    return "\n".join([
        f"Service: {summary['service']}",
        f"Business: {summary['business']}",
        f"Date: {summary['date']}",
        f"Time: {summary['time']}",
    ])


def _details_html(summary: dict) -> str:
    items = "".join(
        f"<li>{label}: {escape(str(summary[key]))}</li>"
        for label, key in (("Service", "service"), ("Business", "business"), ("Date", "date"), ("Time", "time"))
    )
    return f"<ul>{items}</ul>"


def send_status_update(email: str, status: str, summary: dict) -> bool:
    """Tell the customer their booking moved to ``status``. Returns delivery success."""
    app_name = current_app.config.get("APP_NAME", "PointMe")
    subject = f"{app_name}: Booking Status Update"
    body = (
        f"Your booking status has been updated to: {status}\n\n"
        f"{_details_text(summary)}\n\n"
        "You can view your booking details in your dashboard."
    )
    html = (
        "<h1>Booking Status Update</h1>"
        f"<p>Your booking status has been updated to: <strong>{escape(status)}</strong></p>"
        f"{_details_html(summary)}"
        "<p>You can view your booking details in your dashboard.</p>"
    )

    sent, error = send_email(email, subject, body, html=html)
    if not sent:
        logger.warning("Booking status email to %s not sent: %s", email, error)
    return sent


def send_verification_code(email: str, code: str) -> bool:
    app_name = current_app.config.get("APP_NAME", "PointMe")
    body = (
        "Thank you for signing up. Please verify your email address by entering this code:\n\n"
        f"{code}\n\n"
        f"If you didn't sign up for {app_name}, you can safely ignore this email."
    )
    sent, error = send_email(email, "Verify your email address", body)
    if not sent:
        logger.warning("Verification email to %s not sent: %s", email, error)
    return sent
