from .db import db
from .user import User, UserRole
from .audit_log import AuditLog
from .session import Session
from .email_verification import EmailVerification
from .service import Service
from .booking import Booking, BookingStatus
