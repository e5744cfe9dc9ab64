import enum
from datetime import datetime
from models.db import db


class UserRole(str, enum.Enum):
    CUSTOMER = "customer"
    BUSINESS = "business"
    ADMIN = "admin"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(
        db.Enum(UserRole, name="user_role", native_enum=False, length=20, values_callable=_enum_values),
        nullable=False,
        default=UserRole.CUSTOMER,
    )

    full_name = db.Column(db.String(120), nullable=True)
    phone_number = db.Column(db.String(30), nullable=True)

    # business onboarding
    business_name = db.Column(db.String(120), nullable=True)
    business_description = db.Column(db.Text, nullable=True)

    email_verified = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    services = db.relationship("Service", back_populates="business", lazy="select")

    @property
    def display_name(self) -> str:
        if self.role == UserRole.BUSINESS and self.business_name:
            return self.business_name
        return self.full_name or self.email
