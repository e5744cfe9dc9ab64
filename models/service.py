from datetime import datetime
from models.db import db


class Service(db.Model):
    __tablename__ = "services"

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=True)

    price = db.Column(db.Integer, nullable=False, default=0)  # smallest currency unit
    duration = db.Column(db.Integer, nullable=False)  # minutes
    is_available = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    business = db.relationship("User", back_populates="services")

    __table_args__ = (
        db.CheckConstraint("duration > 0", name="ck_services_duration_positive"),
        db.CheckConstraint("price >= 0", name="ck_services_price_non_negative"),
    )
