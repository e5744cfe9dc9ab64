from flask import Blueprint, request, jsonify, g

from models import db
from models.service import Service
from models.user import User, UserRole
from security.rbac import require_roles
from utils.audit import log_event

catalog_bp = Blueprint("catalog", __name__)


def _service_json(s: Service) -> dict:
    return {
        "id": s.id,
        "business_id": s.business_id,
        "business_name": s.business.display_name if s.business else None,
        "name": s.name,
        "description": s.description,
        "price": s.price,
        "duration": s.duration,
        "is_available": s.is_available,
        "created_at": s.created_at.isoformat(),
        "updated_at": s.updated_at.isoformat(),
    }


def _is_int(value) -> bool:
    # bool is an int subclass; reject it explicitly
    return isinstance(value, int) and not isinstance(value, bool)


def _validate_service_fields(data: dict, partial: bool):
    """Returns (fields, error). Durations must be positive whole minutes."""
    fields = {}

    if "name" in data or not partial:
        name = data.get("name")
        if not isinstance(name, str) or not name.strip() or len(name.strip()) > 120:
            return None, "name is required (max 120 characters)"
        fields["name"] = name.strip()

    if "description" in data:
        description = data.get("description")
        if description is not None and not isinstance(description, str):
            return None, "description must be a string"
        fields["description"] = (description or "").strip() or None

    if "duration" in data or not partial:
        duration = data.get("duration")
        if not _is_int(duration) or duration <= 0:
            return None, "duration must be a positive number of minutes"
        fields["duration"] = duration

    if "price" in data or not partial:
        price = data.get("price", 0)
        if not _is_int(price) or price < 0:
            return None, "price must be a non-negative integer"
        fields["price"] = price

    if "is_available" in data:
        if not isinstance(data["is_available"], bool):
            return None, "is_available must be a boolean"
        fields["is_available"] = data["is_available"]

    return fields, None


# ---------- BUSINESS: manage own services ----------
@catalog_bp.post("/services")
@require_roles(UserRole.BUSINESS)
def create_service():
    data = request.get_json(silent=True) or {}
    fields, error = _validate_service_fields(data, partial=False)
    if error:
        return jsonify(error=error), 400

    service = Service(business_id=g.user.id, **fields)
    db.session.add(service)
    db.session.commit()

    log_event("SERVICE_CREATE", user_id=g.user.id, entity="service", entity_id=service.id)
    return jsonify(_service_json(service)), 201


@catalog_bp.patch("/services/<int:service_id>")
@require_roles(UserRole.BUSINESS)
def update_service(service_id: int):
    service = db.session.get(Service, service_id)
    if not service or service.business_id != g.user.id:
        return jsonify(error="Service not found"), 404

    data = request.get_json(silent=True) or {}
    fields, error = _validate_service_fields(data, partial=True)
    if error:
        return jsonify(error=error), 400

    for key, value in fields.items():
        setattr(service, key, value)
    db.session.commit()

    log_event("SERVICE_UPDATE", user_id=g.user.id, entity="service", entity_id=service.id, metadata=fields)
    return jsonify(_service_json(service)), 200


@catalog_bp.get("/services/me")
@require_roles(UserRole.BUSINESS)
def my_services():
    rows = (
        Service.query
        .filter_by(business_id=g.user.id)
        .order_by(Service.created_at.desc())
        .all()
    )
    return jsonify([_service_json(s) for s in rows]), 200


# ---------- PUBLIC: browse ----------
@catalog_bp.get("/services")
def list_services():
    business_id = request.args.get("business_id", type=int)
    name_query = (request.args.get("q") or "").strip()

    q = Service.query.filter(Service.is_available.is_(True))
    if business_id:
        q = q.filter(Service.business_id == business_id)
    if name_query:
        q = q.filter(Service.name.ilike(f"%{name_query}%"))

    rows = q.order_by(Service.name.asc()).limit(200).all()
    return jsonify([_service_json(s) for s in rows]), 200


@catalog_bp.get("/services/<int:service_id>")
def get_service(service_id: int):
    service = db.session.get(Service, service_id)
    if not service:
        return jsonify(error="Service not found"), 404
    return jsonify(_service_json(service)), 200


@catalog_bp.get("/businesses")
def list_businesses():
    rows = (
        User.query
        .filter(User.role == UserRole.BUSINESS, User.business_name.isnot(None))
        .order_by(User.business_name.asc())
        .limit(200)
        .all()
    )
    return jsonify([
        {
            "id": u.id,
            "business_name": u.business_name,
            "business_description": u.business_description,
            "services": sum(1 for s in u.services if s.is_available),
        }
        for u in rows
    ]), 200
