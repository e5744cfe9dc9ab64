from flask import Blueprint, jsonify, request

from models.audit_log import AuditLog
from models.user import User, UserRole
from routes.booking import parse_status_filter
from security.rbac import require_roles
from services import booking_workflow as workflow

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


@admin_bp.get("/users")
@require_roles(UserRole.ADMIN)
def list_users():
    role_filter = (request.args.get("role") or "").strip().lower()
    q = User.query
    if role_filter:
        try:
            q = q.filter(User.role == UserRole(role_filter))
        except ValueError:
            return jsonify(error="Unknown role"), 400

    users = q.order_by(User.created_at.desc()).limit(200).all()
    return jsonify([
        {
            "id": u.id,
            "email": u.email,
            "role": u.role.value,
            "full_name": u.full_name,
            "business_name": u.business_name,
            "email_verified": u.email_verified,
            "created_at": u.created_at.isoformat(),
        }
        for u in users
    ]), 200


@admin_bp.get("/bookings")
@require_roles(UserRole.ADMIN)
def list_all_bookings():
    rows = workflow.list_bookings(
        business_id=request.args.get("business_id", type=int),
        customer_id=request.args.get("customer_id", type=int),
        status=parse_status_filter(request.args.get("status")),
    )
    return jsonify([b.to_dict() for b in rows]), 200


@admin_bp.get("/audit-logs")
@require_roles(UserRole.ADMIN)
def list_audit_logs():
    limit = request.args.get("limit", type=int) or 200
    limit = max(1, min(limit, 500))

    action = request.args.get("action")
    user_id = request.args.get("user_id", type=int)

    q = AuditLog.query
    if action:
        q = q.filter(AuditLog.action == action)
    if user_id is not None:
        q = q.filter(AuditLog.user_id == user_id)

    rows = q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit).all()
    return jsonify([
        {
            "id": r.id,
            "timestamp": r.timestamp.isoformat(),
            "user_id": r.user_id,
            "action": r.action,
            "entity": r.entity,
            "entity_id": r.entity_id,
            "ip": r.ip,
            "user_agent": r.user_agent,
            "metadata": r.metadata_json,
        }
        for r in rows
    ]), 200
