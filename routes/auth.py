import secrets
from datetime import datetime, timedelta

from flask import Blueprint, request, jsonify, current_app, g

from models import db
from models.email_verification import EmailVerification
from models.user import User, UserRole
from security.csrf import issue_csrf_token, clear_csrf_token
from security.password import hash_password, verify_password
from security.session import create_session, revoke_session, revoke_all_sessions
from services.notifications import send_verification_code
from utils.audit import log_event
from utils.auth_context import login_required


auth_bp = Blueprint("auth", __name__, url_prefix="/auth")

# roles a visitor may pick at sign-up; admins are promoted via the CLI
SELF_SERVICE_ROLES = {UserRole.CUSTOMER.value, UserRole.BUSINESS.value}


def _is_valid_email(email: str) -> bool:
    return isinstance(email, str) and "@" in email and len(email) <= 255


def _is_profile_complete(user: User) -> bool:
    required = ["full_name", "phone_number"]
    if user.role == UserRole.BUSINESS:
        required.append("business_name")
    for field in required:
        value = getattr(user, field, None)
        if not isinstance(value, str) or not value.strip():
            return False
    return True


def _profile_payload(user: User) -> dict:
    return {
        "full_name": user.full_name,
        "phone_number": user.phone_number,
        "business_name": user.business_name,
        "business_description": user.business_description,
        "profile_complete": _is_profile_complete(user),
    }


@auth_bp.post("/register")
def register():
    data = request.get_json(silent=True) or {}
    email = data.get("email") or ""
    password = data.get("password") or ""
    role = data.get("role") or UserRole.CUSTOMER.value
    if not isinstance(email, str) or not isinstance(role, str):
        return jsonify(error="email and role must be strings"), 400
    email = email.strip().lower()
    role = role.strip().lower()

    if not _is_valid_email(email):
        return jsonify(error="Invalid email"), 400
    min_len = current_app.config.get("PASSWORD_MIN_LEN", 8)
    if not isinstance(password, str) or len(password) < min_len:
        return jsonify(error=f"Password must be at least {min_len} characters"), 400
    if role not in SELF_SERVICE_ROLES:
        return jsonify(error="role must be one of: customer, business"), 400

    if User.query.filter_by(email=email).first():
        log_event("REGISTER_FAIL_EMAIL_EXISTS", metadata={"email": email})
        return jsonify(error="Email already registered"), 409

    user = User(email=email, password_hash=hash_password(password), role=UserRole(role))
    db.session.add(user)
    db.session.commit()
    log_event("REGISTER_SUCCESS", user_id=user.id, metadata={"role": role})

    return jsonify(message="Registered successfully", id=user.id, role=user.role.value), 201


@auth_bp.post("/login")
def login():
    data = request.get_json(silent=True) or {}
    email = data.get("email") or ""
    password = data.get("password") or ""
    if not isinstance(email, str) or not isinstance(password, str):
        return jsonify(error="email and password must be strings"), 400
    email = email.strip().lower()

    user = User.query.filter_by(email=email).first()
    if not user or not verify_password(password, user.password_hash):
        log_event("LOGIN_FAIL", user_id=user.id if user else None, metadata={"email": email})
        return jsonify(error="Invalid credentials"), 401

    # rotate: one live session per user
    revoked_count = revoke_all_sessions(user.id)

    raw_token = create_session(user.id)
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "pointme_session")
    max_age = current_app.config.get("SESSION_LIFETIME_SECONDS", 8 * 60 * 60)

    resp = jsonify(message="Login OK", role=user.role.value, email_verified=user.email_verified)
    resp.set_cookie(
        cookie_name,
        raw_token,
        httponly=True,
        secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
        samesite=current_app.config.get("SESSION_COOKIE_SAMESITE", "Lax"),
        max_age=max_age,
        path="/",
    )
    resp = issue_csrf_token(resp)

    log_event("LOGIN_SUCCESS", user_id=user.id, metadata={"revoked_sessions": revoked_count})
    return resp, 200


@auth_bp.post("/logout")
@login_required
def logout():
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "pointme_session")
    revoke_session(request.cookies.get(cookie_name))
    log_event("LOGOUT", user_id=g.user.id)

    resp = jsonify(message="Logged out")
    resp.delete_cookie(cookie_name, path="/")
    return clear_csrf_token(resp), 200


@auth_bp.get("/me")
@login_required
def me():
    return jsonify(
        id=g.user.id,
        email=g.user.email,
        role=g.user.role.value,
        email_verified=g.user.email_verified,
        **_profile_payload(g.user),
    ), 200


@auth_bp.get("/profile")
@login_required
def get_profile():
    return jsonify(_profile_payload(g.user)), 200


@auth_bp.post("/profile")
@login_required
def update_profile():
    data = request.get_json(silent=True) or {}

    limits = {"full_name": 120, "phone_number": 30}
    if g.user.role == UserRole.BUSINESS:
        limits.update({"business_name": 120, "business_description": 2000})
    elif "business_name" in data or "business_description" in data:
        return jsonify(error="Only business accounts have business details"), 400

    for field, max_len in limits.items():
        value = data.get(field)
        if value is None:
            continue
        if not isinstance(value, str) or len(value.strip()) > max_len:
            return jsonify(error=f"Invalid {field}"), 400
        setattr(g.user, field, value.strip() or None)

    db.session.commit()
    log_event("PROFILE_UPDATE", user_id=g.user.id)
    return jsonify(message="Profile updated", **_profile_payload(g.user)), 200


@auth_bp.post("/verify-email/request")
@login_required
def request_email_verification():
    if g.user.email_verified:
        return jsonify(message="Email already verified"), 200

    length = current_app.config.get("VERIFICATION_CODE_LENGTH", 6)
    ttl = current_app.config.get("VERIFICATION_CODE_TTL_SECONDS", 900)
    code = "".join(secrets.choice("0123456789") for _ in range(length))
    now = datetime.utcnow()

    # a new code supersedes any outstanding one
    EmailVerification.query.filter_by(user_id=g.user.id, consumed_at=None).update(
        {EmailVerification.consumed_at: now}, synchronize_session=False
    )
    db.session.add(EmailVerification(
        user_id=g.user.id,
        email=g.user.email,
        code_hash=hash_password(code),
        created_at=now,
        expires_at=now + timedelta(seconds=ttl),
    ))
    db.session.commit()

    if not send_verification_code(g.user.email, code):
        log_event("EMAIL_VERIFY_SEND_FAIL", user_id=g.user.id)
        return jsonify(error="Could not send verification email"), 502

    log_event("EMAIL_VERIFY_SENT", user_id=g.user.id)
    return jsonify(message="Verification code sent", expires_in_seconds=ttl), 202


@auth_bp.post("/verify-email/confirm")
@login_required
def confirm_email_verification():
    data = request.get_json(silent=True) or {}
    code = str(data.get("code") or "").strip()
    if not code:
        return jsonify(error="code is required"), 400

    row = (
        EmailVerification.query
        .filter_by(user_id=g.user.id, consumed_at=None)
        .order_by(EmailVerification.created_at.desc())
        .first()
    )
    now = datetime.utcnow()
    if not row or row.expires_at <= now or row.email != g.user.email:
        return jsonify(error="No active verification code. Request a new one."), 400

    max_attempts = current_app.config.get("VERIFICATION_MAX_ATTEMPTS", 5)
    if row.attempts >= max_attempts:
        return jsonify(error="Too many attempts. Request a new code."), 429

    if not verify_password(code, row.code_hash):
        row.attempts += 1
        db.session.commit()
        log_event("EMAIL_VERIFY_FAIL", user_id=g.user.id, metadata={"attempts": row.attempts})
        return jsonify(error="Invalid code", attempts_left=max(max_attempts - row.attempts, 0)), 400

    row.consumed_at = now
    g.user.email_verified = True
    db.session.commit()
    log_event("EMAIL_VERIFIED", user_id=g.user.id)
    return jsonify(message="Email verified", email_verified=True), 200
