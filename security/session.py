import hashlib
import secrets
from datetime import datetime, timedelta
from flask import request, current_app

from models import db
from models.session import Session


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _client_ip():
    return request.headers.get("X-Forwarded-For", request.remote_addr)


def create_session(user_id: int) -> str:
    """
    Stores a new session row and returns the raw cookie token.
    Only its hash is persisted.
    """
    raw_token = secrets.token_urlsafe(32)
    lifetime = current_app.config.get("SESSION_LIFETIME_SECONDS", 28800)

    row = Session(
        user_id=user_id,
        token_hash=hash_token(raw_token),
        expires_at=datetime.utcnow() + timedelta(seconds=lifetime),
        ip=_client_ip(),
        user_agent=(request.headers.get("User-Agent") or "")[:255],
    )
    db.session.add(row)
    db.session.commit()
    return raw_token


def _is_live(sess: Session, now: datetime) -> bool:
    if sess.revoked or sess.expires_at <= now:
        return False
    idle_seconds = current_app.config.get("IDLE_TIMEOUT_SECONDS", 1800)
    last_seen = sess.last_seen_at or sess.created_at
    return last_seen + timedelta(seconds=idle_seconds) > now


def get_session_from_request():
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "pointme_session")
    raw_token = request.cookies.get(cookie_name)
    if not raw_token:
        return None

    sess = Session.query.filter_by(token_hash=hash_token(raw_token)).first()
    now = datetime.utcnow()
    if not sess or not _is_live(sess, now):
        return None

    sess.last_seen_at = now
    db.session.commit()
    return sess


def revoke_session(raw_token: str) -> bool:
    if not raw_token:
        return False
    sess = Session.query.filter_by(token_hash=hash_token(raw_token), revoked_at=None).first()
    if not sess:
        return False
    sess.revoked_at = datetime.utcnow()
    db.session.commit()
    return True


def revoke_all_sessions(user_id: int) -> int:
    now = datetime.utcnow()
    count = (
        Session.query
        .filter_by(user_id=user_id, revoked_at=None)
        .update({Session.revoked_at: now}, synchronize_session=False)
    )
    db.session.commit()
    return count
