import logging

import click
from flask import Flask, request, g, jsonify
from flask_migrate import Migrate

from config import Config
from models import db
from models.user import User, UserRole
from routes import health_bp, auth_bp, catalog_bp, booking_bp, admin_bp
from security.csrf import require_csrf
from services.errors import BookingError
from utils.audit import log_event
from utils.auth_context import load_current_user

logger = logging.getLogger(__name__)

CSRF_EXEMPT_PATHS = {
    "/auth/login",
    "/auth/register",
    "/health",
}


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(booking_bp)
    app.register_blueprint(admin_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    @app.before_request
    def _load_user():
        load_current_user()

    @app.before_request
    def _csrf_protect():
        # Only protect state-changing requests
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            if request.path in CSRF_EXEMPT_PATHS:
                return None

            # Cookie sessions only; anonymous requests carry no ambient credentials
            if getattr(g, "user", None) is not None:
                failure = require_csrf()
                if failure:
                    return failure

    @app.errorhandler(BookingError)
    def _booking_error(err):
        if err.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.path, err.message)
        return jsonify(err.to_dict()), err.status_code

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    logger.info("%s API configured", app.config.get("APP_NAME", "PointMe"))
    return app


def register_cli(app):
    @app.cli.command("make-admin")
    @click.argument("email")
    def make_admin(email):
        """Promote a user to ADMIN by email (bootstrap)."""
        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user:
            click.echo("User not found")
            return

        if user.role != UserRole.ADMIN:
            previous = user.role.value
            user.role = UserRole.ADMIN
            db.session.commit()
            log_event("ROLE_CHANGE", user_id=user.id, entity="user", entity_id=user.id,
                      metadata={"from": previous, "to": UserRole.ADMIN.value})

        click.echo(f"{user.email} promoted to ADMIN")


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
