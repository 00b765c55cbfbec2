"""
MealPass
Flask Application Factory.

Usage:
    from mealpass import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import event as _sa_event, engine as _sa_engine
from sqlalchemy.exc import SQLAlchemyError

from mealpass.config import config
from mealpass.models import db
from mealpass.middleware.logging_config import configure_logging
from mealpass.middleware.timing import init_request_timing
from mealpass.middleware.diagnostics import run_startup_diagnostics
from mealpass.middleware.rate_limiter import init_rate_limits
from mealpass.middleware.session_auth import init_session_middleware

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit; applied per blueprint
    storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing + session middleware ──────────────────────────────
    init_request_timing(app)
    init_session_middleware(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from mealpass.models import auth as _auth_models               # noqa: F401
    from mealpass.models import catalog as _catalog_models         # noqa: F401
    from mealpass.models import holder as _holder_models           # noqa: F401
    from mealpass.models import meal_record as _meal_record_models  # noqa: F401
    from mealpass.models import extra_meal as _extra_meal_models   # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    if config_name != "testing":
        os.makedirs(app.instance_path, exist_ok=True)
        with app.app_context():
            try:
                db.create_all()
                app.logger.info("db.create_all() completed successfully")
            except SQLAlchemyError as e:
                app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from mealpass.blueprints.voucher_bp import voucher_bp
    from mealpass.blueprints.extra_meal_bp import extra_meal_bp
    from mealpass.blueprints.auth_bp import auth_bp
    from mealpass.blueprints.health_bp import health_bp

    app.register_blueprint(voucher_bp)
    app.register_blueprint(extra_meal_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("create-manager")
    @click.argument("username")
    @click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
    @click.option("--full-name", default=None)
    @click.option("--email", default="")
    @click.option("--role", type=click.Choice(["super_admin", "admin", "manager"]), default="manager")
    @click.option("--permission", "permissions", multiple=True)
    def create_manager_cmd(username, password, full_name, email, role, permissions):
        """Create a manager account (the admin panel has no signup)."""
        from mealpass.models.auth import Manager
        from mealpass.utils.crypto import hash_password

        manager = Manager(
            username=username,
            full_name=full_name or username,
            email=email,
            password_hash=hash_password(password),
            role=role,
            permissions=list(permissions),
        )
        db.session.add(manager)
        db.session.commit()
        logger.info("Created manager %s (%s)", username, role)

    @app.cli.command("seed-demo")
    def seed_demo_cmd():
        """Load a day shift, the standard meal types and one holder."""
        from mealpass.services import catalog_service

        shift = catalog_service.create_shift(
            {"name": "Comercial", "start_time": "08:00", "end_time": "17:00"}
        )
        for name, start, end, price, special in (
            ("Café da manhã", "06:00", "09:00", "8.50", False),
            ("Almoço", "11:00", "14:00", "22.00", False),
            ("Jantar", "18:00", "21:00", "20.00", False),
            ("Ceia", "22:00", "02:00", "15.00", False),
            ("Refeição extra", "00:01", "23:59", "25.00", True),
        ):
            catalog_service.create_meal_type({
                "name": name, "start_time": start, "end_time": end,
                "price": price, "is_special": special,
            })
        holder = catalog_service.create_holder({"full_name": "Demo Holder", "shift_id": shift.id})
        click.echo(f"Seeded demo data; voucher code {holder.voucher_code}")

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        from flask import request
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    # ── Startup diagnostics ──────────────────────────────────────────────
    run_startup_diagnostics(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Background availability polling ──────────────────────────────────
    from mealpass.services.availability import AvailabilityMonitor
    AvailabilityMonitor.init_app(app)

    return app
