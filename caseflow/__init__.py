"""
caseflow — Case Workflow Engine
Flask Application Factory.

Usage:
    from caseflow import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event
from sqlalchemy.exc import SQLAlchemyError

from caseflow.config import config
from caseflow.middleware.logging_config import configure_logging
from caseflow.middleware.rate_limiter import init_rate_limits
from caseflow.middleware.timing import init_request_timing
from caseflow.models import db

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
    storage_uri=os.getenv("REDIS_URL", "memory://"),
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

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    # ── Import all models so Alembic can detect them ─────────────────────
    from caseflow.models import tenant as _tenant_models          # noqa: F401
    from caseflow.models import journey as _journey_models        # noqa: F401
    from caseflow.models import case as _case_models              # noqa: F401
    from caseflow.models import decision_log as _decision_models  # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    if config_name != "production":
        with app.app_context():
            if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///") and \
                    ":memory:" not in app.config["SQLALCHEMY_DATABASE_URI"]:
                os.makedirs(app.instance_path, exist_ok=True)
            db.create_all()
            app.logger.info("db.create_all() completed successfully")

    # ── Blueprints ───────────────────────────────────────────────────────
    from caseflow.blueprints.cases_bp import cases_bp
    from caseflow.blueprints.health_bp import health_bp
    from caseflow.blueprints.inbound_bp import inbound_bp
    from caseflow.blueprints.journeys_bp import journeys_bp
    from caseflow.blueprints.tenant_journeys_bp import tenant_journeys_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(journeys_bp)
    app.register_blueprint(tenant_journeys_bp)
    app.register_blueprint(cases_bp)
    app.register_blueprint(inbound_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("create-tenant")
    @click.argument("name")
    @click.option("--slug", default=None, help="URL slug (derived from the name if omitted).")
    def create_tenant_cmd(name, slug):
        """Register a tenant."""
        from caseflow.services.tenant_service import create_tenant
        tenant, refusal = create_tenant({"name": name, "slug": slug})
        if refusal:
            raise click.ClickException(refusal.message)
        logger.info("Tenant %s created with id=%s", tenant.slug, tenant.id)

    @app.cli.command("seed-journey")
    @click.argument("key")
    @click.option("--name", default=None, help="Display name (defaults to the key).")
    def seed_journey_cmd(key, name):
        """Create a journey template with the standard five states."""
        from caseflow.services.journey_service import create_journey
        journey, refusal = create_journey({"key": key, "name": name or key})
        if refusal:
            raise click.ClickException(refusal.message)
        logger.info("Journey %s created with id=%s", journey.key, journey.id)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(SQLAlchemyError)
    def database_error(e):
        db.session.rollback()
        logger.error("Database error on %s: %s", request.path, e, exc_info=True)
        return {"error": "Database error", "code": "ERR_DATABASE"}, 500

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
