"""
Department Workflow Portal
Flask Application Factory.

Usage:
    from portal import create_app
    app = create_app()           # defaults to APP_ENV or "development"
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

from portal.auth import init_auth
from portal.config import config
from portal.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PersistenceError,
    UnauthorizedError,
    ValidationError,
    WorkflowRuleError,
)
from portal.middleware.logging_config import configure_logging
from portal.middleware.rate_limiter import init_rate_limits
from portal.middleware.timing import init_request_timing
from portal.models import db
from portal.utils.errors import E, api_error

logger = logging.getLogger(__name__)


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
        config_name: One of "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    cfg = config[config_name]
    if hasattr(cfg, "check"):
        cfg.check()

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(cfg)

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

    # ── Request timing & caller identity ─────────────────────────────────
    init_request_timing(app)
    init_auth(app)

    app.config.setdefault("MAX_CONTENT_LENGTH", 1024 * 1024)  # 1 MB

    # ── Import all models so Alembic can detect them ─────────────────────
    from portal.models import audit as _audit_models                    # noqa: F401
    from portal.models import cross_department as _xref_models          # noqa: F401
    from portal.models import intelligence as _intelligence_models      # noqa: F401
    from portal.models import notification as _notification_models     # noqa: F401
    from portal.models import project as _project_models                # noqa: F401
    from portal.models import user as _user_models                      # noqa: F401

    if app.config.get("DEBUG"):
        with app.app_context():
            db.create_all()

    # ── Blueprints ───────────────────────────────────────────────────────
    from portal.blueprints.attention_bp import attention_bp
    from portal.blueprints.health_bp import health_bp
    from portal.blueprints.notification_bp import notification_bp
    from portal.blueprints.project_bp import project_bp
    from portal.blueprints.promote_bp import promote_bp
    from portal.blueprints.search_bp import search_bp

    app.register_blueprint(project_bp)
    app.register_blueprint(promote_bp)
    app.register_blueprint(attention_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(search_bp)
    app.register_blueprint(health_bp)

    register_error_handlers(app)
    register_cli(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app


def register_error_handlers(app):
    """Map the exception hierarchy to ``{error, code, details}`` responses."""

    @app.errorhandler(UnauthorizedError)
    def _unauthorized(e):
        return api_error(E.UNAUTHORIZED, str(e))

    @app.errorhandler(ForbiddenError)
    def _forbidden(e):
        return api_error(E.FORBIDDEN, str(e))

    @app.errorhandler(NotFoundError)
    def _not_found(e):
        return api_error(E.NOT_FOUND, f"{e.resource} not found")

    @app.errorhandler(ValidationError)
    def _validation(e):
        return api_error(E.VALIDATION_INVALID, str(e), details=e.details)

    @app.errorhandler(WorkflowRuleError)
    def _workflow_rule(e):
        return api_error(e.code, str(e), status=400, details={"allowed": e.allowed})

    @app.errorhandler(ConflictError)
    def _conflict(e):
        details = {"current_status": e.current_status} if e.current_status else None
        return api_error(E.CONFLICT_STATE, str(e), details=details)

    @app.errorhandler(PersistenceError)
    def _persistence(e):
        logger.error("Persistence failure: %s", e, exc_info=e)
        return api_error(E.DATABASE, str(e))

    @app.errorhandler(SQLAlchemyError)
    def _database(e):
        db.session.rollback()
        logger.error("Database error: %s", e, exc_info=e)
        return api_error(E.DATABASE, "Database error")

    @app.errorhandler(404)
    def _route_not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def _method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def _rate_limited(e):
        return api_error(E.RATE_LIMITED, "Too many requests", details={"retry_after": e.description})

    @app.errorhandler(500)
    def _server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")


def register_cli(app):
    @app.cli.command("sweep-promotions")
    @click.option("--repair", is_flag=True, help="Write the missing provenance refs.")
    def sweep_promotions_cmd(repair):
        """Report (and optionally repair) promoted projects with no provenance ref."""
        from portal.services.project_service import find_unreferenced_promotions, repair_promotion_ref

        dangling = find_unreferenced_promotions()
        for project in dangling:
            logger.warning("Promotion target %s (from %s %s) has no provenance ref",
                           project.id, project.promoted_from_type, project.promoted_from_id)
            if repair:
                repair_promotion_ref(project)
        logger.info("Promotion sweep: %d dangling target(s)%s",
                    len(dangling), ", repaired" if repair and dangling else "")
