"""
Deal Diligence Tracker
Flask Application Factory.

Usage:
    from diligence import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from diligence.config import config
from diligence.middleware.logging_config import configure_logging
from diligence.middleware.rate_limiter import init_rate_limits
from diligence.middleware.timing import init_request_timing
from diligence.models import db

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement + SAVEPOINT support (global engine events) ────────


def _is_sqlite(dbapi_conn) -> bool:
    return "sqlite" in type(dbapi_conn).__module__


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _configure_sqlite(dbapi_conn, connection_record):
    """Enable foreign keys and hand transaction control to SQLAlchemy."""
    if _is_sqlite(dbapi_conn):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
        # pysqlite's implicit BEGIN breaks SAVEPOINT; emit BEGIN ourselves.
        dbapi_conn.isolation_level = None


@_sa_event.listens_for(_sa_engine.Engine, "begin")
def _sqlite_begin(conn):
    if conn.dialect.name == "sqlite":
        conn.exec_driver_sql("BEGIN")


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # per-blueprint limits only
    storage_uri=os.getenv("REDIS_URL") or "memory://",  # Redis in production, memory for dev
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
    config_cls = config[config_name]
    app.config.from_object(config_cls() if config_name == "production" else config_cls)

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

    # ── Request guards (input length) ────────────────────────────────────
    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    # ── Import all models so Alembic can detect them ─────────────────────
    from diligence.models import activity as _activity_models   # noqa: F401
    from diligence.models import deal as _deal_models           # noqa: F401
    from diligence.models import taxonomy as _taxonomy_models   # noqa: F401
    from diligence.models import template as _template_models   # noqa: F401
    from diligence.models import user as _user_models           # noqa: F401

    # ── Blueprints ───────────────────────────────────────────────────────
    from diligence.blueprints.deal_bp import deal_bp
    from diligence.blueprints.health_bp import health_bp
    from diligence.blueprints.task_bp import task_bp
    from diligence.blueprints.taxonomy_bp import taxonomy_bp
    from diligence.blueprints.template_bp import template_bp
    from diligence.blueprints.user_bp import user_bp

    app.register_blueprint(deal_bp)
    app.register_blueprint(task_bp)
    app.register_blueprint(template_bp)
    app.register_blueprint(taxonomy_bp)
    app.register_blueprint(user_bp)
    app.register_blueprint(health_bp)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return {"error": "Request body too large"}, 413

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("create-db")
    def create_db_cmd():
        """Create all tables (local development without migrations)."""
        db.create_all()
        logger.info("Database tables created.")

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
