"""
Governance Engine
Flask Application Factory.

Usage:
    from governance_engine import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from governance_engine.config import config
from governance_engine.middleware.logging_config import configure_logging
from governance_engine.middleware.principal_context import init_principal_context
from governance_engine.middleware.rate_limiter import init_rate_limits
from governance_engine.middleware.timing import init_request_timing
from governance_engine.models import db
from governance_engine.services.guard_state import GuardState
from governance_engine.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine  # noqa: E402


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

    # Sync locks + mutation rate windows, one table per application
    GuardState().init_app(app)

    # ── Request middleware ───────────────────────────────────────────────
    init_request_timing(app)
    init_principal_context(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from governance_engine.models import audit as _audit_models                # noqa: F401
    from governance_engine.models import feature_flag as _feature_flag_models  # noqa: F401
    from governance_engine.models import permission as _permission_models      # noqa: F401
    from governance_engine.models import project as _project_models            # noqa: F401
    from governance_engine.models import role_configuration as _role_models    # noqa: F401
    from governance_engine.models import site_template as _site_template_models  # noqa: F401
    from governance_engine.models import workflow as _workflow_models          # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    if config_name != "testing":
        if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///"):
            os.makedirs(app.instance_path, exist_ok=True)
        with app.app_context():
            db.create_all()
            app.logger.info("db.create_all() completed successfully")

    # ── Blueprints & error handlers ──────────────────────────────────────
    from governance_engine.blueprints import register_blueprints
    register_blueprints(app)
    register_error_handlers(app)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-governance")
    def seed_governance_cmd():
        """Seed default roles, permission templates, group mappings, flags and workflows."""
        from governance_engine.services.seed_service import seed_governance_defaults
        counts = seed_governance_defaults()
        logger.info("Seeded governance defaults: %s", counts)

    # ── Health check ─────────────────────────────────────────────────────
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "Governance Engine"}

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
