"""
Risk Lifecycle Engine
Flask Application Factory.

Usage:
    from app import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_migrate import Migrate

from app.config import config
from app.models import db
from app.middleware.logging_config import configure_logging

logger = logging.getLogger(__name__)

# ── SQLite engine events (global) ───────────────────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _configure_sqlite(dbapi_conn, connection_record):
    """Enable FK enforcement and hand transaction control to SQLAlchemy on SQLite."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
        # pysqlite's implicit BEGIN breaks SAVEPOINT; SQLAlchemy emits BEGIN itself
        dbapi_conn.isolation_level = None


@_sa_event.listens_for(_sa_engine.Engine, "begin")
def _sqlite_begin(conn):
    if conn.dialect.name == "sqlite":
        conn.exec_driver_sql("BEGIN")


migrate = Migrate()


def create_app(config_name=None, *, registry=None, collaborators=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.
        registry: Optional pre-built ProfileFieldRegistry (default: parse RISK_REGISTRY_PATH).
        collaborators: Optional RiskCollaborators (default: reference-table gateways).

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    config_obj = config[config_name]
    app.config.from_object(config_obj() if config_name == "production" else config_obj)
    os.makedirs(app.instance_path, exist_ok=True)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from app.models import risk as _risk_models             # noqa: F401
    from app.models import audit as _audit_models           # noqa: F401
    from app.models import reference as _reference_models   # noqa: F401
    from app.models import comment as _comment_models       # noqa: F401

    # ── Risk registry & collaborators ────────────────────────────────────
    from app.integrations.risk_collaborators import init_risk_collaborators
    from app.services.registry_service import init_registry, reload_registry

    init_registry(app, registry)
    init_risk_collaborators(app, collaborators)

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    if config_name != "production":
        with app.app_context():
            db.create_all()

    # ── Blueprints ───────────────────────────────────────────────────────
    from app.blueprints.domain_risk_bp import domain_risk_bp
    from app.blueprints.health_bp import health_bp
    from app.blueprints.risk_item_bp import risk_item_bp

    app.register_blueprint(risk_item_bp)
    app.register_blueprint(domain_risk_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("reload-risk-registry")
    def reload_risk_registry_cmd():
        """Re-read the profile field registry YAML."""
        loaded = reload_registry(app)
        click.echo(f"Loaded {len(loaded)} registry fields from {loaded.source}")

    @app.cli.command("recalculate-domain-risks")
    @click.option("--app-id", default=None, help="Only aggregates of this application.")
    def recalculate_domain_risks_cmd(app_id):
        """Recompute every domain risk aggregate from its items."""
        from app.models.risk import DomainRisk
        from app.services.domain_risk_service import recalculate_aggregations

        q = DomainRisk.query
        if app_id:
            q = q.filter_by(app_id=app_id)
        count = 0
        for domain_risk in q.all():
            recalculate_aggregations(domain_risk)
            count += 1
        db.session.commit()
        click.echo(f"Recalculated {count} domain risks")

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        db.session.rollback()
        return {"error": "Internal server error"}, 500

    return app
