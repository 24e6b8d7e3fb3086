"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — process is up
    GET /api/v1/health/live   — database, profile field registry and collaborator wiring
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from app.integrations.risk_collaborators import EXTENSION_KEY as COLLABORATORS_KEY
from app.models import db
from app.services.registry_service import EXTENSION_KEY as REGISTRY_KEY

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


def _check_database():
    started = time.perf_counter()
    try:
        db.session.execute(db.text("SELECT 1"))
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Health check: database unreachable: %s", exc)
        return {"status": "error", "detail": str(exc)}
    return {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 1)}


def _check_registry():
    registry = current_app.extensions.get(REGISTRY_KEY)
    if registry is None:
        return {"status": "error", "detail": "registry not loaded"}
    return {"status": "ok", "fields": len(registry), "source": registry.source}


def _check_collaborators():
    collaborators = current_app.extensions.get(COLLABORATORS_KEY)
    if collaborators is None:
        return {"status": "error", "detail": "collaborators not initialised"}
    return {
        "status": "ok",
        "profile": type(collaborators.profile).__name__,
        "evidence": type(collaborators.evidence).__name__,
        "applications": type(collaborators.applications).__name__,
    }


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Dependency status; 503 when any check fails."""
    checks = {
        "database": _check_database(),
        "risk_registry": _check_registry(),
        "collaborators": _check_collaborators(),
    }
    healthy = all(c["status"] == "ok" for c in checks.values())
    checks["app"] = {
        "name": "Risk Lifecycle Engine",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }
    return jsonify({
        "status": "healthy" if healthy else "degraded",
        "checks": checks,
    }), 200 if healthy else 503
