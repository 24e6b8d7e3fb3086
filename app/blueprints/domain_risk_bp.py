"""
Risk Lifecycle Engine
Domain risk blueprint — aggregate reads, recompute and ARB reassignment.

Endpoints summary:
    GET    /api/v1/domain-risks/<id>
    GET    /api/v1/domain-risks/<id>/items
    GET    /api/v1/domain-risks/app/<app_id>
    GET    /api/v1/domain-risks/arb/<arb>            (?status=PENDING_ARB_REVIEW,IN_PROGRESS)
    POST   /api/v1/domain-risks/<id>/recalculate
    PATCH  /api/v1/domain-risks/<id>/arb
"""

import logging

from flask import Blueprint, jsonify, request

from app.blueprints import register_risk_error_handlers
from app.services import domain_risk_service
from app.services.arb_routing import arb_display_name
from app.utils.errors import E, api_error
from app.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

domain_risk_bp = Blueprint("domain_risk", __name__, url_prefix="/api/v1/domain-risks")
register_risk_error_handlers(domain_risk_bp)


def _serialize(domain_risk):
    data = domain_risk.to_dict()
    data["assigned_arb_name"] = arb_display_name(domain_risk.assigned_arb)
    return data


@domain_risk_bp.route("/<domain_risk_id>", methods=["GET"])
def get_domain_risk(domain_risk_id):
    return jsonify(_serialize(domain_risk_service.get_domain_risk(domain_risk_id)))


@domain_risk_bp.route("/<domain_risk_id>/items", methods=["GET"])
def list_items(domain_risk_id):
    items = domain_risk_service.get_items_for_domain_risk(domain_risk_id)
    return jsonify({"items": [i.to_dict() for i in items], "total": len(items)})


@domain_risk_bp.route("/app/<app_id>", methods=["GET"])
def list_for_app(app_id):
    risks = domain_risk_service.get_domain_risks_for_app(app_id)
    return jsonify({"items": [_serialize(r) for r in risks], "total": len(risks)})


@domain_risk_bp.route("/arb/<arb>", methods=["GET"])
def list_for_arb(arb):
    raw = request.args.get("status", "")
    statuses = [s for s in raw.split(",") if s.strip()]
    risks = domain_risk_service.get_domain_risks_for_arb(arb, statuses)
    return jsonify({
        "arb": arb,
        "arb_name": arb_display_name(arb),
        "items": [_serialize(r) for r in risks],
        "total": len(risks),
    })


@domain_risk_bp.route("/<domain_risk_id>/recalculate", methods=["POST"])
def recalculate(domain_risk_id):
    domain_risk = domain_risk_service.recalculate_by_id(domain_risk_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(_serialize(domain_risk))


@domain_risk_bp.route("/<domain_risk_id>/arb", methods=["PATCH"])
def reassign_arb(domain_risk_id):
    data = request.get_json(silent=True) or {}
    if not data.get("assigned_arb") or not data.get("assigned_by"):
        return api_error(E.VALIDATION_REQUIRED, "assigned_arb and assigned_by are required")
    domain_risk = domain_risk_service.reassign_domain_risk(
        domain_risk_id, data["assigned_arb"], data["assigned_by"],
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(_serialize(domain_risk))
