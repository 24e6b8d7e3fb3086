"""
Risk Lifecycle Engine
Risk item blueprint — evaluation, manual creation, lifecycle, assignment, review and comments.

Endpoints summary:
    EVALUATE  /api/v1/risk-items/evaluate                       POST
    CREATE    /api/v1/risk-items                                POST   (manual)
    READ      /api/v1/risk-items/<id>                           GET
              /api/v1/risk-items/app/<app_id>                   GET    (?status=)
              /api/v1/risk-items/field/<field_key>              GET
              /api/v1/risk-items/evidence/<evidence_id>         GET
    STATUS    /api/v1/risk-items/<id>/status                    PATCH
              /api/v1/risk-items/bulk-status                    POST
    ASSIGN    /api/v1/risk-items/<id>/self-assign               POST
              /api/v1/risk-items/<id>/assign                    POST
              /api/v1/risk-items/<id>/unassign                  POST
    REVIEW    /api/v1/risk-items/<id>/review                    POST
              /api/v1/risk-items/<id>/self-attest               POST
    HISTORY   /api/v1/risk-items/<id>/status-history            GET    (?limit=)
              /api/v1/risk-items/<id>/assignment-history        GET
    COMMENTS  /api/v1/risk-items/<id>/comments                  POST
              /api/v1/risk-items/<id>/comments                  GET    (?include_internal=)
"""

import logging

from flask import Blueprint, jsonify, request

from app.blueprints import register_risk_error_handlers
from app.models.risk import ActorRole, RiskPriority
from app.services import (
    domain_risk_service,
    risk_assignment,
    risk_auto_creation,
    risk_comments,
    sme_review,
    status_ledger,
)
from app.utils.errors import E, api_error
from app.utils.helpers import db_commit_or_error, parse_actor_role

logger = logging.getLogger(__name__)

risk_item_bp = Blueprint("risk_item", __name__, url_prefix="/api/v1/risk-items")
register_risk_error_handlers(risk_item_bp)


# ── Helpers ──────────────────────────────────────────────────────────────────

def _json():
    return request.get_json(silent=True) or {}


def _missing(data, *fields):
    missing = [f for f in fields if not data.get(f)]
    if missing:
        return api_error(
            E.VALIDATION_REQUIRED,
            f"{', '.join(missing)} {'is' if len(missing) == 1 else 'are'} required",
            details={f: "required" for f in missing},
        )
    return None


def _items(items):
    return jsonify({"items": [i.to_dict() for i in items], "total": len(items)})


# ═══════════════════════════════════════════════════════════════════════════
#  EVALUATION & CREATION
# ═══════════════════════════════════════════════════════════════════════════

@risk_item_bp.route("/evaluate", methods=["POST"])
def evaluate_risk():
    data = _json()
    err = _missing(data, "evidence_id", "profile_field_id", "app_id")
    if err:
        return err

    result = risk_auto_creation.evaluate_and_create_risk(
        evidence_id=data["evidence_id"],
        profile_field_id=data["profile_field_id"],
        app_id=data["app_id"],
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(result.to_dict()), 201 if result.created else 200


@risk_item_bp.route("", methods=["POST"])
def create_manual_risk():
    data = _json()
    err = _missing(data, "app_id", "field_key", "title", "created_by")
    if err:
        return err

    item = domain_risk_service.create_manual_risk(
        data["app_id"],
        data["field_key"],
        title=data["title"],
        description=data.get("description", ""),
        priority=data.get("priority") or RiskPriority.MEDIUM,
        created_by=data["created_by"],
        profile_field_id=data.get("profile_field_id"),
        evidence_id=data.get("evidence_id"),
        derived_from=data.get("derived_from"),
        hypothesis=data.get("hypothesis"),
        condition=data.get("condition"),
        consequence=data.get("consequence"),
        control_refs=data.get("control_refs"),
        actor_role=parse_actor_role(data.get("actor_role"), default=ActorRole.SME),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(item.to_dict()), 201


# ═══════════════════════════════════════════════════════════════════════════
#  READ
# ═══════════════════════════════════════════════════════════════════════════

@risk_item_bp.route("/<risk_item_id>", methods=["GET"])
def get_risk_item(risk_item_id):
    return jsonify(domain_risk_service.get_risk_item(risk_item_id).to_dict())


@risk_item_bp.route("/app/<app_id>", methods=["GET"])
def list_for_app(app_id):
    return _items(domain_risk_service.get_items_for_app(app_id, request.args.get("status")))


@risk_item_bp.route("/field/<field_key>", methods=["GET"])
def list_for_field(field_key):
    return _items(domain_risk_service.get_items_for_field(field_key))


@risk_item_bp.route("/evidence/<evidence_id>", methods=["GET"])
def list_for_evidence(evidence_id):
    return _items(domain_risk_service.get_items_for_evidence(evidence_id))


# ═══════════════════════════════════════════════════════════════════════════
#  STATUS
# ═══════════════════════════════════════════════════════════════════════════

@risk_item_bp.route("/<risk_item_id>/status", methods=["PATCH"])
def update_status(risk_item_id):
    data = _json()
    err = _missing(data, "status")
    if err:
        return err

    item = domain_risk_service.update_risk_item_status(
        risk_item_id,
        data["status"],
        data.get("resolution"),
        data.get("comment"),
        changed_by=data.get("changed_by") or "SYSTEM",
        actor_role=parse_actor_role(data.get("actor_role")),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(item.to_dict())


@risk_item_bp.route("/bulk-status", methods=["POST"])
def bulk_update_status():
    data = _json()
    err = _missing(data, "risk_item_ids", "status")
    if err:
        return err
    ids = data["risk_item_ids"]
    if not isinstance(ids, list):
        return api_error(E.VALIDATION_INVALID, "risk_item_ids must be a list")

    result = domain_risk_service.bulk_update_risk_item_status(
        [str(i) for i in ids],
        data["status"],
        data.get("resolution"),
        data.get("comment"),
        changed_by=data.get("changed_by") or "SYSTEM",
        actor_role=parse_actor_role(data.get("actor_role")),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(result.to_dict())


# ═══════════════════════════════════════════════════════════════════════════
#  ASSIGNMENT
# ═══════════════════════════════════════════════════════════════════════════

@risk_item_bp.route("/<risk_item_id>/self-assign", methods=["POST"])
def self_assign(risk_item_id):
    data = _json()
    err = _missing(data, "actor")
    if err:
        return err
    result = risk_assignment.self_assign(risk_item_id, data["actor"])
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(result.to_dict())


@risk_item_bp.route("/<risk_item_id>/assign", methods=["POST"])
def assign(risk_item_id):
    data = _json()
    err = _missing(data, "assigned_to", "actor")
    if err:
        return err
    result = risk_assignment.assign_to_user(
        risk_item_id, data["assigned_to"], data["actor"], data.get("reason"),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(result.to_dict())


@risk_item_bp.route("/<risk_item_id>/unassign", methods=["POST"])
def unassign(risk_item_id):
    data = _json()
    err = _missing(data, "actor")
    if err:
        return err
    result = risk_assignment.unassign(risk_item_id, data["actor"], data.get("reason"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(result.to_dict())


# ═══════════════════════════════════════════════════════════════════════════
#  REVIEW
# ═══════════════════════════════════════════════════════════════════════════

@risk_item_bp.route("/<risk_item_id>/review", methods=["POST"])
def review(risk_item_id):
    data = _json()
    item = sme_review.review_risk_item(
        risk_item_id,
        action=data.get("action"),
        sme_id=data.get("sme_id"),
        comments=data.get("comments"),
        mitigation_plan=data.get("mitigation_plan"),
        assign_to_sme=data.get("assign_to_sme"),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(item.to_dict())


@risk_item_bp.route("/<risk_item_id>/self-attest", methods=["POST"])
def self_attest(risk_item_id):
    data = _json()
    err = _missing(data, "po_id")
    if err:
        return err
    item = sme_review.self_attest_risk_item(risk_item_id, data["po_id"], data.get("comment"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(item.to_dict())


# ═══════════════════════════════════════════════════════════════════════════
#  HISTORY
# ═══════════════════════════════════════════════════════════════════════════

@risk_item_bp.route("/<risk_item_id>/status-history", methods=["GET"])
def status_history(risk_item_id):
    domain_risk_service.get_risk_item(risk_item_id)
    limit = request.args.get("limit", type=int)
    if limit is not None:
        entries = status_ledger.get_recent_history(risk_item_id, limit)
    else:
        entries = status_ledger.get_history(risk_item_id)
    return jsonify({
        "items": [e.to_dict() for e in entries],
        "total": status_ledger.count_transitions(risk_item_id),
    })


@risk_item_bp.route("/<risk_item_id>/assignment-history", methods=["GET"])
def assignment_history(risk_item_id):
    entries = risk_assignment.get_assignment_history(risk_item_id)
    return jsonify({"items": [e.to_dict() for e in entries], "total": len(entries)})


# ═══════════════════════════════════════════════════════════════════════════
#  COMMENTS
# ═══════════════════════════════════════════════════════════════════════════

@risk_item_bp.route("/<risk_item_id>/comments", methods=["POST"])
def add_comment(risk_item_id):
    data = _json()
    err = _missing(data, "comment_type", "comment_text", "commented_by")
    if err:
        return err
    comment = risk_comments.add_comment(
        risk_item_id,
        data["comment_type"],
        data["comment_text"],
        data["commented_by"],
        is_internal=bool(data.get("is_internal", False)),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(comment.to_dict()), 201


@risk_item_bp.route("/<risk_item_id>/comments", methods=["GET"])
def list_comments(risk_item_id):
    include_internal = request.args.get("include_internal", "false").lower() in ("1", "true", "yes")
    return _items(risk_comments.get_comments(risk_item_id, include_internal=include_internal))
