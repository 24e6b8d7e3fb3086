"""
Status ledger — append-only history of risk item status transitions.

Every status change on a risk item goes through ``log_transition`` (or
one of the named helpers below), which writes exactly one
``RiskItemStatusHistory`` row.  Rows are never updated or deleted.
Writers flush only; the caller owns the transaction.
"""

import logging

from sqlalchemy import func

from app.models import db
from app.models.audit import RiskItemStatusHistory, write_status_history
from app.models.risk import SYSTEM_ACTOR, ActorRole, RiskItemStatus

logger = logging.getLogger(__name__)

# ── Resolution tags ──────────────────────────────────────────────────────────

SYSTEM_AUTO_CREATED = "SYSTEM_AUTO_CREATED"
MANUALLY_CREATED = "MANUALLY_CREATED"
SME_APPROVED = "SME_APPROVED"
SME_APPROVED_WITH_MITIGATION = "SME_APPROVED_WITH_MITIGATION"
SME_REJECTED = "SME_REJECTED"
SME_REQUESTED_INFO = "SME_REQUESTED_INFO"
SME_ESCALATED = "SME_ESCALATED"
PO_SELF_ATTESTED = "PO_SELF_ATTESTED"
REASSIGNED_TO_SME = "REASSIGNED_TO_SME"
ASSIGNMENT_CHANGED = "ASSIGNMENT_CHANGED"


def log_transition(
    risk_item_id: str,
    from_status,
    to_status,
    *,
    resolution: str | None = None,
    comment: str | None = None,
    changed_by: str = "SYSTEM",
    actor_role=ActorRole.SYSTEM,
    mitigation_plan: str | None = None,
    reassigned_to: str | None = None,
    metadata: dict | None = None,
) -> RiskItemStatusHistory:
    entry = write_status_history(
        risk_item_id=risk_item_id,
        from_status=from_status,
        to_status=to_status,
        resolution=resolution,
        resolution_comment=comment,
        changed_by=changed_by,
        actor_role=actor_role,
        mitigation_plan=mitigation_plan,
        reassigned_to=reassigned_to,
        metadata=metadata,
    )
    logger.debug(
        "Status transition %s → %s by %s (%s)",
        entry.from_status, entry.to_status, entry.changed_by, entry.actor_role,
        extra={"risk_item_id": risk_item_id},
    )
    return entry


# ── Named transitions ────────────────────────────────────────────────────────

def log_creation(
    risk_item_id: str,
    reason: str,
    *,
    status=RiskItemStatus.OPEN,
    changed_by: str = SYSTEM_ACTOR,
    actor_role=ActorRole.SYSTEM,
    resolution: str = SYSTEM_AUTO_CREATED,
    metadata: dict | None = None,
) -> RiskItemStatusHistory:
    """Initial entry for a new item; the only entry with ``from_status`` NULL."""
    return log_transition(
        risk_item_id, None, status,
        resolution=resolution, comment=reason,
        changed_by=changed_by, actor_role=actor_role, metadata=metadata,
    )


def log_sme_approval(risk_item_id, from_status, sme_id, comment=None):
    return log_transition(
        risk_item_id, from_status, RiskItemStatus.SME_APPROVED,
        resolution=SME_APPROVED, comment=comment,
        changed_by=sme_id, actor_role=ActorRole.SME,
    )


def log_sme_approval_with_mitigation(risk_item_id, from_status, sme_id, mitigation_plan, comment=None):
    return log_transition(
        risk_item_id, from_status, RiskItemStatus.SME_APPROVED,
        resolution=SME_APPROVED_WITH_MITIGATION, comment=comment,
        changed_by=sme_id, actor_role=ActorRole.SME, mitigation_plan=mitigation_plan,
    )


def log_sme_rejection(risk_item_id, from_status, sme_id, comment=None):
    return log_transition(
        risk_item_id, from_status, RiskItemStatus.AWAITING_REMEDIATION,
        resolution=SME_REJECTED, comment=comment,
        changed_by=sme_id, actor_role=ActorRole.SME,
    )


def log_sme_info_request(risk_item_id, from_status, sme_id, comment=None):
    return log_transition(
        risk_item_id, from_status, RiskItemStatus.AWAITING_REMEDIATION,
        resolution=SME_REQUESTED_INFO, comment=comment,
        changed_by=sme_id, actor_role=ActorRole.SME,
    )


def log_sme_escalation(risk_item_id, from_status, sme_id, comment=None):
    return log_transition(
        risk_item_id, from_status, RiskItemStatus.ESCALATED,
        resolution=SME_ESCALATED, comment=comment,
        changed_by=sme_id, actor_role=ActorRole.SME,
    )


def log_po_self_attestation(risk_item_id, from_status, po_id, comment=None):
    return log_transition(
        risk_item_id, from_status, RiskItemStatus.SELF_ATTESTED,
        resolution=PO_SELF_ATTESTED, comment=comment,
        changed_by=po_id, actor_role=ActorRole.PO,
    )


def log_reassignment(risk_item_id, from_status, sme_id, new_sme_id, comment=None):
    return log_transition(
        risk_item_id, from_status, RiskItemStatus.PENDING_REVIEW,
        resolution=REASSIGNED_TO_SME, comment=comment,
        changed_by=sme_id, actor_role=ActorRole.SME, reassigned_to=new_sme_id,
    )


# ── Queries ──────────────────────────────────────────────────────────────────

def _history_query(risk_item_id):
    return RiskItemStatusHistory.query.filter_by(risk_item_id=risk_item_id)


def get_history(risk_item_id: str) -> list[RiskItemStatusHistory]:
    """Full history, oldest first."""
    return (
        _history_query(risk_item_id)
        .order_by(RiskItemStatusHistory.changed_at.asc(), RiskItemStatusHistory.id.asc())
        .all()
    )


def get_recent_history(risk_item_id: str, limit: int = 10) -> list[RiskItemStatusHistory]:
    """The ``limit`` most recent entries, newest first."""
    return (
        _history_query(risk_item_id)
        .order_by(RiskItemStatusHistory.changed_at.desc(), RiskItemStatusHistory.id.desc())
        .limit(max(0, limit))
        .all()
    )


def get_most_recent_change(risk_item_id: str) -> RiskItemStatusHistory | None:
    recent = get_recent_history(risk_item_id, limit=1)
    return recent[0] if recent else None


def was_ever_in_status(risk_item_id: str, status) -> bool:
    value = getattr(status, "value", status)
    return db.session.query(
        _history_query(risk_item_id).filter(RiskItemStatusHistory.to_status == value).exists()
    ).scalar()


def count_transitions(risk_item_id: str) -> int:
    return (
        db.session.query(func.count(RiskItemStatusHistory.id))
        .filter(RiskItemStatusHistory.risk_item_id == risk_item_id)
        .scalar()
    ) or 0
