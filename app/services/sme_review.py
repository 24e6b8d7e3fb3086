"""
SME review workflow for risk items.

6 review actions:
  approve, approve_with_mitigation, reject, request_info, assign_other, escalate

plus product-owner self-attestation.

All input is validated before anything is touched: a missing or unknown
action, a missing ``sme_id``, or an action without its companion field
(mitigation plan, target reviewer) raises ValidationError with no side
effects.

Usage:
    from app.services.sme_review import review_risk_item

    item = review_risk_item(
        risk_item_id="abc",
        action="approve_with_mitigation",
        sme_id="sme-7",
        mitigation_plan="Enforce MFA for admin accounts by Q3",
    )
"""

import logging
from datetime import UTC, datetime
from functools import partial

from app.core.exceptions import InvalidStateError, ValidationError
from app.models.audit import write_assignment_history
from app.models.risk import AssignmentType, RiskItem, RiskItemStatus
from app.services import domain_risk_service, status_ledger

logger = logging.getLogger(__name__)

_REVIEWABLE = (
    RiskItemStatus.PENDING_REVIEW,
    RiskItemStatus.UNDER_SME_REVIEW,
    RiskItemStatus.ESCALATED,
)

# Review action rules
REVIEW_ACTIONS = {
    "approve": {"from": _REVIEWABLE, "to": RiskItemStatus.SME_APPROVED},
    "approve_with_mitigation": {"from": _REVIEWABLE, "to": RiskItemStatus.SME_APPROVED},
    "reject": {"from": _REVIEWABLE, "to": RiskItemStatus.AWAITING_REMEDIATION},
    "request_info": {"from": _REVIEWABLE, "to": RiskItemStatus.AWAITING_REMEDIATION},
    "assign_other": {"from": _REVIEWABLE, "to": RiskItemStatus.PENDING_REVIEW},
    "escalate": {"from": _REVIEWABLE, "to": RiskItemStatus.ESCALATED},
}


def validate_review_request(action, sme_id, mitigation_plan=None, assign_to_sme=None) -> str:
    """Return the normalised action or raise ValidationError."""
    errors = {}
    normalised = (action or "").strip().lower()
    if not normalised:
        errors["action"] = "required"
    elif normalised not in REVIEW_ACTIONS:
        errors["action"] = f"must be one of {sorted(REVIEW_ACTIONS)}"
    if not sme_id or not str(sme_id).strip():
        errors["sme_id"] = "required"
    if normalised == "approve_with_mitigation" and not (mitigation_plan or "").strip():
        errors["mitigation_plan"] = "required for approve_with_mitigation"
    if normalised == "assign_other" and not (assign_to_sme or "").strip():
        errors["assign_to_sme"] = "required for assign_other"
    if errors:
        raise ValidationError("Invalid review request", details=errors)
    return normalised


def _recorder(action, sme_id, comment, mitigation_plan, assign_to_sme):
    if action == "approve":
        return partial(status_ledger.log_sme_approval, sme_id=sme_id, comment=comment)
    if action == "approve_with_mitigation":
        return partial(
            status_ledger.log_sme_approval_with_mitigation,
            sme_id=sme_id, mitigation_plan=mitigation_plan, comment=comment,
        )
    if action == "reject":
        return partial(status_ledger.log_sme_rejection, sme_id=sme_id, comment=comment)
    if action == "request_info":
        return partial(status_ledger.log_sme_info_request, sme_id=sme_id, comment=comment)
    if action == "assign_other":
        return partial(
            status_ledger.log_reassignment, sme_id=sme_id, new_sme_id=assign_to_sme, comment=comment,
        )
    return partial(status_ledger.log_sme_escalation, sme_id=sme_id, comment=comment)


def review_risk_item(
    risk_item_id: str,
    action: str,
    sme_id: str,
    comments: str | None = None,
    mitigation_plan: str | None = None,
    assign_to_sme: str | None = None,
) -> RiskItem:
    """Apply one SME review action to a risk item."""
    action = validate_review_request(action, sme_id, mitigation_plan, assign_to_sme)
    sme_id = str(sme_id).strip()
    rule = REVIEW_ACTIONS[action]

    item = domain_risk_service.get_risk_item(risk_item_id, for_update=True)
    if item.status not in rule["from"]:
        raise InvalidStateError(
            f"Cannot '{action}' risk item {item.id} (status={item.status.value})",
            current_state=item.status.value,
        )

    if action == "assign_other":
        new_sme = assign_to_sme.strip()
        previous = item.assigned_to
        item.assigned_to = new_sme
        item.assigned_by = sme_id
        item.assigned_at = datetime.now(UTC)
        write_assignment_history(
            risk_item_id=item.id,
            assignment_type=AssignmentType.MANUAL_ASSIGN,
            assigned_by=sme_id,
            assigned_from=previous,
            assigned_to=new_sme,
            reason=comments or f"Reassigned to {new_sme}",
        )

    domain_risk_service.transition_risk_item(
        item, rule["to"],
        changed_by=sme_id,
        record=_recorder(action, sme_id, comments, mitigation_plan, assign_to_sme),
    )
    logger.info(
        "SME review '%s' by %s", action, sme_id,
        extra={"risk_item_id": item.id, "app_id": item.app_id, "actor": sme_id},
    )
    return item


def self_attest_risk_item(risk_item_id: str, po_id: str, comment: str | None = None) -> RiskItem:
    """Product owner attests the control is in place; item → SELF_ATTESTED."""
    if not po_id or not str(po_id).strip():
        raise ValidationError("po_id is required", details={"po_id": "required"})
    po_id = str(po_id).strip()
    item = domain_risk_service.get_risk_item(risk_item_id, for_update=True)
    domain_risk_service.transition_risk_item(
        item, RiskItemStatus.SELF_ATTESTED,
        changed_by=po_id,
        record=partial(status_ledger.log_po_self_attestation, po_id=po_id, comment=comment),
    )
    logger.info(
        "Risk item self-attested by %s", po_id,
        extra={"risk_item_id": item.id, "app_id": item.app_id, "actor": po_id},
    )
    return item
