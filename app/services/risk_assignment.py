"""
Risk Assignment Service

Self-assign / assign-to-user / unassign for risk items.

Assignment moves an unowned item into work:
    OPEN           → IN_PROGRESS
    PENDING_REVIEW → UNDER_SME_REVIEW
Unassign moves it back:
    IN_PROGRESS      → OPEN
    UNDER_SME_REVIEW → PENDING_REVIEW

Status changes go through ``domain_risk_service.transition_risk_item`` so
they are validated, written to the status ledger and recomputed into the
domain aggregate.  Every effective assignment change appends one
``RiskItemAssignmentHistory`` row.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from app.core.exceptions import ConflictError, InvalidStateError, ValidationError
from app.models.audit import RiskItemAssignmentHistory, write_assignment_history
from app.models.risk import ActorRole, AssignmentType, RiskItem, RiskItemStatus
from app.services import domain_risk_service, status_ledger

logger = logging.getLogger(__name__)

ASSIGN_TRANSITIONS = {
    RiskItemStatus.OPEN: RiskItemStatus.IN_PROGRESS,
    RiskItemStatus.PENDING_REVIEW: RiskItemStatus.UNDER_SME_REVIEW,
}

UNASSIGN_TRANSITIONS = {
    RiskItemStatus.IN_PROGRESS: RiskItemStatus.OPEN,
    RiskItemStatus.UNDER_SME_REVIEW: RiskItemStatus.PENDING_REVIEW,
}

TERMINAL_ASSIGN_MESSAGE = "Cannot assign closed/resolved risk items"
NOT_ASSIGNED_MESSAGE = "Risk item is not assigned to anyone"


@dataclass
class AssignmentResult:
    risk_item_id: str
    assigned_to: str | None
    assigned_by: str | None
    assigned_at: datetime | None
    assignment_type: str
    status: str
    message: str
    changed: bool = True

    @classmethod
    def for_item(cls, item: RiskItem, assignment_type: AssignmentType, message: str, changed=True):
        return cls(
            risk_item_id=item.id,
            assigned_to=item.assigned_to,
            assigned_by=item.assigned_by,
            assigned_at=item.assigned_at,
            assignment_type=assignment_type.value,
            status=item.status.value,
            message=message,
            changed=changed,
        )

    def to_dict(self) -> dict:
        return {
            "risk_item_id": self.risk_item_id,
            "assigned_to": self.assigned_to,
            "assigned_by": self.assigned_by,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
            "assignment_type": self.assignment_type,
            "status": self.status,
            "message": self.message,
            "changed": self.changed,
        }


def _require(value, name):
    if not value or not str(value).strip():
        raise ValidationError(f"{name} is required", details={name: "required"})
    return str(value).strip()


def _ensure_not_terminal(item: RiskItem):
    if item.is_terminal:
        raise InvalidStateError(TERMINAL_ASSIGN_MESSAGE, current_state=item.status.value)


def _auto_transition(item, transitions, actor, actor_role, comment):
    target = transitions.get(item.status)
    if target is None:
        return
    domain_risk_service.transition_risk_item(
        item, target,
        resolution=status_ledger.ASSIGNMENT_CHANGED,
        comment=comment,
        changed_by=actor,
        actor_role=actor_role,
    )


def _assign(item, assignee, actor, assignment_type, reason, actor_role):
    previous = item.assigned_to
    item.assigned_to = assignee
    item.assigned_by = actor
    item.assigned_at = datetime.now(UTC)
    write_assignment_history(
        risk_item_id=item.id,
        assignment_type=assignment_type,
        assigned_by=actor,
        assigned_from=previous,
        assigned_to=assignee,
        reason=reason,
    )
    _auto_transition(item, ASSIGN_TRANSITIONS, actor, actor_role, reason)


def self_assign(risk_item_id: str, actor: str, actor_role=ActorRole.SME) -> AssignmentResult:
    """
    Take ownership of an item.

    For the current holder the assignment fields and history are left
    alone, but a PENDING_REVIEW item still moves to UNDER_SME_REVIEW.
    """
    actor = _require(actor, "actor")
    item = domain_risk_service.get_risk_item(risk_item_id, for_update=True)
    _ensure_not_terminal(item)

    if item.assigned_to and item.assigned_to != actor:
        raise ConflictError(
            "RiskItem", "assigned_to", item.assigned_to,
            message=(
                f"Risk item {item.id} is already assigned to {item.assigned_to}. "
                "Use re-assign instead."
            ),
        )
    if item.assigned_to == actor:
        # Holder unchanged: no field rewrite, no history row, but review may still start
        before = item.status
        _auto_transition(item, ASSIGN_TRANSITIONS, actor, actor_role, "Self-assigned by current holder")
        if item.status != before:
            logger.info(
                "Current holder %s started work on risk item", actor,
                extra={"risk_item_id": item.id, "actor": actor},
            )
            return AssignmentResult.for_item(
                item, AssignmentType.SELF_ASSIGN, "Risk item moved into work by current holder",
            )
        return AssignmentResult.for_item(
            item, AssignmentType.SELF_ASSIGN, "Risk item is already assigned to you", changed=False,
        )

    _assign(item, actor, actor, AssignmentType.SELF_ASSIGN, "Self-assigned by user", actor_role)
    logger.info("Risk item self-assigned to %s", actor, extra={"risk_item_id": item.id, "actor": actor})
    return AssignmentResult.for_item(
        item, AssignmentType.SELF_ASSIGN, "Risk item successfully self-assigned",
    )


def assign_to_user(
    risk_item_id: str,
    target_user: str,
    actor: str,
    reason: str | None = None,
    actor_role=ActorRole.SME,
) -> AssignmentResult:
    """Assign (or re-assign) an item to ``target_user``; no collision check."""
    target_user = _require(target_user, "assigned_to")
    actor = _require(actor, "actor")
    item = domain_risk_service.get_risk_item(risk_item_id, for_update=True)
    _ensure_not_terminal(item)

    _assign(
        item, target_user, actor, AssignmentType.MANUAL_ASSIGN,
        reason or f"Assigned by {actor}", actor_role,
    )
    logger.info(
        "Risk item assigned to %s by %s", target_user, actor,
        extra={"risk_item_id": item.id, "actor": actor},
    )
    return AssignmentResult.for_item(
        item, AssignmentType.MANUAL_ASSIGN, f"Risk item successfully assigned to {target_user}",
    )


def unassign(risk_item_id: str, actor: str, reason: str | None = None, actor_role=ActorRole.SME) -> AssignmentResult:
    actor = _require(actor, "actor")
    item = domain_risk_service.get_risk_item(risk_item_id, for_update=True)
    _ensure_not_terminal(item)
    if not item.assigned_to:
        raise InvalidStateError(NOT_ASSIGNED_MESSAGE, current_state=item.status.value)

    previous = item.assigned_to
    item.assigned_to = None
    item.assigned_by = None
    item.assigned_at = None
    write_assignment_history(
        risk_item_id=item.id,
        assignment_type=AssignmentType.UNASSIGN,
        assigned_by=actor,
        assigned_from=previous,
        assigned_to=None,
        reason=reason or "Unassigned",
    )
    _auto_transition(item, UNASSIGN_TRANSITIONS, actor, actor_role, reason or "Unassigned")
    logger.info(
        "Risk item unassigned from %s by %s", previous, actor,
        extra={"risk_item_id": item.id, "actor": actor},
    )
    return AssignmentResult.for_item(item, AssignmentType.UNASSIGN, "Risk item successfully unassigned")


def get_assignment_history(risk_item_id: str) -> list[RiskItemAssignmentHistory]:
    domain_risk_service.get_risk_item(risk_item_id)
    return (
        RiskItemAssignmentHistory.query.filter_by(risk_item_id=risk_item_id)
        .order_by(RiskItemAssignmentHistory.assigned_at.asc(), RiskItemAssignmentHistory.id.asc())
        .all()
    )
