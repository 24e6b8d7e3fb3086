"""
Tests: SME review actions and product-owner self-attestation.

Covers:
  1. Each of the 6 review actions: target status + ledger resolution
  2. Request validation (action, sme_id, companion fields) with no side effects
  3. State guards: only PENDING_REVIEW / UNDER_SME_REVIEW / ESCALATED are reviewable
  4. Self-attestation and its effect on the domain aggregate
"""

import pytest

from app.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from app.models.risk import DomainRiskStatus, RiskItemStatus
from app.services import risk_assignment, status_ledger
from app.services.sme_review import review_risk_item, self_attest_risk_item


@pytest.fixture()
def pending_item(make_risk_item):
    return make_risk_item(status=RiskItemStatus.PENDING_REVIEW)


# ── Review actions ───────────────────────────────────────────────────────


@pytest.mark.parametrize("action,target,resolution", [
    ("approve", RiskItemStatus.SME_APPROVED, status_ledger.SME_APPROVED),
    ("reject", RiskItemStatus.AWAITING_REMEDIATION, status_ledger.SME_REJECTED),
    ("request_info", RiskItemStatus.AWAITING_REMEDIATION, status_ledger.SME_REQUESTED_INFO),
    ("escalate", RiskItemStatus.ESCALATED, status_ledger.SME_ESCALATED),
])
def test_review_action(pending_item, action, target, resolution):
    item = review_risk_item(pending_item.id, action, "sme-1", comments="checked")

    assert item.status == target
    entry = status_ledger.get_most_recent_change(item.id)
    assert entry.from_status == "PENDING_REVIEW"
    assert entry.to_status == target.value
    assert entry.resolution == resolution
    assert entry.changed_by == "sme-1"
    assert entry.actor_role == "SME"
    assert entry.resolution_comment == "checked"


def test_approve_with_mitigation(pending_item):
    item = review_risk_item(
        pending_item.id, "approve_with_mitigation", "sme-1",
        mitigation_plan="Enforce MFA on admin accounts by Q3",
    )
    assert item.status == RiskItemStatus.SME_APPROVED
    entry = status_ledger.get_most_recent_change(item.id)
    assert entry.resolution == status_ledger.SME_APPROVED_WITH_MITIGATION
    assert entry.mitigation_plan == "Enforce MFA on admin accounts by Q3"


def test_assign_other(pending_item):
    pending_item.assigned_to = "sme-1"

    item = review_risk_item(pending_item.id, "assign_other", "sme-1", assign_to_sme="sme-2")

    assert item.status == RiskItemStatus.PENDING_REVIEW
    assert item.assigned_to == "sme-2"
    assert item.assigned_by == "sme-1"
    entry = status_ledger.get_most_recent_change(item.id)
    assert entry.reassigned_to == "sme-2"
    last = risk_assignment.get_assignment_history(item.id)[-1]
    assert last.assignment_type == "MANUAL_ASSIGN"
    assert last.assigned_from == "sme-1"
    assert last.assigned_to == "sme-2"


def test_action_is_case_insensitive(pending_item):
    item = review_risk_item(pending_item.id, "  APPROVE ", "sme-1")
    assert item.status == RiskItemStatus.SME_APPROVED


@pytest.mark.parametrize("status", [RiskItemStatus.UNDER_SME_REVIEW, RiskItemStatus.ESCALATED])
def test_reviewable_states(make_risk_item, status):
    item = make_risk_item(status=status)
    assert review_risk_item(item.id, "reject", "sme-1").status == RiskItemStatus.AWAITING_REMEDIATION


def test_escalated_item_cannot_be_escalated_again(make_risk_item):
    item = make_risk_item(status=RiskItemStatus.ESCALATED)
    with pytest.raises(InvalidStateError):
        review_risk_item(item.id, "escalate", "sme-1")


# ── Validation ───────────────────────────────────────────────────────────


@pytest.mark.parametrize("action,kwargs,field", [
    ("approve_with_mitigation", {}, "mitigation_plan"),
    ("approve_with_mitigation", {"mitigation_plan": "   "}, "mitigation_plan"),
    ("assign_other", {}, "assign_to_sme"),
    ("", {}, "action"),
    ("close_it", {}, "action"),
])
def test_invalid_request_has_no_side_effects(pending_item, action, kwargs, field):
    with pytest.raises(ValidationError) as exc:
        review_risk_item(pending_item.id, action, "sme-1", **kwargs)
    assert field in exc.value.details
    assert pending_item.status == RiskItemStatus.PENDING_REVIEW
    assert status_ledger.count_transitions(pending_item.id) == 0


def test_sme_id_required(pending_item):
    with pytest.raises(ValidationError) as exc:
        review_risk_item(pending_item.id, "approve", None)
    assert exc.value.details == {"sme_id": "required"}


def test_validation_precedes_lookup():
    with pytest.raises(ValidationError):
        review_risk_item("missing", "bogus", "sme-1")
    with pytest.raises(NotFoundError):
        review_risk_item("missing", "approve", "sme-1")


# ── State guards ─────────────────────────────────────────────────────────


@pytest.mark.parametrize("status", [
    RiskItemStatus.OPEN,
    RiskItemStatus.SME_APPROVED,
    RiskItemStatus.RESOLVED,
    RiskItemStatus.CLOSED,
])
def test_not_reviewable(make_risk_item, status):
    item = make_risk_item(status=status)
    with pytest.raises(InvalidStateError) as exc:
        review_risk_item(item.id, "approve", "sme-1")
    assert exc.value.current_state == status.value
    assert item.status == status


# ── Self-attestation ─────────────────────────────────────────────────────


def test_self_attest_open_item_resolves_domain(make_risk_item):
    item = make_risk_item()
    assert item.domain_risk.open_items == 1

    self_attest_risk_item(item.id, "po-1", "Control verified in production")

    assert item.status == RiskItemStatus.SELF_ATTESTED
    entry = status_ledger.get_most_recent_change(item.id)
    assert entry.resolution == status_ledger.PO_SELF_ATTESTED
    assert entry.actor_role == "PO"
    assert entry.changed_by == "po-1"
    dr = item.domain_risk
    assert dr.open_items == 0
    assert dr.status == DomainRiskStatus.RESOLVED


def test_self_attest_requires_po(make_risk_item):
    item = make_risk_item()
    with pytest.raises(ValidationError):
        self_attest_risk_item(item.id, "")
    assert item.status == RiskItemStatus.OPEN


def test_self_attest_terminal_item(make_risk_item):
    item = make_risk_item(status=RiskItemStatus.CLOSED)
    with pytest.raises(InvalidStateError):
        self_attest_risk_item(item.id, "po-1")
