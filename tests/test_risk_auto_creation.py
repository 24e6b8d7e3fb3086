"""
Tests: automatic risk item creation on evidence events.

Covers:
  1. End-to-end: app A1 rated A1 on security, mfa_enabled (HIGH), no evidence link
  2. Deduplication on (app_id, field_key, evidence_id), including the lost race
  3. "Does not require review" outcomes
  4. Evidence link status → evidence status category → score
  5. Configuration errors abort with nothing persisted

Reference rows come from the ``security_app`` / ``low_rated_app`` fixtures
and the default database-backed collaborator gateways.
"""

import json

import pytest

from app.core.exceptions import ConfigurationError
from app.models import db
from app.models.reference import Application, ProfileField
from app.models.risk import (
    SYSTEM_ACTOR,
    CreationType,
    DomainRisk,
    DomainRiskStatus,
    RiskItem,
    RiskItemStatus,
    RiskPriority,
)
from app.services import risk_auto_creation, status_ledger
from app.services.risk_auto_creation import (
    ALREADY_EXISTS_REASON,
    NOT_REQUIRED_REASON,
    evaluate_and_create_risk,
    evidence_status_category,
)


# ── End-to-end ───────────────────────────────────────────────────────────


def test_missing_evidence_on_high_priority_field(security_app):
    result = evaluate_and_create_risk("ev-1", "pf-mfa", "A1")

    assert result.created is True
    assert result.field_key == "mfa_enabled"
    assert result.rating == "A1"
    assert result.assigned_arb == "security_arb"
    assert result.reason == "Auto-created risk item and added to domain risk security"

    item = db.session.get(RiskItem, result.risk_item_id)
    assert item.priority == RiskPriority.HIGH
    assert item.evidence_status == "missing"
    assert item.priority_score == 75
    assert item.severity == "high"
    assert item.status == RiskItemStatus.OPEN
    assert item.creation_type == CreationType.SYSTEM_AUTO_CREATION
    assert item.raised_by == SYSTEM_ACTOR
    assert item.triggering_evidence_id == "ev-1"
    assert item.profile_field_id == "pf-mfa"
    assert item.title == "Compliance risk: mfa_enabled"
    assert item.domain == "security"
    assert json.loads(item.policy_requirement_snapshot)["requirement"]["priority"] == "HIGH"

    dr = item.domain_risk
    assert dr.app_id == "A1"
    assert dr.domain == "security"
    assert dr.status == DomainRiskStatus.PENDING_ARB_REVIEW
    assert dr.total_items == 1
    assert dr.open_items == 1
    assert dr.high_priority_items == 1
    assert dr.priority_score == 77
    assert dr.overall_severity == "high"
    assert dr.last_item_added_at is not None


def test_creation_is_recorded_in_the_ledger(security_app):
    result = evaluate_and_create_risk("ev-1", "pf-mfa", "A1")
    history = status_ledger.get_history(result.risk_item_id)
    assert len(history) == 1
    assert history[0].from_status is None
    assert history[0].to_status == "OPEN"
    assert history[0].resolution == status_ledger.SYSTEM_AUTO_CREATED
    assert history[0].extra["evidence_status"] == "missing"
    assert history[0].extra["evidence_id"] == "ev-1"


def test_second_evidence_joins_the_same_domain(security_app):
    evaluate_and_create_risk("ev-1", "pf-mfa", "A1")
    evaluate_and_create_risk("ev-2", "pf-mfa", "A1")
    dr = DomainRisk.query.filter_by(app_id="A1", domain="security").one()
    assert dr.total_items == 2
    assert dr.high_priority_items == 2
    assert dr.priority_score == 79


def test_fields_of_one_dimension_share_the_board(security_app):
    evaluate_and_create_risk("ev-1", "pf-enc", "A1")
    result = evaluate_and_create_risk("ev-1", "pf-mfa", "A1")
    assert result.assigned_arb == "security_arb"
    dr = DomainRisk.query.filter_by(app_id="A1").one()
    assert dr.priority_score == 100
    assert dr.overall_severity == "critical"


# ── Deduplication ────────────────────────────────────────────────────────


def test_repeat_evaluation_is_a_no_op(security_app):
    first = evaluate_and_create_risk("ev-1", "pf-mfa", "A1")
    second = evaluate_and_create_risk("ev-1", "pf-mfa", "A1")

    assert first.created is True
    assert second.created is False
    assert second.reason == ALREADY_EXISTS_REASON
    assert second.risk_item_id is None
    assert RiskItem.query.count() == 1
    assert status_ledger.count_transitions(first.risk_item_id) == 1


def test_lost_race_on_insert_reports_already_exists(security_app, monkeypatch):
    evaluate_and_create_risk("ev-1", "pf-mfa", "A1")
    # The advisory check misses the winner's row; the unique constraint decides
    monkeypatch.setattr(risk_auto_creation, "_risk_item_exists", lambda *args: False)

    result = evaluate_and_create_risk("ev-1", "pf-mfa", "A1")

    assert result.created is False
    assert result.reason == ALREADY_EXISTS_REASON
    assert RiskItem.query.count() == 1
    assert DomainRisk.query.one().total_items == 1


# ── Not required ─────────────────────────────────────────────────────────


def test_rating_without_review_requirement(low_rated_app):
    result = evaluate_and_create_risk("ev-1", "pf-b-mfa", "B-APP")
    assert result.created is False
    assert result.reason == NOT_REQUIRED_REASON
    assert result.rating == "C1"
    assert RiskItem.query.count() == 0
    assert DomainRisk.query.count() == 0


def test_unrated_application_uses_baseline(security_app):
    # profile field exists, application row does not
    db.session.add(ProfileField(id="pf-x", app_id="NO-ROW", field_key="mfa_enabled"))
    db.session.flush()
    result = evaluate_and_create_risk("ev-1", "pf-x", "NO-ROW")
    assert result.rating == "C1"
    assert result.created is False


def test_result_serialises(low_rated_app):
    payload = evaluate_and_create_risk("ev-1", "pf-b-mfa", "B-APP").to_dict()
    assert payload["created"] is False
    assert payload["evidence_id"] == "ev-1"
    assert payload["risk_item_id"] is None


# ── Evidence status ──────────────────────────────────────────────────────


@pytest.mark.parametrize("link_status,category,score,severity", [
    ("REJECTED", "non_compliant", 69, "medium"),
    ("APPROVED", "approved", 30, "low"),
    ("USER_ATTESTED", "approved", 30, "low"),
    ("PENDING_SME_REVIEW", "under_review", 45, "medium"),
    ("ATTACHED", "under_review", 45, "medium"),
])
def test_link_status_drives_score(security_app, link_evidence, link_status, category, score, severity):
    link_evidence("ev-9", "pf-mfa", link_status)
    result = evaluate_and_create_risk("ev-9", "pf-mfa", "A1")
    item = db.session.get(RiskItem, result.risk_item_id)
    assert item.evidence_status == category
    assert item.priority_score == score
    assert item.severity == severity


@pytest.mark.parametrize("raw,category", [
    (None, "missing"),
    ("", "missing"),
    ("approved", "approved"),
    ("REJECTED", "non_compliant"),
    ("PENDING_PO_REVIEW", "under_review"),
    ("PENDING_REVIEW", "under_review"),
    ("SOMETHING_NEW", "under_review"),
])
def test_evidence_status_category(raw, category):
    assert evidence_status_category(raw) == category


# ── Configuration errors ─────────────────────────────────────────────────


def test_unknown_profile_field_is_fatal(security_app):
    with pytest.raises(ConfigurationError, match="pf-nope"):
        evaluate_and_create_risk("ev-1", "pf-nope", "A1")
    assert RiskItem.query.count() == 0
    assert DomainRisk.query.count() == 0


def test_field_without_dimension_is_fatal(security_app):
    with pytest.raises(ConfigurationError, match="orphan_field"):
        evaluate_and_create_risk("ev-1", "pf-orphan", "A1")
    assert RiskItem.query.count() == 0


def test_field_without_board_goes_to_default(security_app):
    application = db.session.get(Application, "A1")
    application.ratings = {**application.ratings, "availability_rating": "A"}
    db.session.flush()

    result = evaluate_and_create_risk("ev-1", "pf-backup", "A1")
    assert result.created is True
    assert result.assigned_arb == "default"
