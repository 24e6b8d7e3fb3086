"""
Tests: collaborator gateways (profile, evidence, application) and their injection.
"""

import logging

import pytest

from app.core.exceptions import ConfigurationError
from app.integrations.risk_collaborators import (
    EXTENSION_KEY,
    ApplicationGateway,
    DbApplicationGateway,
    DbEvidenceGateway,
    DbProfileGateway,
    EvidenceGateway,
    ProfileGateway,
    RiskCollaborators,
    get_collaborators,
    init_risk_collaborators,
)
from app.models import db
from app.models.risk import RiskItem
from app.services.risk_auto_creation import evaluate_and_create_risk


# ── Default gateways ─────────────────────────────────────────────────────


def test_profile_gateway(security_app):
    gateway = DbProfileGateway()
    assert gateway.field_key_for("pf-mfa") == "mfa_enabled"
    assert gateway.field_key_for("pf-unknown") is None
    assert gateway.field_key_for(None) is None
    assert gateway.derived_from_for("data_validation") == "integrity_rating"


def test_evidence_gateway(security_app, link_evidence):
    gateway = DbEvidenceGateway()
    link_evidence("ev-1", "pf-mfa", "approved")
    assert gateway.link_status_for("ev-1", "pf-mfa") == "APPROVED"
    assert gateway.link_status_for("ev-1", "pf-enc") is None
    assert gateway.link_status_for(None, "pf-mfa") is None


def test_evidence_gateway_warns_on_unrecognised_status(security_app, link_evidence, caplog):
    link_evidence("ev-2", "pf-mfa", "quarantined")
    with caplog.at_level(logging.WARNING, logger="app.integrations.risk_collaborators"):
        assert DbEvidenceGateway().link_status_for("ev-2", "pf-mfa") == "QUARANTINED"
    assert "Unrecognised evidence link status" in caplog.text


def test_application_gateway(security_app):
    gateway = DbApplicationGateway(baseline_rating="C1")
    assert gateway.rating_for("A1", "security_rating") == "A1"
    assert gateway.rating_for("A1", "availability_rating") == "C1"
    assert gateway.rating_for("NO-ROW", "security_rating") == "C1"
    assert gateway.rating_for("A1", None) == "C1"


def test_baseline_rating_is_configurable(security_app):
    assert DbApplicationGateway(baseline_rating="B").rating_for("NO-ROW", "security_rating") == "B"


def test_default_collaborators_are_installed(app):
    collaborators = get_collaborators()
    assert isinstance(collaborators.profile, DbProfileGateway)
    assert isinstance(collaborators.evidence, DbEvidenceGateway)
    assert collaborators.applications.baseline_rating == app.config["RISK_BASELINE_RATING"]


def test_missing_collaborators_is_configuration_error(app, monkeypatch):
    monkeypatch.delitem(app.extensions, EXTENSION_KEY)
    with pytest.raises(ConfigurationError):
        get_collaborators()


# ── Injected gateways ────────────────────────────────────────────────────


class _FakeProfile(ProfileGateway):
    def field_key_for(self, profile_field_id):
        return {"ext-1": "mfa_enabled"}.get(profile_field_id)

    def derived_from_for(self, field_key):
        return "security_rating"


class _FakeEvidence(EvidenceGateway):
    def __init__(self, status):
        self.status = status
        self.calls = []

    def link_status_for(self, evidence_id, profile_field_id):
        self.calls.append((evidence_id, profile_field_id))
        return self.status


class _FakeApplications(ApplicationGateway):
    def rating_for(self, app_id, derived_from):
        return "A1"


@pytest.fixture()
def fake_collaborators(app):
    original = app.extensions[EXTENSION_KEY]
    fakes = init_risk_collaborators(
        app, RiskCollaborators(
            profile=_FakeProfile(), evidence=_FakeEvidence("REJECTED"), applications=_FakeApplications(),
        ),
    )
    yield fakes
    app.extensions[EXTENSION_KEY] = original


def test_evaluation_uses_injected_gateways(fake_collaborators):
    result = evaluate_and_create_risk("ev-ext", "ext-1", "EXT-APP")

    assert result.created is True
    assert fake_collaborators.evidence.calls == [("ev-ext", "ext-1")]
    item = db.session.get(RiskItem, result.risk_item_id)
    assert item.evidence_status == "non_compliant"
    assert item.priority_score == 69


def test_injected_profile_gateway_unknown_field(fake_collaborators):
    with pytest.raises(ConfigurationError):
        evaluate_and_create_risk("ev-ext", "ext-404", "EXT-APP")
