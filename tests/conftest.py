"""
Shared pytest fixtures for the Risk Lifecycle Engine test suite.

Provides:
    - registry: ProfileFieldRegistry parsed from tests/fixtures (session-scoped)
    - app: Flask application wired to the fixture registry (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - security_app: reference rows for application "A1" (rated A1 on security)
    - make_domain_risk / make_risk_item: ORM factories that bypass workflow guards
"""

import os
import uuid

import pytest

from app import create_app
from app.models import db as _db
from app.models.reference import Application, EvidenceFieldLink, ProfileField
from app.models.risk import (
    CreationType,
    RiskItem,
    RiskItemStatus,
    RiskPriority,
)
from app.services import domain_risk_service, priority_scorer
from app.services.registry_service import ProfileFieldRegistry

FIXTURE_REGISTRY = os.path.join(os.path.dirname(__file__), "fixtures", "profile_fields_registry.yaml")


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def registry():
    return ProfileFieldRegistry.from_yaml(FIXTURE_REGISTRY)


@pytest.fixture(scope="session")
def app(registry):
    """Create the Flask application once per test session."""
    application = create_app("testing", registry=registry)
    # reload-risk-registry re-reads the same fixture file
    application.config["RISK_REGISTRY_PATH"] = FIXTURE_REGISTRY
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Reference data ───────────────────────────────────────────────────────


@pytest.fixture()
def security_app():
    """
    Application "A1" rated A1 on security and A on integrity, with one
    profile field per registry entry.  No evidence links.
    """
    application = Application(app_id="A1", name="Payments Gateway")
    application.ratings = {"security_rating": "A1", "integrity_rating": "A"}
    _db.session.add(application)
    for pf_id, key in (
        ("pf-mfa", "mfa_enabled"),
        ("pf-enc", "encryption_at_rest"),
        ("pf-dv", "data_validation"),
        ("pf-backup", "backup_policy"),
        ("pf-orphan", "orphan_field"),
    ):
        _db.session.add(ProfileField(id=pf_id, app_id="A1", field_key=key))
    _db.session.commit()
    return application


@pytest.fixture()
def low_rated_app():
    """Application "B-APP" rated C1 on security (mfa_enabled needs no review)."""
    application = Application(app_id="B-APP", name="Internal Wiki")
    application.ratings = {"security_rating": "C1"}
    _db.session.add(application)
    _db.session.add(ProfileField(id="pf-b-mfa", app_id="B-APP", field_key="mfa_enabled"))
    _db.session.commit()
    return application


@pytest.fixture()
def link_evidence():
    """Attach evidence to a profile field with a given link status."""

    def _link(evidence_id, profile_field_id, link_status):
        link = EvidenceFieldLink(
            evidence_id=evidence_id,
            profile_field_id=profile_field_id,
            link_status=link_status,
        )
        _db.session.add(link)
        _db.session.commit()
        return link

    return _link


# ── ORM helper factories ─────────────────────────────────────────────────


@pytest.fixture()
def make_domain_risk():
    def _make(app_id="APP-1", derived_from="security_rating"):
        return domain_risk_service.get_or_create_domain_risk(app_id, derived_from)

    return _make


@pytest.fixture()
def make_risk_item(make_domain_risk):
    """
    Create a RiskItem at an arbitrary status (bypasses transition guards)
    and recompute its aggregate.
    """

    def _make(
        domain_risk=None,
        *,
        status=RiskItemStatus.OPEN,
        priority=RiskPriority.HIGH,
        evidence_status="missing",
        field_key="mfa_enabled",
        evidence_id=None,
        assigned_to=None,
    ):
        domain_risk = domain_risk or make_domain_risk()
        score = priority_scorer.score(priority, evidence_status)
        item = RiskItem(
            app_id=domain_risk.app_id,
            field_key=field_key,
            profile_field_id=f"pf-{field_key}",
            triggering_evidence_id=evidence_id or f"ev-{uuid.uuid4().hex[:8]}",
            title=f"Compliance risk: {field_key}",
            priority=RiskPriority.parse(priority),
            evidence_status=evidence_status,
            priority_score=score,
            severity=priority_scorer.severity_label(score),
            status=RiskItemStatus.OPEN,
            creation_type=CreationType.SYSTEM_AUTO_CREATION,
            assigned_to=assigned_to,
            assigned_by=assigned_to,
        )
        domain_risk_service.add_risk_item_to_domain(domain_risk, item)
        if status != RiskItemStatus.OPEN:
            item.status = status
            domain_risk_service.recalculate_aggregations(domain_risk)
        return item

    return _make
