"""
Risk Auto-Creation Service

Decides whether attaching (or detaching) evidence on a profile field must
raise a risk item, and raises it:

  1. profile field id → field key                  (fatal if unknown)
  2. field key → rating dimension → app rating
  3. registry rule for (field, app, rating)        → "does not require review"
  4. existing item for (app, field, evidence)      → "already exists"
  5. get-or-create the DomainRisk for the dimension
  6. evidence link status → evidence status category
  7. priority score + severity
  8-9. build the item and attach it to the DomainRisk (recompute)
  10. creation entry in the status ledger

The existence check in step 4 is advisory; the unique constraint on
(app_id, field_key, triggering_evidence_id) decides the winner and the
loser gets the same "already exists" result.

Usage:
    from app.services.risk_auto_creation import evaluate_and_create_risk

    result = evaluate_and_create_risk(evidence_id="ev-1", profile_field_id="pf-9", app_id="APP-1")
    if result.created:
        ...
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy.exc import IntegrityError

from app.core.exceptions import ConfigurationError
from app.integrations.risk_collaborators import get_collaborators
from app.models import db
from app.models.risk import (
    INITIAL_ITEM_STATUS,
    SYSTEM_ACTOR,
    CreationType,
    RiskItem,
)
from app.services import domain_risk_service, priority_scorer, status_ledger
from app.services.registry_service import get_registry

logger = logging.getLogger(__name__)

NOT_REQUIRED_REASON = "Field does not require review for this rating level"
ALREADY_EXISTS_REASON = "Risk item already exists for this evidence and field"
MISSING_EVIDENCE_STATUS = "missing"

# Evidence link status → evidence status category used by the scorer
_LINK_STATUS_CATEGORIES = {
    "APPROVED": "approved",
    "USER_ATTESTED": "approved",
    "REJECTED": "non_compliant",
    "PENDING_PO_REVIEW": "under_review",
    "PENDING_SME_REVIEW": "under_review",
    "PENDING_REVIEW": "under_review",
    "ATTACHED": "under_review",
}


@dataclass
class AutoRiskCreationResult:
    created: bool
    field_key: str | None
    app_id: str
    rating: str | None
    reason: str
    risk_item_id: str | None = None
    assigned_arb: str | None = None
    evidence_id: str | None = None

    @classmethod
    def not_created(cls, field_key, app_id, rating, reason, evidence_id=None):
        return cls(False, field_key, app_id, rating, reason, evidence_id=evidence_id)

    def to_dict(self) -> dict:
        return {
            "created": self.created,
            "risk_item_id": self.risk_item_id,
            "field_key": self.field_key,
            "app_id": self.app_id,
            "rating": self.rating,
            "assigned_arb": self.assigned_arb,
            "evidence_id": self.evidence_id,
            "reason": self.reason,
        }


def evidence_status_category(link_status: str | None) -> str:
    """Map a raw evidence link status to a scorer category; no link → missing."""
    if not link_status:
        return MISSING_EVIDENCE_STATUS
    return _LINK_STATUS_CATEGORIES.get(str(link_status).strip().upper(), "under_review")


def _risk_item_exists(app_id: str, field_key: str, evidence_id: str | None) -> bool:
    return db.session.query(
        RiskItem.query.filter_by(
            app_id=app_id, field_key=field_key, triggering_evidence_id=evidence_id,
        ).exists()
    ).scalar()


def resolve_field_key(profile_field_id: str) -> str:
    field_key = get_collaborators().profile.field_key_for(profile_field_id)
    if not field_key:
        logger.error("Could not resolve field key for profile field %s", profile_field_id)
        raise ConfigurationError(f"Could not find field key for profile field ID: {profile_field_id}")
    return field_key


def resolve_app_rating(app_id: str, field_key: str) -> tuple[str, str]:
    """(derived_from, rating) for ``field_key`` on ``app_id``."""
    derived_from = get_collaborators().profile.derived_from_for(field_key)
    if not derived_from:
        logger.error(
            "Field %s has no derived_from configuration in the registry", field_key,
            extra={"app_id": app_id, "field_key": field_key},
        )
        raise ConfigurationError(f"Field {field_key} has no derived_from configuration")
    rating = get_collaborators().applications.rating_for(app_id, derived_from)
    return derived_from, rating


def evaluate_and_create_risk(evidence_id: str, profile_field_id: str, app_id: str) -> AutoRiskCreationResult:
    """Evaluate one evidence/field/app triple; see module docstring for the steps."""
    collaborators = get_collaborators()
    registry = get_registry()
    ctx = {"app_id": app_id, "evidence_id": evidence_id}

    field_key = resolve_field_key(profile_field_id)
    derived_from, rating = resolve_app_rating(app_id, field_key)

    evaluation = registry.rule_for(field_key, app_id, rating)
    if not evaluation.should_create:
        logger.info("Risk creation skipped for %s: %s", field_key, evaluation.reason, extra=ctx)
        return AutoRiskCreationResult.not_created(
            field_key, app_id, rating, NOT_REQUIRED_REASON, evidence_id,
        )

    if _risk_item_exists(app_id, field_key, evidence_id):
        logger.info("Risk creation skipped for %s: item already exists", field_key, extra=ctx)
        return AutoRiskCreationResult.not_created(
            field_key, app_id, rating, ALREADY_EXISTS_REASON, evidence_id,
        )

    domain_risk = domain_risk_service.get_or_create_domain_risk(app_id, derived_from)

    evidence_status = evidence_status_category(
        collaborators.evidence.link_status_for(evidence_id, profile_field_id)
    )
    priority = evaluation.matched_rule.priority
    score = priority_scorer.score(priority, evidence_status)
    severity = priority_scorer.severity_label(score)
    logger.debug(
        "Priority calculation: priority=%s evidence_status=%s score=%d severity=%s",
        priority.value, evidence_status, score, severity, extra=ctx,
    )

    item = RiskItem(
        app_id=app_id,
        field_key=field_key,
        profile_field_id=profile_field_id,
        triggering_evidence_id=evidence_id,
        title=f"Compliance risk: {field_key}",
        description=f"Evidence for {field_key} requires review due to {rating} rating configuration",
        priority=priority,
        evidence_status=evidence_status,
        priority_score=score,
        severity=severity,
        status=INITIAL_ITEM_STATUS,
        creation_type=CreationType.SYSTEM_AUTO_CREATION,
        raised_by=SYSTEM_ACTOR,
        opened_at=datetime.now(UTC),
        policy_requirement_snapshot=registry.compliance_snapshot(field_key, rating),
    )
    try:
        domain_risk_service.add_risk_item_to_domain(domain_risk, item)
    except IntegrityError:
        logger.info(
            "Risk item for %s created concurrently, treating as existing", field_key, extra=ctx,
        )
        return AutoRiskCreationResult.not_created(
            field_key, app_id, rating, ALREADY_EXISTS_REASON, evidence_id,
        )

    status_ledger.log_creation(
        item.id,
        evaluation.reason,
        status=item.status,
        metadata={
            "evidence_id": evidence_id,
            "profile_field_id": profile_field_id,
            "rating": rating,
            "evidence_status": evidence_status,
        },
    )

    logger.info(
        "Risk item created: field=%s priority=%s score=%d domain=%s",
        field_key, priority.value, score, domain_risk.domain,
        extra={**ctx, "risk_item_id": item.id, "domain_risk_id": domain_risk.id},
    )
    return AutoRiskCreationResult(
        created=True,
        field_key=field_key,
        app_id=app_id,
        rating=rating,
        reason=f"Auto-created risk item and added to domain risk {domain_risk.domain}",
        risk_item_id=item.id,
        assigned_arb=domain_risk.assigned_arb,
        evidence_id=evidence_id,
    )
