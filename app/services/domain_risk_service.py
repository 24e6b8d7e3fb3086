"""
Domain Risk Aggregation Service

Owns DomainRisk aggregates and every risk item status change:
  - Lazy get-or-create of the (app, domain) aggregate, routed to an ARB
  - Attaching risk items to their aggregate
  - Full recompute of the aggregate counters, score and status
  - Validated risk item status transitions (single item and bulk)
  - Manual risk creation and ARB reassignment
  - Read accessors for items and aggregates

Aggregate counters are a materialized view: ``recalculate_aggregations`` is
the only writer and always recomputes from the full item set.

Domain risk status is driven by the recompute alone:
    open items → 0 (with history)  ⇒ RESOLVED
    new open item on RESOLVED      ⇒ IN_PROGRESS

Service functions flush but never commit; the caller owns the transaction.

Usage:
    from app.services import domain_risk_service as drs

    domain_risk = drs.get_or_create_domain_risk("APP-1", "security_rating")
    item = drs.update_risk_item_status(item_id, "RESOLVED", "FIXED", "Patched", changed_by="sme-1")
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy.exc import IntegrityError

from app.core.exceptions import (
    ConfigurationError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from app.integrations.risk_collaborators import get_collaborators
from app.models import db
from app.models.risk import (
    HIGH_PRIORITIES,
    INITIAL_ITEM_STATUS,
    ActorRole,
    CreationType,
    DomainRisk,
    DomainRiskStatus,
    RiskItem,
    RiskItemStatus,
    RiskPriority,
)
from app.services import arb_routing, priority_scorer, status_ledger
from app.services.registry_service import get_registry

logger = logging.getLogger(__name__)

MANUAL_EVIDENCE_STATUS = "approved"


def _now():
    return datetime.now(UTC)


def parse_item_status(value) -> RiskItemStatus:
    """Coerce an API/status string to RiskItemStatus or raise ValidationError."""
    if isinstance(value, RiskItemStatus):
        return value
    if not value:
        raise ValidationError("status is required", details={"status": "required"})
    try:
        return RiskItemStatus(str(value).strip().upper())
    except ValueError:
        raise ValidationError(
            f"Unknown risk item status: {value}",
            details={"status": f"must be one of {[s.value for s in RiskItemStatus]}"},
        ) from None


def parse_domain_statuses(values) -> list[DomainRiskStatus]:
    result = []
    for raw in values or []:
        try:
            result.append(DomainRiskStatus(str(raw).strip().upper()))
        except ValueError:
            raise ValidationError(f"Unknown domain risk status: {raw}") from None
    return result


# ═════════════════════════════════════════════════════════════════════════════
# Loading
# ═════════════════════════════════════════════════════════════════════════════

def get_domain_risk(domain_risk_id: str, *, for_update: bool = False) -> DomainRisk:
    q = DomainRisk.query.filter_by(id=domain_risk_id)
    if for_update:
        q = q.with_for_update()
    domain_risk = q.first()
    if domain_risk is None:
        raise NotFoundError(resource="DomainRisk", resource_id=domain_risk_id)
    return domain_risk


def get_risk_item(risk_item_id: str, *, for_update: bool = False) -> RiskItem:
    q = RiskItem.query.filter_by(id=risk_item_id)
    if for_update:
        q = q.with_for_update()
    item = q.first()
    if item is None:
        raise NotFoundError(resource="RiskItem", resource_id=risk_item_id)
    return item


def _find_domain_risk(app_id: str, domain: str, *, for_update: bool = False):
    q = DomainRisk.query.filter_by(app_id=app_id, domain=domain)
    if for_update:
        q = q.with_for_update()
    return q.first()


# ═════════════════════════════════════════════════════════════════════════════
# Aggregate lifecycle
# ═════════════════════════════════════════════════════════════════════════════

def _domain_title(domain: str) -> str:
    return f"{domain[:1].upper()}{domain[1:]} Domain Risks"


def _domain_description(domain: str, derived_from: str | None) -> str:
    return (
        f"Aggregated {domain} risks derived from {derived_from} assessment. "
        "Review and remediate individual risk items to improve overall compliance posture."
    )


def get_or_create_domain_risk(app_id: str, derived_from: str | None) -> DomainRisk:
    """
    Return the aggregate for (app, domain of ``derived_from``), creating it
    on first use.  Concurrent creators race on the (app_id, domain) unique
    constraint; the loser re-reads the winner's row.
    """
    domain = arb_routing.domain_for(derived_from)
    existing = _find_domain_risk(app_id, domain, for_update=True)
    if existing is not None:
        return existing

    arb = arb_routing.arb_for_derived_from(derived_from)
    now = _now()
    domain_risk = DomainRisk(
        app_id=app_id,
        domain=domain,
        derived_from=derived_from,
        arb=arb,
        assigned_arb=arb,
        status=DomainRiskStatus.PENDING_ARB_REVIEW,
        title=_domain_title(domain),
        description=_domain_description(domain, derived_from),
        total_items=0,
        open_items=0,
        high_priority_items=0,
        priority_score=0,
        opened_at=now,
        assigned_at=now,
    )
    try:
        with db.session.begin_nested():
            db.session.add(domain_risk)
    except IntegrityError:
        winner = _find_domain_risk(app_id, domain, for_update=True)
        if winner is None:
            raise
        logger.info(
            "Domain risk for %s/%s created concurrently, using existing row",
            app_id, domain, extra={"app_id": app_id, "domain_risk_id": winner.id},
        )
        return winner

    logger.info(
        "Created domain risk %s/%s routed to %s",
        app_id, domain, arb,
        extra={"app_id": app_id, "domain_risk_id": domain_risk.id, "arb": arb},
    )
    return domain_risk


def add_risk_item_to_domain(domain_risk: DomainRisk, risk_item: RiskItem) -> RiskItem:
    """
    Attach a new item to its aggregate, persist it and recompute.

    The insert runs in a SAVEPOINT.  An IntegrityError (duplicate
    app/field/evidence triple) propagates with the savepoint rolled back
    and the outer transaction intact.
    """
    risk_item.domain_risk_id = domain_risk.id
    risk_item.domain = domain_risk.domain
    risk_item.arb = domain_risk.assigned_arb
    with db.session.begin_nested():
        db.session.add(risk_item)

    domain_risk.last_item_added_at = _now()
    recalculate_aggregations(domain_risk)

    logger.info(
        "Added risk item %s to domain risk %s", risk_item.id, domain_risk.domain,
        extra={
            "app_id": domain_risk.app_id,
            "risk_item_id": risk_item.id,
            "domain_risk_id": domain_risk.id,
        },
    )
    return risk_item


def recalculate_aggregations(domain_risk: DomainRisk) -> DomainRisk:
    """
    Recompute every derived field of ``domain_risk`` from its current items.

    Pure over the item snapshot: a second call with no item changes in
    between is a no-op.  The aggregate row is locked first so concurrent
    recomputes on the same domain risk serialize.
    """
    db.session.flush()
    db.session.refresh(domain_risk, with_for_update=True)

    items = RiskItem.query.filter_by(domain_risk_id=domain_risk.id).all()
    open_items = [i for i in items if i.status is not None and i.status.is_open()]
    high_priority = sum(1 for i in open_items if i.priority in HIGH_PRIORITIES)
    max_score = max((i.priority_score or 0 for i in open_items), default=0)
    score = priority_scorer.domain_score(max_score, high_priority, len(open_items))

    domain_risk.total_items = len(items)
    domain_risk.open_items = len(open_items)
    domain_risk.high_priority_items = high_priority
    domain_risk.priority_score = score
    domain_risk.overall_priority = priority_scorer.priority_from_score(score).value
    domain_risk.overall_severity = priority_scorer.severity_label(score)

    previous = domain_risk.status
    if not open_items and items and not previous.is_terminal():
        domain_risk.status = DomainRiskStatus.RESOLVED
        domain_risk.closed_at = _now()
    elif open_items and previous == DomainRiskStatus.RESOLVED:
        domain_risk.status = DomainRiskStatus.IN_PROGRESS
        domain_risk.closed_at = None

    if domain_risk.status != previous:
        logger.info(
            "Domain risk %s/%s status %s → %s",
            domain_risk.app_id, domain_risk.domain, previous.value, domain_risk.status.value,
            extra={"app_id": domain_risk.app_id, "domain_risk_id": domain_risk.id},
        )

    db.session.flush()
    logger.debug(
        "Recalculated domain risk: total=%d open=%d high=%d score=%d",
        domain_risk.total_items, domain_risk.open_items,
        domain_risk.high_priority_items, domain_risk.priority_score,
        extra={"domain_risk_id": domain_risk.id},
    )
    return domain_risk


def recalculate_by_id(domain_risk_id: str) -> DomainRisk:
    return recalculate_aggregations(get_domain_risk(domain_risk_id, for_update=True))


def reassign_domain_risk(domain_risk_id: str, new_arb: str, assigned_by: str) -> DomainRisk:
    """Move the aggregate to another ARB; status and counters are untouched."""
    if not new_arb or not str(new_arb).strip():
        raise ValidationError("assigned_arb is required", details={"assigned_arb": "required"})
    domain_risk = get_domain_risk(domain_risk_id, for_update=True)
    old_arb = domain_risk.assigned_arb
    domain_risk.assigned_arb = str(new_arb).strip()
    domain_risk.assigned_at = _now()
    db.session.flush()
    logger.info(
        "Reassigned domain risk from %s to %s by %s", old_arb, domain_risk.assigned_arb, assigned_by,
        extra={"domain_risk_id": domain_risk.id, "arb": domain_risk.assigned_arb},
    )
    return domain_risk


# ═════════════════════════════════════════════════════════════════════════════
# Risk item transitions
# ═════════════════════════════════════════════════════════════════════════════

def transition_risk_item(
    item: RiskItem,
    target: RiskItemStatus,
    *,
    resolution: str | None = None,
    comment: str | None = None,
    changed_by: str = "SYSTEM",
    actor_role=ActorRole.SYSTEM,
    record=None,
    recalculate: bool = True,
) -> RiskItem:
    """
    Move ``item`` to ``target`` after checking the transition table.

    Writes exactly one status history row, through ``record(item_id,
    from_status)`` when given, and recomputes the owning aggregate.
    Terminal targets stamp resolved_at / resolution / resolution_comment.
    """
    current = item.status
    if current.is_terminal():
        raise InvalidStateError(
            f"Risk item {item.id} is {current.value} and can no longer change status",
            current_state=current.value,
        )
    if not current.can_transition_to(target):
        raise InvalidStateError(
            f"Cannot move risk item {item.id} from {current.value} to {target.value}",
            current_state=current.value,
        )

    item.status = target
    if target.is_terminal():
        item.resolved_at = _now()
        item.resolution = resolution or target.value
        item.resolution_comment = comment
    db.session.flush()

    if record is not None:
        record(item.id, current)
    else:
        status_ledger.log_transition(
            item.id, current, target,
            resolution=resolution, comment=comment,
            changed_by=changed_by, actor_role=actor_role,
        )

    logger.info(
        "Risk item %s → %s by %s", current.value, target.value, changed_by,
        extra={"risk_item_id": item.id, "app_id": item.app_id},
    )
    if recalculate:
        recalculate_aggregations(item.domain_risk)
    return item


def update_risk_item_status(
    risk_item_id: str,
    new_status,
    resolution: str | None = None,
    comment: str | None = None,
    *,
    changed_by: str = "SYSTEM",
    actor_role=ActorRole.SYSTEM,
) -> RiskItem:
    """Generic status change (resolve, close, remediation steps, …)."""
    target = parse_item_status(new_status)
    item = get_risk_item(risk_item_id, for_update=True)
    if item.status == target:
        raise InvalidStateError(
            f"Risk item {item.id} is already {target.value}", current_state=target.value,
        )
    return transition_risk_item(
        item, target,
        resolution=resolution, comment=comment,
        changed_by=changed_by, actor_role=actor_role,
    )


@dataclass
class BulkUpdateResult:
    successful_ids: list[str] = field(default_factory=list)
    failures: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "successful_ids": self.successful_ids,
            "failures": self.failures,
            "updated": len(self.successful_ids),
            "failed": len(self.failures),
        }


def bulk_update_risk_item_status(
    risk_item_ids: list[str],
    new_status,
    resolution: str | None = None,
    comment: str | None = None,
    *,
    changed_by: str = "SYSTEM",
    actor_role=ActorRole.SYSTEM,
) -> BulkUpdateResult:
    """
    Apply one status change to many items.  Each item runs in its own
    SAVEPOINT; a rejected item is reported in ``failures`` and leaves no
    trace, the others still apply.
    """
    target = parse_item_status(new_status)
    result = BulkUpdateResult()
    for risk_item_id in dict.fromkeys(risk_item_ids or []):
        try:
            with db.session.begin_nested():
                update_risk_item_status(
                    risk_item_id, target, resolution, comment,
                    changed_by=changed_by, actor_role=actor_role,
                )
            result.successful_ids.append(risk_item_id)
        except NotFoundError:
            logger.warning("Risk item not found in bulk update: %s", risk_item_id)
            result.failures.append({"risk_item_id": risk_item_id, "reason": "Risk item not found"})
        except (InvalidStateError, ValidationError) as exc:
            logger.warning("Bulk update rejected for %s: %s", risk_item_id, exc)
            result.failures.append({"risk_item_id": risk_item_id, "reason": str(exc)})

    logger.info(
        "Bulk updated %d of %d risk items to %s",
        len(result.successful_ids), len(risk_item_ids or []), target.value,
    )
    return result


# ═════════════════════════════════════════════════════════════════════════════
# Manual creation
# ═════════════════════════════════════════════════════════════════════════════

def _join_control_refs(refs):
    if not refs:
        return None
    if isinstance(refs, str):
        refs = refs.split(",")
    cleaned = [str(r).strip() for r in refs if str(r).strip()]
    return ",".join(cleaned) or None


def create_manual_risk(
    app_id: str,
    field_key: str,
    *,
    title: str,
    description: str = "",
    priority=RiskPriority.MEDIUM,
    created_by: str,
    profile_field_id: str | None = None,
    evidence_id: str | None = None,
    derived_from: str | None = None,
    hypothesis: str | None = None,
    condition: str | None = None,
    consequence: str | None = None,
    control_refs=None,
    actor_role=ActorRole.SME,
) -> RiskItem:
    """
    Raise a risk item by hand.  Scored as if evidence were approved, so
    only the base priority drives the score.

    ``control_refs`` may be a list of control ids or a comma-separated
    string; it is stored comma-separated.
    """
    errors = {}
    if not app_id:
        errors["app_id"] = "required"
    if not field_key:
        errors["field_key"] = "required"
    if not title or not str(title).strip():
        errors["title"] = "required"
    if not created_by:
        errors["created_by"] = "required"
    if errors:
        raise ValidationError("Missing required fields for manual risk", details=errors)

    registry = get_registry()
    derived_from = derived_from or registry.derived_from_for_field(field_key)
    if not derived_from:
        logger.error(
            "No registry entry (derived_from) for field %s", field_key,
            extra={"app_id": app_id, "field_key": field_key},
        )
        raise ConfigurationError(f"Field {field_key} has no derived_from in the profile field registry")

    rating = get_collaborators().applications.rating_for(app_id, derived_from)
    priority = RiskPriority.parse(priority)
    score = priority_scorer.score(priority, MANUAL_EVIDENCE_STATUS)

    domain_risk = get_or_create_domain_risk(app_id, derived_from)
    item = RiskItem(
        app_id=app_id,
        field_key=field_key,
        profile_field_id=profile_field_id,
        triggering_evidence_id=evidence_id,
        title=str(title).strip(),
        description=description or "",
        priority=priority,
        evidence_status=MANUAL_EVIDENCE_STATUS,
        priority_score=score,
        severity=priority_scorer.severity_label(score),
        status=INITIAL_ITEM_STATUS,
        creation_type=CreationType.MANUAL,
        raised_by=created_by,
        opened_at=_now(),
        policy_requirement_snapshot=registry.compliance_snapshot(field_key, rating),
        hypothesis=hypothesis,
        condition=condition,
        consequence=consequence,
        control_refs=_join_control_refs(control_refs),
    )
    try:
        add_risk_item_to_domain(domain_risk, item)
    except IntegrityError:
        raise ConflictError(
            "RiskItem", "triggering_evidence_id", evidence_id,
            message=f"Risk item already exists for evidence {evidence_id} and field {field_key}",
        ) from None

    status_ledger.log_creation(
        item.id, f"Manually raised by {created_by}",
        status=item.status, changed_by=created_by, actor_role=actor_role,
        resolution=status_ledger.MANUALLY_CREATED,
    )
    logger.info(
        "Manually created risk item by %s", created_by,
        extra={"app_id": app_id, "risk_item_id": item.id, "domain_risk_id": domain_risk.id},
    )
    return item


# ═════════════════════════════════════════════════════════════════════════════
# Read accessors
# ═════════════════════════════════════════════════════════════════════════════

def _by_score(q):
    return q.order_by(RiskItem.priority_score.desc(), RiskItem.opened_at.asc())


def get_items_for_app(app_id: str, status=None) -> list[RiskItem]:
    q = RiskItem.query.filter_by(app_id=app_id)
    if status:
        q = q.filter(RiskItem.status == parse_item_status(status))
    return _by_score(q).all()


def get_items_for_domain_risk(domain_risk_id: str) -> list[RiskItem]:
    get_domain_risk(domain_risk_id)
    return _by_score(RiskItem.query.filter_by(domain_risk_id=domain_risk_id)).all()


def get_items_for_field(field_key: str) -> list[RiskItem]:
    return _by_score(RiskItem.query.filter_by(field_key=field_key)).all()


def get_items_for_evidence(evidence_id: str) -> list[RiskItem]:
    return _by_score(RiskItem.query.filter_by(triggering_evidence_id=evidence_id)).all()


def get_domain_risks_for_app(app_id: str) -> list[DomainRisk]:
    return (
        DomainRisk.query.filter_by(app_id=app_id)
        .order_by(DomainRisk.priority_score.desc(), DomainRisk.domain.asc())
        .all()
    )


def get_domain_risks_for_arb(arb: str, statuses=None) -> list[DomainRisk]:
    q = DomainRisk.query.filter_by(assigned_arb=arb)
    if statuses:
        q = q.filter(DomainRisk.status.in_(parse_domain_statuses(statuses)))
    return q.order_by(DomainRisk.priority_score.desc(), DomainRisk.opened_at.asc()).all()
