"""
Risk Lifecycle Engine
Risk domain models.

Models:
    - RiskItem: an individual compliance gap raised against a profile field
    - DomainRisk: the per (application, domain) aggregate of risk items

Architecture chain: Application → DomainRisk → RiskItem → status/assignment history

DomainRisk counters and scores are a materialized view over its RiskItem rows.
They are written only by ``domain_risk_service.recalculate_aggregations``.
"""

import uuid
from datetime import UTC, datetime
from enum import Enum

from app.models import db


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(UTC)


# ── Enumerations ─────────────────────────────────────────────────────────────


class RiskPriority(str, Enum):
    """Registry-assigned priority of a risk item, each with a fixed base score."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def base_score(self) -> int:
        return _PRIORITY_BASE_SCORES[self]

    @classmethod
    def parse(cls, value) -> "RiskPriority":
        """Parse a registry/API priority string; blank or unknown → LOW."""
        if isinstance(value, cls):
            return value
        if not value:
            return cls.LOW
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return cls.LOW


_PRIORITY_BASE_SCORES = {
    RiskPriority.CRITICAL: 40,
    RiskPriority.HIGH: 30,
    RiskPriority.MEDIUM: 20,
    RiskPriority.LOW: 10,
}

HIGH_PRIORITIES = (RiskPriority.CRITICAL, RiskPriority.HIGH)


class RiskItemStatus(str, Enum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    PENDING_REVIEW = "PENDING_REVIEW"
    UNDER_SME_REVIEW = "UNDER_SME_REVIEW"
    SME_APPROVED = "SME_APPROVED"
    AWAITING_REMEDIATION = "AWAITING_REMEDIATION"
    ESCALATED = "ESCALATED"
    IN_REMEDIATION = "IN_REMEDIATION"
    REMEDIATED = "REMEDIATED"
    SELF_ATTESTED = "SELF_ATTESTED"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"

    def is_terminal(self) -> bool:
        return self in TERMINAL_ITEM_STATUSES

    def is_open(self) -> bool:
        """Open items are the ones counted by the domain aggregate."""
        return self in OPEN_ITEM_STATUSES

    def can_transition_to(self, target: "RiskItemStatus") -> bool:
        return target in RISK_ITEM_TRANSITIONS.get(self, ())


TERMINAL_ITEM_STATUSES = frozenset({RiskItemStatus.RESOLVED, RiskItemStatus.CLOSED})
OPEN_ITEM_STATUSES = frozenset({RiskItemStatus.OPEN, RiskItemStatus.IN_PROGRESS})

# Every item creation path starts here.
INITIAL_ITEM_STATUS = RiskItemStatus.OPEN

_S = RiskItemStatus

RISK_ITEM_TRANSITIONS = {
    _S.OPEN: (_S.IN_PROGRESS, _S.PENDING_REVIEW, _S.SELF_ATTESTED, _S.RESOLVED, _S.CLOSED),
    _S.IN_PROGRESS: (_S.OPEN, _S.PENDING_REVIEW, _S.SELF_ATTESTED, _S.RESOLVED, _S.CLOSED),
    _S.PENDING_REVIEW: (
        _S.PENDING_REVIEW,  # reassigned to another reviewer
        _S.UNDER_SME_REVIEW, _S.SME_APPROVED, _S.AWAITING_REMEDIATION, _S.ESCALATED,
        _S.SELF_ATTESTED, _S.RESOLVED, _S.CLOSED,
    ),
    _S.UNDER_SME_REVIEW: (
        _S.PENDING_REVIEW, _S.SME_APPROVED, _S.AWAITING_REMEDIATION, _S.ESCALATED,
        _S.RESOLVED, _S.CLOSED,
    ),
    _S.ESCALATED: (
        _S.PENDING_REVIEW, _S.UNDER_SME_REVIEW, _S.SME_APPROVED, _S.AWAITING_REMEDIATION,
        _S.RESOLVED, _S.CLOSED,
    ),
    _S.SME_APPROVED: (_S.RESOLVED, _S.CLOSED),
    _S.AWAITING_REMEDIATION: (
        _S.IN_REMEDIATION, _S.PENDING_REVIEW, _S.SELF_ATTESTED, _S.RESOLVED, _S.CLOSED,
    ),
    _S.IN_REMEDIATION: (_S.REMEDIATED, _S.RESOLVED, _S.CLOSED),
    _S.REMEDIATED: (_S.PENDING_REVIEW, _S.RESOLVED, _S.CLOSED),
    _S.SELF_ATTESTED: (_S.PENDING_REVIEW, _S.RESOLVED, _S.CLOSED),
    _S.RESOLVED: (),
    _S.CLOSED: (),
}

del _S


class DomainRiskStatus(str, Enum):
    PENDING_ARB_REVIEW = "PENDING_ARB_REVIEW"
    UNDER_ARB_REVIEW = "UNDER_ARB_REVIEW"
    AWAITING_REMEDIATION = "AWAITING_REMEDIATION"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"

    def is_terminal(self) -> bool:
        return self in (DomainRiskStatus.RESOLVED, DomainRiskStatus.CLOSED)


ACTIVE_DOMAIN_STATUSES = (
    DomainRiskStatus.PENDING_ARB_REVIEW,
    DomainRiskStatus.UNDER_ARB_REVIEW,
    DomainRiskStatus.AWAITING_REMEDIATION,
    DomainRiskStatus.IN_PROGRESS,
)


class CreationType(str, Enum):
    SYSTEM_AUTO_CREATION = "SYSTEM_AUTO_CREATION"
    MANUAL = "MANUAL"


class AssignmentType(str, Enum):
    SELF_ASSIGN = "SELF_ASSIGN"
    MANUAL_ASSIGN = "MANUAL_ASSIGN"
    UNASSIGN = "UNASSIGN"


class RiskCommentType(str, Enum):
    GENERAL = "GENERAL"
    STATUS_CHANGE = "STATUS_CHANGE"
    REVIEW = "REVIEW"
    RESOLUTION = "RESOLUTION"


class ActorRole(str, Enum):
    SME = "SME"
    PO = "PO"
    SYSTEM = "SYSTEM"
    ADMIN = "ADMIN"


SYSTEM_ACTOR = "SYSTEM_AUTO_CREATION"


def _enum_column(enum_cls, **kwargs):
    """VARCHAR-backed enum column (no native DB enum type)."""
    return db.Column(
        db.Enum(enum_cls, native_enum=False, length=30, validate_strings=True),
        **kwargs,
    )


def _iso(value):
    return value.isoformat() if value else None


# ═══════════════════════════════════════════════════════════════════════════
#  DOMAIN RISK
# ═══════════════════════════════════════════════════════════════════════════


class DomainRisk(db.Model):
    """
    Aggregate of every risk item for one application within one domain.

    One row per (app_id, domain). Routed to an ARB at creation and
    reassignable afterwards without touching status.
    """

    __tablename__ = "domain_risks"
    __table_args__ = (
        db.UniqueConstraint("app_id", "domain", name="uq_domain_risk_app_domain"),
        db.Index("idx_domain_risk_arb_status", "assigned_arb", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    app_id = db.Column(db.String(100), nullable=False, index=True)
    domain = db.Column(db.String(100), nullable=False, comment="derived_from minus the _rating suffix")
    derived_from = db.Column(db.String(100), nullable=True, comment="security_rating | integrity_rating | …")
    arb = db.Column(db.String(100), nullable=False, comment="ARB resolved at creation")
    assigned_arb = db.Column(db.String(100), nullable=False, comment="Current owning ARB")
    status = _enum_column(DomainRiskStatus, nullable=False, default=DomainRiskStatus.PENDING_ARB_REVIEW)

    title = db.Column(db.String(300), nullable=False, default="")
    description = db.Column(db.Text, default="")

    # Materialized aggregate (recalculate_aggregations only)
    total_items = db.Column(db.Integer, nullable=False, default=0)
    open_items = db.Column(db.Integer, nullable=False, default=0)
    high_priority_items = db.Column(db.Integer, nullable=False, default=0)
    priority_score = db.Column(db.Integer, nullable=False, default=0)
    overall_priority = db.Column(db.String(20), nullable=True)
    overall_severity = db.Column(db.String(20), nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_item_added_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    items = db.relationship(
        "RiskItem", back_populates="domain_risk", lazy="dynamic",
        order_by="RiskItem.priority_score.desc()",
    )

    __mapper_args__ = {"version_id_col": version}

    def to_dict(self):
        return {
            "id": self.id,
            "app_id": self.app_id,
            "domain": self.domain,
            "derived_from": self.derived_from,
            "arb": self.arb,
            "assigned_arb": self.assigned_arb,
            "status": self.status.value if self.status else None,
            "title": self.title,
            "description": self.description,
            "total_items": self.total_items,
            "open_items": self.open_items,
            "high_priority_items": self.high_priority_items,
            "priority_score": self.priority_score,
            "overall_priority": self.overall_priority,
            "overall_severity": self.overall_severity,
            "opened_at": _iso(self.opened_at),
            "assigned_at": _iso(self.assigned_at),
            "last_item_added_at": _iso(self.last_item_added_at),
            "closed_at": _iso(self.closed_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<DomainRisk {self.app_id}/{self.domain}: {self.status}>"


# ═══════════════════════════════════════════════════════════════════════════
#  RISK ITEM
# ═══════════════════════════════════════════════════════════════════════════


class RiskItem(db.Model):
    """
    A single tracked compliance gap.

    At most one row per (app_id, field_key, triggering_evidence_id); the
    unique constraint is the deduplication guard for concurrent evaluations.
    Never deleted: RESOLVED and CLOSED are the logical end of life.
    """

    __tablename__ = "risk_items"
    __table_args__ = (
        db.UniqueConstraint(
            "app_id", "field_key", "triggering_evidence_id",
            name="uq_risk_item_app_field_evidence",
        ),
        db.Index("idx_risk_item_app_status", "app_id", "status"),
        db.Index("idx_risk_item_domain_status", "domain_risk_id", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    app_id = db.Column(db.String(100), nullable=False, index=True)
    domain_risk_id = db.Column(
        db.String(36), db.ForeignKey("domain_risks.id"), nullable=False, index=True,
    )
    field_key = db.Column(db.String(150), nullable=False, index=True)
    profile_field_id = db.Column(db.String(100), nullable=True)
    triggering_evidence_id = db.Column(
        db.String(100), nullable=True, index=True,
        comment="NULL for manually raised items",
    )

    # Denormalized from the owning DomainRisk
    domain = db.Column(db.String(100), nullable=True)
    arb = db.Column(db.String(100), nullable=True)

    title = db.Column(db.String(500), nullable=False, default="")
    description = db.Column(db.Text, default="")

    priority = _enum_column(RiskPriority, nullable=False, default=RiskPriority.LOW)
    evidence_status = db.Column(db.String(50), nullable=True)
    priority_score = db.Column(db.Integer, nullable=False, default=0, comment="0-100")
    severity = db.Column(db.String(20), nullable=True, comment="low/medium/high/critical")

    status = _enum_column(RiskItemStatus, nullable=False, default=INITIAL_ITEM_STATUS, index=True)
    creation_type = _enum_column(CreationType, nullable=False, default=CreationType.SYSTEM_AUTO_CREATION)
    raised_by = db.Column(db.String(150), nullable=False, default=SYSTEM_ACTOR)

    assigned_to = db.Column(db.String(150), nullable=True, index=True)
    assigned_by = db.Column(db.String(150), nullable=True)
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolution = db.Column(db.String(60), nullable=True)
    resolution_comment = db.Column(db.Text, nullable=True)

    policy_requirement_snapshot = db.Column(
        db.Text, nullable=True,
        comment="Registry requirement captured at creation (immutable)",
    )

    # Narrative of a manually raised risk
    hypothesis = db.Column(db.Text, nullable=True)
    condition = db.Column(db.Text, nullable=True)
    consequence = db.Column(db.Text, nullable=True)
    control_refs = db.Column(db.Text, nullable=True, comment="Comma-separated control ids")

    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    domain_risk = db.relationship("DomainRisk", back_populates="items")

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_terminal(self) -> bool:
        return self.status is not None and self.status.is_terminal()

    def to_dict(self):
        return {
            "id": self.id,
            "app_id": self.app_id,
            "domain_risk_id": self.domain_risk_id,
            "domain": self.domain,
            "arb": self.arb,
            "field_key": self.field_key,
            "profile_field_id": self.profile_field_id,
            "triggering_evidence_id": self.triggering_evidence_id,
            "title": self.title,
            "description": self.description,
            "priority": self.priority.value if self.priority else None,
            "evidence_status": self.evidence_status,
            "priority_score": self.priority_score,
            "severity": self.severity,
            "status": self.status.value if self.status else None,
            "creation_type": self.creation_type.value if self.creation_type else None,
            "raised_by": self.raised_by,
            "assigned_to": self.assigned_to,
            "assigned_by": self.assigned_by,
            "assigned_at": _iso(self.assigned_at),
            "opened_at": _iso(self.opened_at),
            "resolved_at": _iso(self.resolved_at),
            "resolution": self.resolution,
            "resolution_comment": self.resolution_comment,
            "policy_requirement_snapshot": self.policy_requirement_snapshot,
            "hypothesis": self.hypothesis,
            "condition": self.condition,
            "consequence": self.consequence,
            "control_refs": self.control_refs,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<RiskItem {self.id}: {self.app_id}/{self.field_key} {self.status}>"
