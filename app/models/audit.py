"""
Risk Lifecycle Engine
Audit domain models.

Models:
    - RiskItemStatusHistory: append-only trail of every risk item status transition
    - RiskItemAssignmentHistory: append-only trail of assignment changes
"""

import json
from datetime import UTC, datetime

from app.models import db
from app.models.risk import ActorRole, AssignmentType

# ── Local coercion ───────────────────────────────────────────────────────────

def _enum_value(value):
    if value is None:
        return None
    return getattr(value, "value", value)


def _utcnow():
    return datetime.now(UTC)


class RiskItemStatusHistory(db.Model):
    """
    Immutable status trail for a risk item.

    One row per transition; ``from_status`` is NULL only on the creation
    entry.  Rows are never updated or deleted, and are read back in
    (changed_at, id) order.
    """

    __tablename__ = "risk_item_status_history"
    __table_args__ = (
        db.Index("idx_status_history_item_ts", "risk_item_id", "changed_at"),
        db.Index("idx_status_history_actor", "changed_by"),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    risk_item_id = db.Column(
        db.String(36),
        db.ForeignKey("risk_items.id"),
        nullable=False,
    )

    from_status = db.Column(db.String(30), nullable=True)
    to_status = db.Column(db.String(30), nullable=False)
    resolution = db.Column(
        db.String(60), nullable=True,
        comment="SME_APPROVED | SME_REJECTED | PO_SELF_ATTESTED | SYSTEM_AUTO_CREATED | …",
    )
    resolution_comment = db.Column(db.Text, nullable=True)

    changed_by = db.Column(db.String(150), nullable=False, default="SYSTEM")
    actor_role = db.Column(db.String(20), nullable=False, default=ActorRole.SYSTEM.value)
    mitigation_plan = db.Column(db.Text, nullable=True)
    reassigned_to = db.Column(db.String(150), nullable=True)

    changed_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    metadata_json = db.Column(db.Text, nullable=True)

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def extra(self) -> dict:
        """Deserialise *metadata_json* to a Python dict."""
        try:
            return json.loads(self.metadata_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "risk_item_id": self.risk_item_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "resolution": self.resolution,
            "resolution_comment": self.resolution_comment,
            "changed_by": self.changed_by,
            "actor_role": self.actor_role,
            "mitigation_plan": self.mitigation_plan,
            "reassigned_to": self.reassigned_to,
            "changed_at": self.changed_at.isoformat() if self.changed_at else None,
            "metadata": self.extra if self.metadata_json else None,
        }

    def __repr__(self):
        return f"<StatusHistory {self.id}: {self.risk_item_id} {self.from_status}→{self.to_status}>"


class RiskItemAssignmentHistory(db.Model):
    """Immutable assignment trail for a risk item."""

    __tablename__ = "risk_item_assignment_history"
    __table_args__ = (
        db.Index("idx_assignment_history_item_ts", "risk_item_id", "assigned_at"),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    risk_item_id = db.Column(
        db.String(36),
        db.ForeignKey("risk_items.id"),
        nullable=False,
    )
    assigned_from = db.Column(db.String(150), nullable=True)
    assigned_to = db.Column(db.String(150), nullable=True)
    assigned_by = db.Column(db.String(150), nullable=False)
    assignment_type = db.Column(db.String(20), nullable=False)
    reason = db.Column(db.Text, nullable=True)
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "risk_item_id": self.risk_item_id,
            "assigned_from": self.assigned_from,
            "assigned_to": self.assigned_to,
            "assigned_by": self.assigned_by,
            "assignment_type": self.assignment_type,
            "reason": self.reason,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
        }

    def __repr__(self):
        return f"<AssignmentHistory {self.id}: {self.risk_item_id} {self.assignment_type}>"


# ── Convenience writers ──────────────────────────────────────────────────────

def write_status_history(
    *,
    risk_item_id: str,
    from_status,
    to_status,
    resolution: str | None = None,
    resolution_comment: str | None = None,
    changed_by: str = "SYSTEM",
    actor_role=ActorRole.SYSTEM,
    mitigation_plan: str | None = None,
    reassigned_to: str | None = None,
    metadata: dict | None = None,
) -> RiskItemStatusHistory:
    """
    Append a single status-history row.  Uses ``flush`` so callers keep
    transaction control.
    """
    entry = RiskItemStatusHistory(
        risk_item_id=str(risk_item_id),
        from_status=_enum_value(from_status),
        to_status=_enum_value(to_status),
        resolution=resolution,
        resolution_comment=resolution_comment,
        changed_by=changed_by or "SYSTEM",
        actor_role=_enum_value(actor_role) or ActorRole.SYSTEM.value,
        mitigation_plan=mitigation_plan,
        reassigned_to=reassigned_to,
        metadata_json=json.dumps(metadata, default=str) if metadata else None,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def write_assignment_history(
    *,
    risk_item_id: str,
    assignment_type: AssignmentType,
    assigned_by: str,
    assigned_from: str | None = None,
    assigned_to: str | None = None,
    reason: str | None = None,
) -> RiskItemAssignmentHistory:
    """Append a single assignment-history row (flush only)."""
    entry = RiskItemAssignmentHistory(
        risk_item_id=str(risk_item_id),
        assigned_from=assigned_from,
        assigned_to=assigned_to,
        assigned_by=assigned_by,
        assignment_type=_enum_value(assignment_type),
        reason=reason,
    )
    db.session.add(entry)
    db.session.flush()
    return entry
