"""
Risk Lifecycle Engine
Discussion thread on risk items.

Models:
    - RiskItemComment: a typed comment; internal ones are ARB/SME notes
      hidden from the public listing
"""

import uuid
from datetime import UTC, datetime

from app.models import db
from app.models.risk import RiskCommentType, _enum_column, _iso


def _comment_id():
    return f"comment_{uuid.uuid4()}"


def _utcnow():
    return datetime.now(UTC)


class RiskItemComment(db.Model):
    __tablename__ = "risk_item_comments"
    __table_args__ = (
        db.Index("idx_risk_comment_item_ts", "risk_item_id", "commented_at"),
    )

    id = db.Column(db.String(60), primary_key=True, default=_comment_id)
    risk_item_id = db.Column(
        db.String(36), db.ForeignKey("risk_items.id"), nullable=False,
    )
    comment_type = _enum_column(RiskCommentType, nullable=False, default=RiskCommentType.GENERAL)
    comment_text = db.Column(db.Text, nullable=False)
    commented_by = db.Column(db.String(150), nullable=False)
    commented_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    is_internal = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "risk_item_id": self.risk_item_id,
            "comment_type": self.comment_type.value if self.comment_type else None,
            "comment_text": self.comment_text,
            "commented_by": self.commented_by,
            "commented_at": _iso(self.commented_at),
            "is_internal": bool(self.is_internal),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<RiskItemComment {self.id}: {self.risk_item_id} {self.comment_type}>"
