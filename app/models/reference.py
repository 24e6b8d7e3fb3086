"""
Risk Lifecycle Engine
Reference tables read by the default collaborator gateways.

Models:
    - Application: application master row with its rating per dimension
    - ProfileField: a policy field instantiated on an application profile
    - EvidenceFieldLink: the review status of evidence attached to a profile field

These rows are owned by the profile and evidence subsystems.  The risk
engine only reads them.
"""

import json
from datetime import UTC, datetime

from app.models import db


class Application(db.Model):
    __tablename__ = "applications"

    app_id = db.Column(db.String(100), primary_key=True)
    name = db.Column(db.String(200), nullable=False, default="")
    ratings_json = db.Column(
        db.Text, default="{}",
        comment='JSON: {"security_rating": "A1", "integrity_rating": "C2", …}',
    )
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(UTC))

    @property
    def ratings(self) -> dict:
        try:
            return json.loads(self.ratings_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    @ratings.setter
    def ratings(self, value: dict):
        self.ratings_json = json.dumps(value or {})

    def to_dict(self):
        return {"app_id": self.app_id, "name": self.name, "ratings": self.ratings}

    def __repr__(self):
        return f"<Application {self.app_id}>"


class ProfileField(db.Model):
    __tablename__ = "profile_fields"
    __table_args__ = (
        db.UniqueConstraint("app_id", "field_key", name="uq_profile_field_app_key"),
    )

    id = db.Column(db.String(100), primary_key=True)
    app_id = db.Column(db.String(100), nullable=False, index=True)
    field_key = db.Column(db.String(150), nullable=False)

    def __repr__(self):
        return f"<ProfileField {self.id}: {self.app_id}/{self.field_key}>"


class EvidenceFieldLink(db.Model):
    __tablename__ = "evidence_field_links"
    __table_args__ = (
        db.UniqueConstraint(
            "evidence_id", "profile_field_id", name="uq_evidence_field_link",
        ),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    evidence_id = db.Column(db.String(100), nullable=False, index=True)
    profile_field_id = db.Column(db.String(100), nullable=False, index=True)
    link_status = db.Column(
        db.String(30), nullable=False, default="ATTACHED",
        comment="PENDING_PO_REVIEW | PENDING_SME_REVIEW | APPROVED | REJECTED | USER_ATTESTED | ATTACHED | PENDING_REVIEW",
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    def __repr__(self):
        return f"<EvidenceFieldLink {self.evidence_id}→{self.profile_field_id}: {self.link_status}>"
