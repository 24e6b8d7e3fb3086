"""Collaborator gateways consumed by the risk engine.

The engine never reads profile, evidence or application data directly; it
goes through the gateways below:

  ProfileGateway      — profile field id → field key, field key → rating dimension
  EvidenceGateway     — review status of evidence linked to a profile field
  ApplicationGateway  — an application's rating on a dimension

The ``Db*`` implementations read the reference tables in
``app.models.reference`` and the profile field registry.  They are bundled
into a ``RiskCollaborators`` instance stored in
``app.extensions["risk_collaborators"]`` by ``init_risk_collaborators``;
deployments (and tests) install their own by passing ``collaborators=``.

All lookups are synchronous and on the request path.  A failure raised here
aborts the whole operation.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from flask import Flask, current_app

from app.core.exceptions import ConfigurationError
from app.models import db
from app.models.reference import Application, EvidenceFieldLink, ProfileField
from app.services.registry_service import get_registry

logger = logging.getLogger(__name__)

EXTENSION_KEY = "risk_collaborators"

# Raw link statuses reported by the evidence subsystem
EVIDENCE_LINK_STATUSES = frozenset({
    "PENDING_PO_REVIEW",
    "PENDING_SME_REVIEW",
    "APPROVED",
    "REJECTED",
    "USER_ATTESTED",
    "ATTACHED",
    "PENDING_REVIEW",
})


# ── Contracts ────────────────────────────────────────────────────────────────


class ProfileGateway(ABC):
    @abstractmethod
    def field_key_for(self, profile_field_id: str) -> str | None:
        """Field key of a profile field, or None when the id is unknown."""

    @abstractmethod
    def derived_from_for(self, field_key: str) -> str | None:
        """Rating dimension (e.g. ``security_rating``) a field derives from."""


class EvidenceGateway(ABC):
    @abstractmethod
    def link_status_for(self, evidence_id: str, profile_field_id: str) -> str | None:
        """One of ``EVIDENCE_LINK_STATUSES``, or None when no link exists."""


class ApplicationGateway(ABC):
    @abstractmethod
    def rating_for(self, app_id: str, derived_from: str | None) -> str:
        """Rating of ``app_id`` on ``derived_from``; never None."""


@dataclass
class RiskCollaborators:
    profile: ProfileGateway
    evidence: EvidenceGateway
    applications: ApplicationGateway


# ── Default implementations ──────────────────────────────────────────────────


class DbProfileGateway(ProfileGateway):
    """Profile fields from ``profile_fields``; rating dimension from the registry."""

    def field_key_for(self, profile_field_id):
        if not profile_field_id:
            return None
        row = db.session.get(ProfileField, str(profile_field_id))
        return row.field_key if row else None

    def derived_from_for(self, field_key):
        return get_registry().derived_from_for_field(field_key)


class DbEvidenceGateway(EvidenceGateway):
    def link_status_for(self, evidence_id, profile_field_id):
        if not evidence_id or not profile_field_id:
            return None
        link = EvidenceFieldLink.query.filter_by(
            evidence_id=str(evidence_id),
            profile_field_id=str(profile_field_id),
        ).first()
        if link is None:
            return None
        status = (link.link_status or "").upper()
        if status not in EVIDENCE_LINK_STATUSES:
            logger.warning(
                "Unrecognised evidence link status %r for evidence=%s field=%s",
                link.link_status, evidence_id, profile_field_id,
                extra={"evidence_id": evidence_id},
            )
        return status or None


class DbApplicationGateway(ApplicationGateway):
    """Ratings from ``applications.ratings_json``, defaulting to the baseline."""

    def __init__(self, baseline_rating: str = "C1"):
        self.baseline_rating = baseline_rating

    def rating_for(self, app_id, derived_from):
        app_row = db.session.get(Application, str(app_id)) if app_id else None
        rating = None
        if app_row is not None and derived_from:
            rating = app_row.ratings.get(derived_from)
        if not rating:
            logger.debug(
                "No %s rating for app, using baseline %s", derived_from, self.baseline_rating,
                extra={"app_id": app_id},
            )
            return self.baseline_rating
        return str(rating)


# ── App wiring ───────────────────────────────────────────────────────────────


def init_risk_collaborators(app: Flask, collaborators: RiskCollaborators | None = None) -> RiskCollaborators:
    if collaborators is None:
        collaborators = RiskCollaborators(
            profile=DbProfileGateway(),
            evidence=DbEvidenceGateway(),
            applications=DbApplicationGateway(app.config.get("RISK_BASELINE_RATING") or "C1"),
        )
    app.extensions[EXTENSION_KEY] = collaborators
    return collaborators


def get_collaborators() -> RiskCollaborators:
    try:
        return current_app.extensions[EXTENSION_KEY]
    except KeyError as exc:
        raise ConfigurationError("Risk collaborators have not been initialised") from exc
