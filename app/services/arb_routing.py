"""
ARB routing — which review board owns the risks of a rating dimension.

    security_rating  → domain "security" → ARB from the registry
    unknown fields   → RISK_DEFAULT_ARB ("default"), logged as a config gap
"""

import logging

from flask import current_app

from app.services.registry_service import get_registry

logger = logging.getLogger(__name__)

RATING_SUFFIX = "_rating"
UNKNOWN_DOMAIN = "unknown"
DEFAULT_ARB = "default"


def _default_arb() -> str:
    return current_app.config.get("RISK_DEFAULT_ARB") or DEFAULT_ARB


def domain_for(derived_from: str | None) -> str:
    """Domain name for a rating dimension: strip a trailing ``_rating``."""
    if not derived_from:
        return UNKNOWN_DOMAIN
    if derived_from.endswith(RATING_SUFFIX) and len(derived_from) > len(RATING_SUFFIX):
        return derived_from[: -len(RATING_SUFFIX)]
    return derived_from


def arb_for_derived_from(derived_from: str | None, registry=None) -> str:
    if not derived_from:
        logger.warning("Cannot determine ARB for empty derived_from, using %s", _default_arb())
        return _default_arb()
    registry = registry or get_registry()
    arb = registry.arb_for_derived_from(derived_from)
    if not arb:
        logger.warning(
            "No ARB routing found for derived_from=%s, using %s",
            derived_from, _default_arb(),
        )
        return _default_arb()
    return arb


def arb_for_field(field_key: str | None, registry=None) -> str:
    if not field_key:
        logger.warning("Cannot determine ARB for empty field key, using %s", _default_arb())
        return _default_arb()
    registry = registry or get_registry()
    arb = registry.arb_for_field(field_key)
    if not arb:
        logger.warning(
            "No ARB routing found for field=%s, using %s",
            field_key, _default_arb(), extra={"field_key": field_key},
        )
        return _default_arb()
    return arb


def arb_display_name(arb: str | None) -> str:
    """Human label: ``security_arb`` / ``security`` → ``Security ARB``."""
    if not arb:
        return "Unknown ARB"
    name = arb.strip()
    if name.lower().endswith("_arb"):
        name = name[:-4]
    words = [w.capitalize() for w in name.replace("_", " ").replace("-", " ").split()]
    return " ".join(words + ["ARB"])
