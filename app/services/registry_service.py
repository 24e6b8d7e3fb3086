"""
Profile field registry — per-field risk rules and ARB routing.

The registry is a YAML file (``RISK_REGISTRY_PATH``) listing every policy
field with the rating dimension it derives from, the ARB that owns it,
its compliance frameworks and one rule per rating level:

    fields:
      - key: mfa_enabled
        label: Multi-factor authentication
        derived_from: security_rating
        arb: security
        compliance_frameworks:
          - {framework: SOC2, controls: [CC6.1]}
        rule:
          A1: {value: required, label: Required, ttl: 90d, requires_review: true, priority: HIGH}

It is parsed once at startup into an immutable ``ProfileFieldRegistry``
held in ``app.extensions["risk_registry"]``; ``reload_registry(app)``
swaps in a freshly parsed copy.
"""

import json
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from types import MappingProxyType

import yaml
from flask import current_app

from app.core.exceptions import ConfigurationError
from app.models.risk import RiskPriority

logger = logging.getLogger(__name__)

EXTENSION_KEY = "risk_registry"


# ═════════════════════════════════════════════════════════════════════════════
# Data Classes
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RiskCreationRule:
    """Rule for one field at one rating level."""
    value: str | None
    label: str | None
    ttl: str | None
    requires_review: bool
    priority: RiskPriority

    @classmethod
    def from_raw(cls, raw: dict) -> "RiskCreationRule":
        requires_review = raw.get("requires_review")
        return cls(
            value=_as_str(raw.get("value")),
            label=_as_str(raw.get("label")),
            ttl=_as_str(raw.get("ttl")),
            requires_review=bool(requires_review) if requires_review is not None else False,
            priority=RiskPriority.parse(raw.get("priority")),
        )

    def to_dict(self) -> dict:
        return {
            "value": self.value,
            "label": self.label,
            "ttl": self.ttl,
            "requires_review": self.requires_review,
            "priority": self.priority.value,
        }


@dataclass(frozen=True)
class FieldConfig:
    """Registry entry for a single policy field."""
    key: str
    label: str
    derived_from: str | None
    arb: str | None
    compliance_frameworks: tuple = ()
    rules: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))

    def rule_for_rating(self, rating: str | None) -> RiskCreationRule | None:
        if rating is None:
            return None
        return self.rules.get(rating)


@dataclass(frozen=True)
class RuleEvaluation:
    """Answer to "does (field, app, rating) require a risk item?"."""
    should_create: bool
    field_key: str
    app_id: str | None
    rating: str | None
    reason: str
    matched_rule: RiskCreationRule | None = None

    def to_dict(self) -> dict:
        return {
            "should_create": self.should_create,
            "field_key": self.field_key,
            "app_id": self.app_id,
            "rating": self.rating,
            "reason": self.reason,
            "matched_rule": self.matched_rule.to_dict() if self.matched_rule else None,
        }


NO_REVIEW_REASON = "Field does not require review for this rating level"


def _as_str(value):
    return None if value is None else str(value)


# ═════════════════════════════════════════════════════════════════════════════
# Registry
# ═════════════════════════════════════════════════════════════════════════════

class ProfileFieldRegistry:
    """Read-only view over the parsed registry."""

    def __init__(self, fields: dict[str, FieldConfig], source: str | None = None):
        self._fields = MappingProxyType(dict(fields))
        self.source = source
        # First field wins for a given derived_from
        arb_by_dimension = {}
        for cfg in self._fields.values():
            if cfg.derived_from and cfg.arb and cfg.derived_from not in arb_by_dimension:
                arb_by_dimension[cfg.derived_from] = cfg.arb
        self._arb_by_dimension = MappingProxyType(arb_by_dimension)

    # ── Construction ─────────────────────────────────────────────────────

    @classmethod
    def from_mapping(cls, raw: dict | None, source: str | None = None) -> "ProfileFieldRegistry":
        fields = {}
        for entry in (raw or {}).get("fields") or []:
            if not isinstance(entry, dict) or not entry.get("key"):
                logger.warning("Skipping malformed registry entry in %s: %r", source, entry)
                continue
            key = str(entry["key"])
            rules = {}
            raw_rules = entry.get("rule") or {}
            if isinstance(raw_rules, dict):
                for rating, raw_rule in raw_rules.items():
                    if isinstance(raw_rule, dict):
                        rules[str(rating)] = RiskCreationRule.from_raw(raw_rule)
            frameworks = tuple(
                {
                    "framework": fw.get("framework"),
                    "controls": list(fw.get("controls") or []),
                }
                for fw in entry.get("compliance_frameworks") or []
                if isinstance(fw, dict)
            )
            fields[key] = FieldConfig(
                key=key,
                label=str(entry.get("label") or key),
                derived_from=_as_str(entry.get("derived_from")),
                arb=_as_str(entry.get("arb")),
                compliance_frameworks=frameworks,
                rules=MappingProxyType(rules),
            )
        logger.info("Loaded profile field registry: %d fields from %s", len(fields), source or "<mapping>")
        return cls(fields, source=source)

    @classmethod
    def from_yaml(cls, path: str) -> "ProfileFieldRegistry":
        return cls.from_mapping(_read_yaml(path), source=path)

    # ── Lookups ──────────────────────────────────────────────────────────

    def __len__(self):
        return len(self._fields)

    def __contains__(self, field_key):
        return field_key in self._fields

    @property
    def field_keys(self) -> list[str]:
        return list(self._fields)

    def field_info(self, field_key: str) -> FieldConfig | None:
        return self._fields.get(field_key)

    def derived_from_for_field(self, field_key: str) -> str | None:
        cfg = self._fields.get(field_key)
        return cfg.derived_from if cfg else None

    def arb_for_derived_from(self, derived_from: str | None) -> str | None:
        if not derived_from:
            return None
        return self._arb_by_dimension.get(derived_from)

    def arb_for_field(self, field_key: str) -> str | None:
        cfg = self._fields.get(field_key)
        return cfg.arb if cfg and cfg.arb else None

    def arb_routing(self) -> dict[str, str]:
        """derived_from → arb for every dimension in the registry."""
        return dict(self._arb_by_dimension)

    def rule_for(self, field_key: str, app_id: str | None, rating: str | None) -> RuleEvaluation:
        """Evaluate whether (field, app, rating) requires a risk item."""
        cfg = self._fields.get(field_key)
        if cfg is None:
            logger.debug("No risk configuration found for field: %s", field_key)
            return RuleEvaluation(False, field_key, app_id, rating, NO_REVIEW_REASON)

        rule = cfg.rule_for_rating(rating)
        if rule is None:
            logger.debug("No rule found for field=%s with rating=%s", field_key, rating)
            return RuleEvaluation(False, field_key, app_id, rating, NO_REVIEW_REASON)

        logger.info(
            "Risk evaluation: field=%s rating=%s requires_review=%s rule_value=%s",
            field_key, rating, rule.requires_review, rule.value,
            extra={"app_id": app_id, "field_key": field_key},
        )
        if not rule.requires_review:
            return RuleEvaluation(False, field_key, app_id, rating, NO_REVIEW_REASON, rule)
        return RuleEvaluation(
            True, field_key, app_id, rating,
            f"Rating {rating} requires review of {field_key}", rule,
        )

    def fields_requiring_review(self, rating: str | None = None) -> list[str]:
        """Fields whose rule requires review, for one rating or for any rating."""
        result = []
        for key, cfg in self._fields.items():
            if rating is None:
                if any(rule.requires_review for rule in cfg.rules.values()):
                    result.append(key)
            else:
                rule = cfg.rule_for_rating(rating)
                if rule is not None and rule.requires_review:
                    result.append(key)
        return result

    def compliance_snapshot(self, field_key: str, rating: str | None) -> str | None:
        """Serialized requirement context captured on a risk item at creation."""
        cfg = self._fields.get(field_key)
        if cfg is None:
            return None
        rule = cfg.rule_for_rating(rating)
        snapshot = {
            "field_key": cfg.key,
            "label": cfg.label,
            "derived_from": cfg.derived_from,
            "rating": rating,
            "requirement": rule.to_dict() if rule else None,
            "compliance_frameworks": [dict(fw) for fw in cfg.compliance_frameworks],
        }
        return json.dumps(snapshot, sort_keys=True)


# ═════════════════════════════════════════════════════════════════════════════
# Loading & app wiring
# ═════════════════════════════════════════════════════════════════════════════

@lru_cache(maxsize=4)
def _read_yaml(path: str) -> dict:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Risk registry file not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Risk registry file is not valid YAML: {path}: {exc}") from exc
    if data is not None and not isinstance(data, dict):
        raise ConfigurationError(f"Risk registry root must be a mapping: {path}")
    return data or {}


def init_registry(app, registry: ProfileFieldRegistry | None = None) -> ProfileFieldRegistry:
    """Parse the configured registry (or install ``registry``) on the app."""
    if registry is None:
        registry = ProfileFieldRegistry.from_yaml(app.config["RISK_REGISTRY_PATH"])
    app.extensions[EXTENSION_KEY] = registry
    return registry


def reload_registry(app) -> ProfileFieldRegistry:
    """Re-read the registry file and replace the process-wide copy."""
    _read_yaml.cache_clear()
    registry = init_registry(app)
    logger.info("Profile field registry reloaded from %s", registry.source)
    return registry


def get_registry() -> ProfileFieldRegistry:
    try:
        return current_app.extensions[EXTENSION_KEY]
    except KeyError as exc:
        raise ConfigurationError("Profile field registry has not been initialised") from exc
