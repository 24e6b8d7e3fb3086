"""
Tests: profile field registry — YAML loading, rule evaluation, snapshots, reload.
"""

import dataclasses
import json
import os

import pytest

from app.core.exceptions import ConfigurationError
from app.models.risk import RiskPriority
from app.services import registry_service
from app.services.registry_service import (
    EXTENSION_KEY,
    NO_REVIEW_REASON,
    ProfileFieldRegistry,
    get_registry,
    reload_registry,
)


# ── Loading ──────────────────────────────────────────────────────────────


def test_fixture_registry_loads_every_field(registry):
    assert len(registry) == 5
    assert "mfa_enabled" in registry
    assert registry.field_keys[0] == "mfa_enabled"


def test_bundled_registry_parses():
    package_dir = os.path.dirname(os.path.dirname(registry_service.__file__))
    bundled = ProfileFieldRegistry.from_yaml(os.path.join(package_dir, "data", "profile_fields_registry.yaml"))
    assert "mfa_enabled" in bundled
    assert bundled.arb_for_derived_from("security_rating") == "security_arb"


def test_from_mapping_skips_malformed_entries():
    reg = ProfileFieldRegistry.from_mapping({
        "fields": [
            "not-a-mapping",
            {"label": "entry without key"},
            {"key": "ok", "derived_from": "security_rating", "rule": {"A1": {"requires_review": True}}},
        ],
    })
    assert reg.field_keys == ["ok"]


def test_rule_without_priority_defaults_to_low():
    reg = ProfileFieldRegistry.from_mapping({
        "fields": [{"key": "f", "rule": {"A1": {"requires_review": True}}}],
    })
    assert reg.field_info("f").rule_for_rating("A1").priority == RiskPriority.LOW


def test_rule_without_requires_review_is_not_reviewed():
    reg = ProfileFieldRegistry.from_mapping({
        "fields": [{"key": "f", "rule": {"A1": {"priority": "HIGH"}}}],
    })
    assert reg.rule_for("f", "APP", "A1").should_create is False


def test_empty_mapping():
    reg = ProfileFieldRegistry.from_mapping(None)
    assert len(reg) == 0
    assert reg.arb_routing() == {}


def test_missing_file_is_configuration_error(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        ProfileFieldRegistry.from_yaml(str(tmp_path / "absent.yaml"))


def test_invalid_yaml_is_configuration_error(tmp_path):
    path = tmp_path / "broken.yaml"
    path.write_text("fields: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="not valid YAML"):
        ProfileFieldRegistry.from_yaml(str(path))


def test_non_mapping_root_is_configuration_error(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="must be a mapping"):
        ProfileFieldRegistry.from_yaml(str(path))


# ── Lookups ──────────────────────────────────────────────────────────────


def test_field_info_is_immutable(registry):
    info = registry.field_info("mfa_enabled")
    assert info.label == "Multi-factor authentication"
    with pytest.raises(dataclasses.FrozenInstanceError):
        info.arb = "other"
    with pytest.raises(TypeError):
        info.rules["A1"] = None


def test_arb_routing_returns_a_copy(registry):
    routing = registry.arb_routing()
    assert routing == {"security_rating": "security_arb", "integrity_rating": "integrity_arb"}
    routing["security_rating"] = "hijacked"
    assert registry.arb_for_derived_from("security_rating") == "security_arb"


def test_derived_from_for_field(registry):
    assert registry.derived_from_for_field("data_validation") == "integrity_rating"
    assert registry.derived_from_for_field("orphan_field") is None
    assert registry.derived_from_for_field("nope") is None


# ── Rule evaluation ──────────────────────────────────────────────────────


def test_rule_requiring_review(registry):
    evaluation = registry.rule_for("mfa_enabled", "A1", "A1")
    assert evaluation.should_create is True
    assert evaluation.matched_rule.priority == RiskPriority.HIGH
    assert evaluation.matched_rule.ttl == "90d"
    assert evaluation.to_dict()["matched_rule"]["priority"] == "HIGH"


def test_rule_not_requiring_review(registry):
    evaluation = registry.rule_for("mfa_enabled", "A1", "C1")
    assert evaluation.should_create is False
    assert evaluation.reason == NO_REVIEW_REASON
    assert evaluation.matched_rule is not None


@pytest.mark.parametrize("field_key,rating", [
    ("unknown_field", "A1"),
    ("mfa_enabled", "Z9"),
    ("mfa_enabled", None),
])
def test_rule_absent(registry, field_key, rating):
    evaluation = registry.rule_for(field_key, "A1", rating)
    assert evaluation.should_create is False
    assert evaluation.matched_rule is None


def test_fields_requiring_review(registry):
    assert registry.fields_requiring_review("A1") == ["mfa_enabled", "encryption_at_rest"]
    assert set(registry.fields_requiring_review()) == {
        "mfa_enabled", "encryption_at_rest", "data_validation", "backup_policy", "orphan_field",
    }


def test_compliance_snapshot(registry):
    snapshot = json.loads(registry.compliance_snapshot("mfa_enabled", "A1"))
    assert snapshot["field_key"] == "mfa_enabled"
    assert snapshot["derived_from"] == "security_rating"
    assert snapshot["rating"] == "A1"
    assert snapshot["requirement"]["requires_review"] is True
    assert snapshot["compliance_frameworks"] == [{"framework": "SOC2", "controls": ["CC6.1"]}]


def test_compliance_snapshot_without_rule(registry):
    snapshot = json.loads(registry.compliance_snapshot("mfa_enabled", "Z9"))
    assert snapshot["requirement"] is None
    assert registry.compliance_snapshot("unknown_field", "A1") is None


# ── App wiring ───────────────────────────────────────────────────────────


def test_get_registry_returns_installed_copy(app, registry):
    assert get_registry() is app.extensions[EXTENSION_KEY]


def test_get_registry_without_registry_is_configuration_error(app, monkeypatch):
    monkeypatch.delitem(app.extensions, EXTENSION_KEY)
    with pytest.raises(ConfigurationError):
        get_registry()


def test_reload_registry_swaps_in_a_fresh_copy(app, monkeypatch):
    original = app.extensions[EXTENSION_KEY]
    monkeypatch.setitem(app.extensions, EXTENSION_KEY, original)
    reloaded = reload_registry(app)
    assert reloaded is not original
    assert app.extensions[EXTENSION_KEY] is reloaded
    assert reloaded.field_keys == original.field_keys


def test_reload_cli_command(app, monkeypatch):
    monkeypatch.setitem(app.extensions, EXTENSION_KEY, app.extensions[EXTENSION_KEY])
    result = app.test_cli_runner().invoke(args=["reload-risk-registry"])
    assert result.exit_code == 0
    assert "Loaded 5 registry fields" in result.output
