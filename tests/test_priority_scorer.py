"""
Tests: priority scoring — item score, severity bands, domain aggregate score.

Pure functions; no database access.
"""

import pytest

from app.models.risk import RiskPriority
from app.services import priority_scorer
from app.services.priority_scorer import (
    EVIDENCE_MULTIPLIERS,
    domain_score,
    evidence_multiplier,
    priority_from_score,
    requires_immediate_attention,
    score,
    severity_label,
)


class TestItemScore:
    @pytest.mark.parametrize("priority,status,expected", [
        (RiskPriority.HIGH, "missing", 75),
        (RiskPriority.CRITICAL, "missing", 100),
        (RiskPriority.CRITICAL, "non_compliant", 92),
        (RiskPriority.HIGH, "non_compliant", 69),
        (RiskPriority.HIGH, "under_review", 45),
        (RiskPriority.HIGH, "needs_update", 39),
        (RiskPriority.MEDIUM, "needs_update", 26),
        (RiskPriority.MEDIUM, "approved", 20),
        (RiskPriority.LOW, "waived", 5),
        (RiskPriority.LOW, "expired", 20),
    ])
    def test_known_categories(self, priority, status, expected):
        assert score(priority, status) == expected

    def test_every_combination_is_bounded_and_deterministic(self):
        for priority in RiskPriority:
            for status in list(EVIDENCE_MULTIPLIERS) + [None, "", "something_else"]:
                first = score(priority, status)
                assert 0 <= first <= 100
                assert score(priority, status) == first

    def test_status_is_case_insensitive(self):
        assert score(RiskPriority.HIGH, "MISSING") == score(RiskPriority.HIGH, "missing")
        assert score(RiskPriority.HIGH, "  Approved ") == 30

    def test_unknown_status_uses_one_and_a_half(self):
        assert score(RiskPriority.MEDIUM, "bogus") == 30

    @pytest.mark.parametrize("status", [None, "", "   "])
    def test_blank_status_uses_two(self, status):
        assert score(RiskPriority.MEDIUM, status) == 40

    def test_missing_priority_defaults_to_low(self):
        assert score(None, "approved") == 10
        assert score("", "approved") == 10
        assert score("not-a-priority", "approved") == 10

    def test_string_priority_is_parsed(self):
        assert score("high", "missing") == 75

    def test_multiplier_in_tenths(self):
        assert evidence_multiplier("missing") == 25
        assert evidence_multiplier(None) == priority_scorer.BLANK_STATUS_MULTIPLIER
        assert evidence_multiplier("nope") == priority_scorer.UNKNOWN_STATUS_MULTIPLIER


class TestSeverityLabel:
    @pytest.mark.parametrize("value,label", [
        (100, "critical"),
        (90, "critical"),
        (89, "high"),
        (70, "high"),
        (69, "medium"),
        (40, "medium"),
        (39, "low"),
        (0, "low"),
    ])
    def test_bands_are_lower_bound_inclusive(self, value, label):
        assert severity_label(value) == label

    def test_priority_from_score_uses_same_bands(self):
        assert priority_from_score(90) == RiskPriority.CRITICAL
        assert priority_from_score(77) == RiskPriority.HIGH
        assert priority_from_score(40) == RiskPriority.MEDIUM
        assert priority_from_score(0) == RiskPriority.LOW

    def test_immediate_attention_threshold(self):
        assert requires_immediate_attention(70)
        assert not requires_immediate_attention(69)


class TestDomainScore:
    def test_single_high_priority_item(self):
        assert domain_score(75, 1, 1) == 77

    def test_high_priority_bonus_is_capped(self):
        assert domain_score(50, 5, 0) == 60
        assert domain_score(50, 6, 0) == 60

    def test_open_item_bonus_starts_after_three(self):
        assert domain_score(50, 0, 3) == 50
        assert domain_score(50, 0, 4) == 51
        assert domain_score(50, 0, 8) == 55
        assert domain_score(50, 0, 20) == 55

    def test_capped_at_hundred(self):
        assert domain_score(95, 10, 20) == 100

    def test_empty_aggregate(self):
        assert domain_score(0, 0, 0) == 0

    def test_monotonic_in_both_counts(self):
        for base in (0, 45, 75, 100):
            for open_count in range(0, 12):
                previous = -1
                for high in range(0, 12):
                    current = domain_score(base, high, open_count)
                    assert current >= previous
                    assert current <= 100
                    previous = current
            for high in range(0, 12):
                previous = -1
                for open_count in range(0, 12):
                    current = domain_score(base, high, open_count)
                    assert current >= previous
                    previous = current
