"""
Priority scoring for risk items and domain aggregates.

Pure functions, no I/O.

    item score   = floor(base(priority) × multiplier(evidence status)), capped at 100
    domain score = max open item score
                   + min(10, 2 × open high-priority items)
                   + min(5, open items − 3) when more than three are open
                   capped at 100
"""

from app.models.risk import RiskPriority

MAX_SCORE = 100

# Multipliers in tenths so floor(base × multiplier) stays exact integer math.
EVIDENCE_MULTIPLIERS = {
    "missing": 25,
    "not_provided": 25,
    "non_compliant": 23,
    "failed": 23,
    "expired": 20,
    "under_review": 15,
    "pending": 15,
    "needs_update": 13,
    "approved": 10,
    "compliant": 10,
    "waived": 5,
    "exempted": 5,
}
UNKNOWN_STATUS_MULTIPLIER = 15
BLANK_STATUS_MULTIPLIER = 20

HIGH_PRIORITY_STEP = 2
HIGH_PRIORITY_BONUS_CAP = 10
OPEN_ITEMS_FREE = 3
OPEN_ITEMS_BONUS_CAP = 5

IMMEDIATE_ATTENTION_THRESHOLD = 70


def evidence_multiplier(evidence_status: str | None) -> int:
    """Multiplier (in tenths) for an evidence status category, case-insensitive."""
    if evidence_status is None or not str(evidence_status).strip():
        return BLANK_STATUS_MULTIPLIER
    return EVIDENCE_MULTIPLIERS.get(str(evidence_status).strip().lower(), UNKNOWN_STATUS_MULTIPLIER)


def score(priority, evidence_status: str | None) -> int:
    """Score a single risk item, 0-100. ``priority`` may be a RiskPriority, a string or None (LOW)."""
    base = RiskPriority.parse(priority).base_score
    return min(MAX_SCORE, base * evidence_multiplier(evidence_status) // 10)


def severity_label(value: int) -> str:
    """
    Severity band for a score, lower bound inclusive.
      90-100 → critical
      70-89  → high
      40-69  → medium
      0-39   → low
    """
    if value >= 90:
        return "critical"
    if value >= 70:
        return "high"
    if value >= 40:
        return "medium"
    return "low"


def priority_from_score(value: int) -> RiskPriority:
    """Coarse priority for an aggregate score, same bands as ``severity_label``."""
    if value >= 90:
        return RiskPriority.CRITICAL
    if value >= 70:
        return RiskPriority.HIGH
    if value >= 40:
        return RiskPriority.MEDIUM
    return RiskPriority.LOW


def domain_score(max_item_score: int, high_priority_open_count: int, open_count: int) -> int:
    """Aggregate score for a domain risk; monotonic in both counts."""
    total = max(0, max_item_score or 0)
    total += min(HIGH_PRIORITY_BONUS_CAP, max(0, high_priority_open_count) * HIGH_PRIORITY_STEP)
    if open_count > OPEN_ITEMS_FREE:
        total += min(OPEN_ITEMS_BONUS_CAP, open_count - OPEN_ITEMS_FREE)
    return min(MAX_SCORE, total)


def requires_immediate_attention(value: int) -> bool:
    return value >= IMMEDIATE_ATTENTION_THRESHOLD
