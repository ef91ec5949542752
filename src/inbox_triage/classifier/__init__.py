"""Deterministic message classification.

- Rule resolution from user-entered keyword lists
- Low-priority gate (noise detection)
- Additive priority scoring and badge tiers

Usage:
    from inbox_triage.classifier import resolve_rules, score_message

    rules = resolve_rules(days_back="14")
    score = score_message(message, rules)
"""

from inbox_triage.classifier.rules import (
    TriageRules,
    parse_days_back,
    resolve_rules,
    split_list,
)
from inbox_triage.classifier.scoring import (
    REPLY_PHRASES,
    badge_level,
    classify,
    is_low_priority,
    score_message,
)

__all__ = [
    "REPLY_PHRASES",
    "TriageRules",
    "badge_level",
    "classify",
    "is_low_priority",
    "parse_days_back",
    "resolve_rules",
    "score_message",
    "split_list",
]
