"""Low-priority gate and additive priority scoring.

Both functions are pure: the same Message and TriageRules (and the same
reference time) always produce the same result.

Score components for a message that passes the low-priority gate:

    baseline                                  10
    VIP sender substring in address          +50
    high-priority keyword in subject         +30
    received <4h / <24h / <48h ago   +20 / +10 / +5
    user is a direct (To) recipient          +15
    reply-soliciting phrase in preview       +10
    importance High / Low              +25 / -10

The total is floored at 1, so 0 only ever means "low priority".
"""

from __future__ import annotations

from datetime import UTC, datetime

from inbox_triage.classifier.rules import TriageRules
from inbox_triage.core.models import Importance, Message, ScoredMessage

BASELINE_SCORE = 10
VIP_SENDER_BONUS = 50
HIGH_SUBJECT_BONUS = 30
DIRECT_RECIPIENT_BONUS = 15
REPLY_PHRASE_BONUS = 10
HIGH_IMPORTANCE_BONUS = 25
LOW_IMPORTANCE_PENALTY = 10
MIN_SCORE = 1

# (max age in hours, bonus), checked in order
RECENCY_TIERS: tuple[tuple[float, int], ...] = ((4, 20), (24, 10), (48, 5))

REPLY_PHRASES: tuple[str, ...] = (
    "please reply",
    "let me know",
    "your thoughts",
    "waiting for",
    "your feedback",
    "can you",
)

HIGH_BADGE_THRESHOLD = 80
MED_BADGE_THRESHOLD = 40


def _contains_any(text: str, needles: frozenset[str] | tuple[str, ...]) -> bool:
    return any(needle in text for needle in needles)


def is_low_priority(message: Message, rules: TriageRules) -> bool:
    """Return True if the message is noise and should not be ranked.

    Any one of these is sufficient:
    - a low-priority sender substring occurs in the sender address
    - a low-priority keyword occurs in the subject
    - importance is Low and the user is not a direct recipient
    """
    if _contains_any(message.from_address.lower(), rules.low_senders):
        return True
    if _contains_any(message.subject.lower(), rules.low_subjects):
        return True
    return message.importance is Importance.LOW and not message.is_direct_recipient


def recency_bonus(received_at: datetime | None, now: datetime | None = None) -> int:
    """Bonus for recently received mail; 0 when the receive time is unknown."""
    if received_at is None:
        return 0
    now = now or datetime.now(UTC)
    try:
        age_hours = (now - received_at).total_seconds() / 3600
    except TypeError:
        # naive vs aware datetimes
        return 0
    for max_hours, bonus in RECENCY_TIERS:
        if age_hours < max_hours:
            return bonus
    return 0


def score_message(message: Message, rules: TriageRules, now: datetime | None = None) -> int:
    """Compute the priority score for a message.

    Args:
        message: Normalized message
        rules: Classification settings for this run
        now: Reference time for recency (defaults to the current UTC time)

    Returns:
        0 for low-priority messages, otherwise an integer >= 1
    """
    if is_low_priority(message, rules):
        return 0

    score = BASELINE_SCORE

    if _contains_any(message.from_address.lower(), rules.high_senders):
        score += VIP_SENDER_BONUS

    if _contains_any(message.subject.lower(), rules.high_subjects):
        score += HIGH_SUBJECT_BONUS

    score += recency_bonus(message.received_at, now)

    if message.is_direct_recipient:
        score += DIRECT_RECIPIENT_BONUS

    if _contains_any(message.body_preview.lower(), REPLY_PHRASES):
        score += REPLY_PHRASE_BONUS

    if message.importance is Importance.HIGH:
        score += HIGH_IMPORTANCE_BONUS
    elif message.importance is Importance.LOW:
        score -= LOW_IMPORTANCE_PENALTY

    return max(score, MIN_SCORE)


def classify(message: Message, rules: TriageRules, now: datetime | None = None) -> ScoredMessage:
    """Gate and score a message in one step."""
    return ScoredMessage(
        message=message,
        score=score_message(message, rules, now),
        is_low_priority=is_low_priority(message, rules),
    )


def badge_level(score: int) -> str:
    """Display tier for a score: "high", "med" or "low"."""
    if score >= HIGH_BADGE_THRESHOLD:
        return "high"
    if score >= MED_BADGE_THRESHOLD:
        return "med"
    return "low"
