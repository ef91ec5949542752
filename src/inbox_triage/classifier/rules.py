"""Resolution of user-entered classification settings into TriageRules.

Keyword lists arrive as comma-separated strings (from the CLI or
config.yaml) and are turned into lowercase sets. The lookback window is
parsed leniently: anything that is not an integer in 1..30 falls back to
the default instead of failing the run.
"""

from __future__ import annotations

from dataclasses import dataclass

from inbox_triage.config_schema import DEFAULT_DAYS_BACK, RulesConfig
from inbox_triage.core.logging import get_logger

logger = get_logger(__name__)

MIN_DAYS_BACK = 1
MAX_DAYS_BACK = 30


@dataclass(frozen=True, slots=True)
class TriageRules:
    """Immutable classification settings for one run.

    All keyword sets hold lowercase, trimmed, non-empty entries. An empty
    set disables that check.
    """

    high_senders: frozenset[str] = frozenset()
    low_senders: frozenset[str] = frozenset()
    high_subjects: frozenset[str] = frozenset()
    low_subjects: frozenset[str] = frozenset()
    days_back: int = DEFAULT_DAYS_BACK


def split_list(value: str | None) -> frozenset[str]:
    """Split a comma-separated string into a set of lowercase tokens.

    Example:
        >>> sorted(split_list(" Noreply@, ,ALERTS@ "))
        ['alerts@', 'noreply@']
    """
    if not value:
        return frozenset()
    return frozenset(token.strip().lower() for token in value.split(",") if token.strip())


def parse_days_back(value: object) -> int:
    """Parse the lookback window, falling back to the default on bad input.

    Only a whole integer in 1..30 (an int, or a string with optional
    surrounding whitespace) is accepted. Partial numbers such as "12abc" or
    "7.5", floats, booleans, None and lists all resolve to the default.
    """
    if isinstance(value, bool):
        return DEFAULT_DAYS_BACK
    if isinstance(value, int):
        days = value
    else:
        try:
            days = int(str(value).strip())
        except (TypeError, ValueError):
            logger.warning(
                "Invalid days_back, using default",
                value=value,
                default=DEFAULT_DAYS_BACK,
            )
            return DEFAULT_DAYS_BACK

    if not MIN_DAYS_BACK <= days <= MAX_DAYS_BACK:
        logger.warning(
            "days_back out of range, using default",
            value=days,
            default=DEFAULT_DAYS_BACK,
        )
        return DEFAULT_DAYS_BACK
    return days


def resolve_rules(
    high_senders: str | None = None,
    low_senders: str | None = None,
    high_subjects: str | None = None,
    low_subjects: str | None = None,
    days_back: object = None,
    defaults: RulesConfig | None = None,
) -> TriageRules:
    """Merge user-supplied values over configured defaults.

    An argument left as None takes the value from ``defaults`` (which in
    turn defaults to the compiled-in lists). An empty string is a real
    value and disables the list.

    Args:
        high_senders: VIP sender substrings, comma-separated
        low_senders: Noise sender substrings, comma-separated
        high_subjects: High-priority subject keywords, comma-separated
        low_subjects: Low-priority subject keywords, comma-separated
        days_back: Lookback window (1-30), raw user input
        defaults: Configured rules section (config.yaml)

    Returns:
        TriageRules for one run
    """
    base = defaults or RulesConfig()

    def pick(override: str | None, fallback: str) -> frozenset[str]:
        return split_list(fallback if override is None else override)

    rules = TriageRules(
        high_senders=pick(high_senders, base.high_senders),
        low_senders=pick(low_senders, base.low_senders),
        high_subjects=pick(high_subjects, base.high_subjects),
        low_subjects=pick(low_subjects, base.low_subjects),
        days_back=parse_days_back(base.days_back if days_back is None else days_back),
    )

    logger.debug(
        "Triage rules resolved",
        high_senders=len(rules.high_senders),
        low_senders=len(rules.low_senders),
        high_subjects=len(rules.high_subjects),
        low_subjects=len(rules.low_subjects),
        days_back=rules.days_back,
    )
    return rules
