"""Text helpers for presenting triage results.

These produce the short strings the CLI (or any other front end) shows:
relative ages like "3h ago" and the one-line run summary.
"""

from __future__ import annotations

from datetime import UTC, datetime

from inbox_triage.core.models import MarkOnlyResult, TriageResult

INBOX_CLEAR = "Inbox looks clear!"


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


def format_age(received_at: datetime | None, now: datetime | None = None) -> str:
    """Relative age of a message: "12m ago", "5h ago", "3d ago" or ""."""
    if received_at is None:
        return ""
    now = now or datetime.now(UTC)
    hours = max((now - received_at).total_seconds() / 3600, 0.0)
    if hours < 1:
        return f"{_round_half_up(hours * 60)}m ago"
    if hours < 24:
        return f"{_round_half_up(hours)}h ago"
    return f"{_round_half_up(hours / 24)}d ago"


def summary_line(result: TriageResult) -> str:
    """One-line outcome of a triage run."""
    if result.inbox_clear:
        return INBOX_CLEAR

    need_replies = len(result.priority_list)
    if result.dry_run:
        return f"Would mark {result.marked_count} as read · {need_replies} need replies"

    mark_result = result.mark_result
    if mark_result is not None and not mark_result.all_succeeded:
        return (
            f"Marked {mark_result.succeeded_count} of {result.marked_count} as read · "
            f"{need_replies} need replies"
        )
    return f"Marked {result.marked_count} as read · {need_replies} need replies"


def mark_only_summary(result: MarkOnlyResult) -> str:
    """One-line outcome of a mark-only run."""
    if result.marked_count == 0:
        return "No low-priority unread messages found."
    mark_result = result.mark_result
    if mark_result is not None and not mark_result.all_succeeded:
        return (
            f"Marked {mark_result.succeeded_count} of {result.marked_count} "
            "low-priority message(s) as read."
        )
    return f"✓ Marked {result.marked_count} low-priority message(s) as read."
