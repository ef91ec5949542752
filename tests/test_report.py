"""Tests for relative ages and run summaries."""

from datetime import UTC, datetime, timedelta

import pytest

from inbox_triage.core.models import MarkOnlyResult, MarkResult, TriageResult
from inbox_triage.engine.report import INBOX_CLEAR, format_age, mark_only_summary, summary_line

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=UTC)


@pytest.mark.parametrize(
    ("delta", "expected"),
    [
        (timedelta(minutes=12), "12m ago"),
        (timedelta(seconds=30), "1m ago"),
        (timedelta(minutes=59, seconds=50), "60m ago"),
        (timedelta(hours=5, minutes=29), "5h ago"),
        (timedelta(hours=5, minutes=30), "6h ago"),
        (timedelta(hours=23), "23h ago"),
        (timedelta(hours=36), "2d ago"),
        (timedelta(days=3), "3d ago"),
        (timedelta(hours=-1), "0m ago"),
    ],
)
def test_format_age(delta: timedelta, expected: str) -> None:
    assert format_age(NOW - delta, NOW) == expected


def test_format_age_unknown() -> None:
    assert format_age(None, NOW) == ""


class TestSummaryLine:
    """Tests for summary_line."""

    def test_inbox_clear(self) -> None:
        assert summary_line(TriageResult(inbox_clear=True)) == INBOX_CLEAR

    def test_dry_run(self) -> None:
        result = TriageResult(marked_count=4)

        assert summary_line(result) == "Would mark 4 as read · 0 need replies"

    def test_live(self) -> None:
        result = TriageResult(
            marked_count=2,
            dry_run=False,
            mark_result=MarkResult(requested=2, succeeded=frozenset({"a", "b"})),
        )

        assert summary_line(result) == "Marked 2 as read · 0 need replies"

    def test_live_partial(self) -> None:
        result = TriageResult(
            marked_count=2,
            dry_run=False,
            mark_result=MarkResult(requested=2, succeeded=frozenset({"a"}), failed={"b": "gone"}),
        )

        assert summary_line(result) == "Marked 1 of 2 as read · 0 need replies"


class TestMarkOnlySummary:
    """Tests for mark_only_summary."""

    def test_nothing_marked(self) -> None:
        assert mark_only_summary(MarkOnlyResult()) == "No low-priority unread messages found."

    def test_marked(self) -> None:
        result = MarkOnlyResult(
            marked_count=2, mark_result=MarkResult(requested=2, succeeded=frozenset({"a", "b"}))
        )

        assert mark_only_summary(result) == "✓ Marked 2 low-priority message(s) as read."

    def test_partial(self) -> None:
        result = MarkOnlyResult(
            marked_count=2,
            mark_result=MarkResult(requested=2, succeeded=frozenset({"a"}), failed={"b": "x"}),
        )

        assert mark_only_summary(result) == "Marked 1 of 2 low-priority message(s) as read."
