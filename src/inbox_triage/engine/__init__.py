"""Triage orchestration.

- TriageEngine drives fetch -> score -> partition -> mark runs
- report helpers render ages and run summaries
"""

from inbox_triage.engine.report import format_age, mark_only_summary, summary_line
from inbox_triage.engine.triage import (
    TriageEngine,
    TriageState,
    mark_targets,
    partition,
)

__all__ = [
    "TriageEngine",
    "TriageState",
    "format_age",
    "mark_only_summary",
    "mark_targets",
    "partition",
    "summary_line",
]
