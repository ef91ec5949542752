"""Triage engine: fetch, score, partition and (optionally) mark as read.

A run moves through IDLE -> FETCHING -> SCORING -> MARKING -> DONE, with
ERROR reachable from any in-flight state. Stages are strictly sequential.
All classification is finished before any mutating call is made, and a
dry run never calls the mutating transport operation.

Any TriageError during a run aborts the rest of the pipeline; results
computed so far are discarded and the error propagates to the caller.

Usage:
    from inbox_triage.engine.triage import TriageEngine

    engine = TriageEngine(transport, on_status=console.print)
    result = await engine.run(session, rules, dry_run=True)
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from enum import Enum

from inbox_triage.classifier.rules import TriageRules
from inbox_triage.classifier.scoring import classify, is_low_priority
from inbox_triage.core.errors import TriageError
from inbox_triage.core.logging import get_logger, set_correlation_id
from inbox_triage.core.models import (
    MarkOnlyResult,
    MarkResult,
    Message,
    ScoredMessage,
    Session,
    TriageResult,
)
from inbox_triage.engine.report import INBOX_CLEAR, mark_only_summary, summary_line
from inbox_triage.transport.base import MailTransport

logger = get_logger(__name__)

StatusCallback = Callable[[str], None]


class TriageState(Enum):
    """Lifecycle state of the engine."""

    IDLE = "idle"
    FETCHING = "fetching"
    SCORING = "scoring"
    MARKING = "marking"
    DONE = "done"
    ERROR = "error"


def partition(
    scored: Iterable[ScoredMessage],
) -> tuple[tuple[ScoredMessage, ...], tuple[ScoredMessage, ...]]:
    """Split scored messages into (priority, low priority).

    Priority messages are sorted by score descending; equal scores keep
    retrieval order. Low-priority messages keep retrieval order.
    """
    items = list(scored)
    priority = sorted(
        (item for item in items if not item.is_low_priority),
        key=lambda item: item.score,
        reverse=True,
    )
    low = [item for item in items if item.is_low_priority]
    return tuple(priority), tuple(low)


def mark_targets(messages: Iterable[Message | ScoredMessage]) -> list[str]:
    """Ids to submit for marking, in order, without blanks or duplicates."""
    seen: set[str] = set()
    ids: list[str] = []
    for item in messages:
        if not item.id:
            logger.warning("Skipping message without an id for mark-as-read")
            continue
        if item.id not in seen:
            seen.add(item.id)
            ids.append(item.id)
    return ids


class TriageEngine:
    """Drives one triage run at a time against a mail transport.

    Each run generates a UUID4 triage_run_id for log correlation.

    Attributes:
        _transport: Active mail transport (backend-agnostic)
        _on_status: Optional callback receiving progress strings
        _clock: Returns the reference time used for recency scoring
        _state: Current TriageState
    """

    def __init__(
        self,
        transport: MailTransport,
        on_status: StatusCallback | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._transport = transport
        self._on_status = on_status
        self._clock = clock or (lambda: datetime.now(UTC))
        self._state = TriageState.IDLE
        self._lock = asyncio.Lock()

    @property
    def state(self) -> TriageState:
        """Current lifecycle state."""
        return self._state

    def _set_state(self, state: TriageState) -> None:
        logger.debug("triage_state", state=state.value)
        self._state = state

    def _status(self, message: str) -> None:
        logger.debug("triage_status", status=message)
        if self._on_status is not None:
            self._on_status(message)

    def _begin(self) -> tuple[str, float]:
        if self._lock.locked():
            raise TriageError("A triage run is already in progress. Wait for it to finish.")
        run_id = str(uuid.uuid4())
        set_correlation_id(run_id)
        return run_id, time.monotonic()

    async def _fetch(self, session: Session, rules: TriageRules) -> list[Message]:
        self._set_state(TriageState.FETCHING)
        self._status("Fetching unread messages…")
        return await self._transport.fetch_messages(session, rules.days_back)

    async def run(
        self,
        session: Session,
        rules: TriageRules,
        dry_run: bool = True,
    ) -> TriageResult:
        """Execute a full triage run.

        Args:
            session: Acting user and credential
            rules: Classification settings for this run
            dry_run: Compute everything but never call mark_as_read

        Returns:
            TriageResult with the ranked and low-priority lists

        Raises:
            TriageError: If a run is already in progress
            TransportError: If fetching or marking fails
        """
        run_id, start_time = self._begin()

        async with self._lock:
            logger.info(
                "triage_run_start",
                dry_run=dry_run,
                days_back=rules.days_back,
                backend=self._transport.name,
            )
            try:
                messages = await self._fetch(session, rules)

                if not messages:
                    self._set_state(TriageState.DONE)
                    self._status(
                        f"No unread messages found in the last {rules.days_back} day(s)."
                    )
                    self._status(INBOX_CLEAR)
                    logger.info("triage_run_inbox_clear")
                    return TriageResult(
                        dry_run=dry_run,
                        inbox_clear=True,
                        days_back=rules.days_back,
                        run_id=run_id,
                        duration_ms=int((time.monotonic() - start_time) * 1000),
                    )

                self._set_state(TriageState.SCORING)
                self._status(f"Scoring {len(messages)} message(s)…")
                now = self._clock()
                priority, low = partition(classify(m, rules, now) for m in messages)
                targets = mark_targets(low)

                logger.info(
                    "messages_scored",
                    fetched=len(messages),
                    priority=len(priority),
                    low_priority=len(low),
                )

                mark_result: MarkResult | None = None
                if not dry_run and targets:
                    self._set_state(TriageState.MARKING)
                    self._status(f"Marking {len(targets)} low-priority message(s) as read…")
                    mark_result = await self._transport.mark_as_read(session, targets)

                result = TriageResult(
                    priority_list=priority,
                    low_priority_list=low,
                    marked_count=len(targets),
                    dry_run=dry_run,
                    days_back=rules.days_back,
                    mark_result=mark_result,
                    run_id=run_id,
                    duration_ms=int((time.monotonic() - start_time) * 1000),
                )
                self._set_state(TriageState.DONE)
                self._status(summary_line(result))

                logger.info(
                    "triage_run_complete",
                    dry_run=dry_run,
                    priority=len(priority),
                    low_priority=len(low),
                    marked=result.marked_count,
                    mark_failures=len(mark_result.failed) if mark_result else 0,
                    duration_ms=result.duration_ms,
                )
                return result

            except Exception as e:
                self._set_state(TriageState.ERROR)
                logger.error("triage_run_failed", error=str(e), error_type=type(e).__name__)
                raise
            finally:
                set_correlation_id(None)

    async def mark_low_priority(self, session: Session, rules: TriageRules) -> MarkOnlyResult:
        """Fetch unread mail and mark every low-priority message as read.

        No ranking is produced and there is no dry-run mode.

        Raises:
            TriageError: If a run is already in progress
            TransportError: If fetching or marking fails
        """
        run_id, start_time = self._begin()

        async with self._lock:
            logger.info("mark_only_start", days_back=rules.days_back, backend=self._transport.name)
            try:
                messages = await self._fetch(session, rules)
                targets = mark_targets(m for m in messages if is_low_priority(m, rules))

                mark_result: MarkResult | None = None
                if targets:
                    self._set_state(TriageState.MARKING)
                    self._status(f"Marking {len(targets)} message(s) as read…")
                    mark_result = await self._transport.mark_as_read(session, targets)

                result = MarkOnlyResult(
                    marked_count=len(targets),
                    fetched_count=len(messages),
                    mark_result=mark_result,
                    run_id=run_id,
                    duration_ms=int((time.monotonic() - start_time) * 1000),
                )
                self._set_state(TriageState.DONE)
                self._status(mark_only_summary(result))

                logger.info(
                    "mark_only_complete",
                    fetched=result.fetched_count,
                    marked=result.marked_count,
                    duration_ms=result.duration_ms,
                )
                return result

            except Exception as e:
                self._set_state(TriageState.ERROR)
                logger.error("mark_only_failed", error=str(e), error_type=type(e).__name__)
                raise
            finally:
                set_correlation_id(None)
