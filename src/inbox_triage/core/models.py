"""Domain models shared by the transports, classifier and triage engine.

All models are immutable. A Message is built once per retrieval by the
normalizer and discarded at the end of the run; nothing is persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from inbox_triage.core.errors import PartialMutationWarning

NO_SUBJECT = "(no subject)"
UNKNOWN_SENDER = "(unknown)"


class Importance(Enum):
    """Provider importance flag on a message."""

    LOW = "Low"
    NORMAL = "Normal"
    HIGH = "High"

    @classmethod
    def parse(cls, value: str | None) -> Importance:
        """Parse a wire importance value ("high", "Low", ...).

        Unknown or missing values map to NORMAL.
        """
        if not value:
            return cls.NORMAL
        lowered = value.strip().lower()
        for member in cls:
            if member.value.lower() == lowered:
                return member
        return cls.NORMAL


@dataclass(frozen=True, slots=True)
class Credential:
    """Bearer token plus the endpoint it is valid for."""

    token: str = field(repr=False)
    base_url: str


@dataclass(frozen=True, slots=True)
class Session:
    """The acting user and their credential, threaded through every call."""

    user_address: str
    credential: Credential


@dataclass(frozen=True, slots=True)
class Message:
    """Canonical unread message, independent of the transport it came from.

    Attributes:
        id: Provider-assigned opaque identifier (used for mark-as-read)
        subject: Subject line, or "(no subject)"
        from_display: "Name <address>" or the best available fallback
        from_address: Lowercased sender address, may be empty
        received_at: Timezone-aware receive time, None if absent/unparseable
        importance: Provider importance flag
        body_preview: Short plain-text excerpt, may be empty
        is_direct_recipient: Acting user is in the To list (not only Cc)
    """

    id: str
    subject: str = NO_SUBJECT
    from_display: str = UNKNOWN_SENDER
    from_address: str = ""
    received_at: datetime | None = None
    importance: Importance = Importance.NORMAL
    body_preview: str = ""
    is_direct_recipient: bool = False


@dataclass(frozen=True, slots=True)
class ScoredMessage:
    """A Message with its classification and score."""

    message: Message
    score: int
    is_low_priority: bool

    @property
    def id(self) -> str:
        return self.message.id


@dataclass(frozen=True)
class MarkResult:
    """Outcome of a bulk mark-as-read call.

    Attributes:
        requested: Number of ids submitted
        succeeded: Ids the provider accepted
        failed: Id -> failure reason for ids the provider rejected
    """

    requested: int = 0
    succeeded: frozenset[str] = frozenset()
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def succeeded_count(self) -> int:
        return len(self.succeeded)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    def warnings(self) -> list[PartialMutationWarning]:
        """Build one PartialMutationWarning per failed id."""
        return [
            PartialMutationWarning(f"Failed to mark message as read: {reason}", message_id=msg_id)
            for msg_id, reason in self.failed.items()
        ]


@dataclass(frozen=True)
class TriageResult:
    """Result of a full triage run.

    marked_count is the number of ids submitted for marking in a live run,
    or the number that would be submitted in a dry run. It is not a count
    of confirmed updates; see mark_result for that.
    """

    priority_list: tuple[ScoredMessage, ...] = ()
    low_priority_list: tuple[ScoredMessage, ...] = ()
    marked_count: int = 0
    dry_run: bool = True
    inbox_clear: bool = False
    days_back: int = 7
    mark_result: MarkResult | None = None
    run_id: str = ""
    duration_ms: int = 0


@dataclass(frozen=True)
class MarkOnlyResult:
    """Result of a mark-only run (no ranked list is produced)."""

    marked_count: int = 0
    fetched_count: int = 0
    mark_result: MarkResult | None = None
    run_id: str = ""
    duration_ms: int = 0
