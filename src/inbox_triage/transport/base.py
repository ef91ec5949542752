"""Abstract mail transport contract and backend selection.

A transport retrieves recent unread inbox messages, normalizes them and
applies bulk read-state updates. The triage engine talks only to this
interface; which backend is active is decided from configuration.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from inbox_triage.config_schema import DEFAULT_MAX_ITEMS
from inbox_triage.core.logging import get_logger
from inbox_triage.core.models import MarkResult, Message, Session

if TYPE_CHECKING:
    import requests

    from inbox_triage.config_schema import TransportConfig

logger = get_logger(__name__)


def since_timestamp(days_back: int, now: datetime | None = None) -> str:
    """UTC timestamp for "now minus days_back days" in filter format."""
    now = now or datetime.now(UTC)
    return (now - timedelta(days=days_back)).strftime("%Y-%m-%dT%H:%M:%SZ")


class MailTransport(ABC):
    """Mailbox access used by the triage engine.

    Attributes:
        name: Short backend name for logs ("graph", "ews")
        max_items: Upper bound on messages returned by fetch_unread
    """

    name: str = "abstract"

    def __init__(self, max_items: int = DEFAULT_MAX_ITEMS):
        self.max_items = max_items

    @abstractmethod
    async def fetch_unread(self, session: Session, days_back: int) -> list[Any]:
        """Retrieve raw unread inbox messages received in the last days_back days.

        Returns at most max_items records, newest first.

        Raises:
            TransportError: If the provider call fails
        """

    @abstractmethod
    def normalize(self, raw: Any, session: Session) -> Message:
        """Convert one raw record from fetch_unread into a Message."""

    @abstractmethod
    async def mark_as_read(self, session: Session, ids: Sequence[str]) -> MarkResult:
        """Set the read flag on the given message ids.

        An empty ids sequence is a successful no-op.

        Raises:
            TransportError: If the whole request fails
        """

    async def fetch_messages(self, session: Session, days_back: int) -> list[Message]:
        """Fetch and normalize in one step."""
        raw_messages = await self.fetch_unread(session, days_back)
        return [self.normalize(raw, session) for raw in raw_messages]


def create_transport(
    config: TransportConfig,
    http_session: requests.Session | None = None,
) -> MailTransport:
    """Build the transport selected by configuration.

    Args:
        config: transport section of AppConfig
        http_session: Optional requests.Session to share (tests, pooling)

    Returns:
        A GraphTransport or EwsTransport
    """
    from inbox_triage.transport.ews import EwsTransport
    from inbox_triage.transport.graph import GraphTransport
    from inbox_triage.transport.graph_client import GraphClient

    if config.backend == "ews":
        transport: MailTransport = EwsTransport(
            session=http_session,
            max_items=config.max_items,
            max_retries=config.max_retries,
            timeout=config.timeout_seconds,
        )
    else:
        client = GraphClient(
            session=http_session,
            max_retries=config.max_retries,
            timeout=config.timeout_seconds,
        )
        transport = GraphTransport(client, max_items=config.max_items)

    logger.debug("Transport selected", backend=transport.name, max_items=config.max_items)
    return transport
