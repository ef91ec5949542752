"""Microsoft Graph (REST/JSON) mail transport.

Fetches unread inbox messages with an OData filter and marks messages as
read with one PATCH per id. The PATCH requests run concurrently and are
best-effort: a failed id is recorded in the MarkResult and does not stop
the others.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from inbox_triage.config_schema import DEFAULT_MAX_ITEMS
from inbox_triage.core.errors import TransportError
from inbox_triage.core.logging import get_logger, short_id
from inbox_triage.core.models import MarkResult, Message, Session
from inbox_triage.transport.base import MailTransport, since_timestamp
from inbox_triage.transport.graph_client import GraphClient
from inbox_triage.transport.normalizer import normalize_graph_message

logger = get_logger(__name__)

MESSAGE_FIELDS = (
    "id,subject,from,sender,toRecipients,receivedDateTime,importance,bodyPreview,isRead"
)

# Upper bound on PATCH requests in flight at once
MAX_CONCURRENT_UPDATES = 8


class GraphTransport(MailTransport):
    """REST transport over the Microsoft Graph mail API."""

    name = "graph"

    def __init__(self, client: GraphClient, max_items: int = DEFAULT_MAX_ITEMS):
        super().__init__(max_items=max_items)
        self.client = client

    def build_query(self, days_back: int, now: datetime | None = None) -> dict[str, Any]:
        """Query parameters for the unread-inbox listing."""
        since = since_timestamp(days_back, now)
        return {
            # Graph rejects an $orderby property that is not the first $filter clause
            "$filter": f"receivedDateTime ge {since} and isRead eq false",
            "$orderby": "receivedDateTime desc",
            "$select": MESSAGE_FIELDS,
            "$top": min(self.max_items, 50),
        }

    async def fetch_unread(self, session: Session, days_back: int) -> list[dict[str, Any]]:
        params = self.build_query(days_back)

        logger.debug("Listing unread messages", days_back=days_back, max_items=self.max_items)

        messages = await asyncio.to_thread(
            self.client.paginate,
            session.credential,
            "/me/mailFolders/inbox/messages",
            params,
            self.max_items,
        )

        logger.info("Unread messages listed", backend=self.name, count=len(messages))
        return messages

    def normalize(self, raw: dict[str, Any], session: Session) -> Message:
        return normalize_graph_message(raw, session)

    def _mark_one(self, session: Session, message_id: str) -> None:
        self.client.patch(
            session.credential,
            f"/me/messages/{message_id}",
            json={"isRead": True},
        )

    async def mark_as_read(self, session: Session, ids: Sequence[str]) -> MarkResult:
        """PATCH isRead=true on every id, concurrently and best-effort.

        Waits for every request to settle. Provider failures for single ids
        are collected into MarkResult.failed; any other exception is
        re-raised once all requests have settled.
        """
        if not ids:
            return MarkResult()

        semaphore = asyncio.Semaphore(MAX_CONCURRENT_UPDATES)

        async def mark(message_id: str) -> None:
            async with semaphore:
                await asyncio.to_thread(self._mark_one, session, message_id)

        logger.info("Marking messages as read", backend=self.name, count=len(ids))

        outcomes = await asyncio.gather(*(mark(i) for i in ids), return_exceptions=True)

        succeeded: set[str] = set()
        failed: dict[str, str] = {}
        unexpected: BaseException | None = None

        for message_id, outcome in zip(ids, outcomes, strict=True):
            if outcome is None:
                succeeded.add(message_id)
            elif isinstance(outcome, TransportError):
                failed[message_id] = str(outcome)
                logger.warning(
                    "Failed to mark message as read",
                    message_id=short_id(message_id),
                    status_code=outcome.status_code,
                    error_code=outcome.error_code,
                )
            elif unexpected is None:
                unexpected = outcome

        if unexpected is not None:
            raise unexpected

        result = MarkResult(requested=len(ids), succeeded=frozenset(succeeded), failed=failed)
        logger.info(
            "Mark as read complete",
            backend=self.name,
            requested=result.requested,
            succeeded=result.succeeded_count,
            failed=len(result.failed),
        )
        return result
