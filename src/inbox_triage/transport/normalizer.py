"""Normalization of provider wire records into canonical Messages.

Two wire shapes are handled:
- Microsoft Graph JSON message resources (dicts)
- EWS FindItem <t:Message> elements (ElementTree elements)

Normalization never raises on missing optional fields. Absent values are
replaced by sentinels so the classifier always receives a valid Message.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from collections.abc import Iterable
from datetime import UTC, datetime
from email.utils import parseaddr
from typing import Any

from inbox_triage.core.logging import get_logger
from inbox_triage.core.models import (
    NO_SUBJECT,
    UNKNOWN_SENDER,
    Importance,
    Message,
    Session,
)

logger = get_logger(__name__)

EWS_TYPES_NS = "http://schemas.microsoft.com/exchange/services/2006/types"

# Graph's bodyPreview is at most 255 characters; EWS bodies are trimmed to match
PREVIEW_LENGTH = 255


def _t(tag: str) -> str:
    """Qualify a tag name with the EWS types namespace."""
    return f"{{{EWS_TYPES_NS}}}{tag}"


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def split_sender(value: str) -> tuple[str, str]:
    """Split a combined "Name <address>" value into (name, address).

    A bare address yields ("", address); a bare name yields (name, "").
    """
    value = (value or "").strip()
    if not value:
        return "", ""
    name, address = parseaddr(value)
    if address and "@" in address:
        return name.strip(), address.strip()
    return value, ""


def format_sender(name: str, address: str) -> str:
    """Render the display form of a sender.

    "Name <address>" when both are present and distinct, otherwise
    whichever one is present, otherwise "(unknown)".
    """
    name = (name or "").strip()
    address = (address or "").strip()
    if name and address and name.lower() != address.lower():
        return f"{name} <{address}>"
    return address or name or UNKNOWN_SENDER


def parse_received(value: str | None) -> datetime | None:
    """Parse an ISO 8601 timestamp into an aware UTC datetime.

    Returns None for missing or unparseable values.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Unparseable receive time", value=value[:40])
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def is_direct_recipient(user_address: str, to_addresses: Iterable[str]) -> bool:
    """True if the user's address exactly matches one of the To addresses."""
    user = (user_address or "").strip().lower()
    if not user:
        return False
    return any((address or "").strip().lower() == user for address in to_addresses)


def _preview(text: str | None) -> str:
    return " ".join((text or "").split())[:PREVIEW_LENGTH]


def _sender_parts(name: str, address: str) -> tuple[str, str]:
    """Resolve name/address, accepting a combined value in either slot."""
    if not address and "<" in name:
        name, address = split_sender(name)
    elif address and "<" in address:
        combined_name, address = split_sender(address)
        name = name or combined_name
    return name, address


# ---------------------------------------------------------------------------
# Microsoft Graph (REST/JSON)
# ---------------------------------------------------------------------------


def _graph_email(recipient: Any) -> tuple[str, str]:
    if not isinstance(recipient, dict):
        return "", ""
    email = recipient.get("emailAddress") or {}
    return (email.get("name") or "").strip(), (email.get("address") or "").strip()


def normalize_graph_message(raw: dict[str, Any], session: Session) -> Message:
    """Convert a Graph message resource into a Message.

    Args:
        raw: Message dict as returned by /me/mailFolders/inbox/messages
        session: Acting user's session (for direct-recipient matching)

    Returns:
        Normalized Message
    """
    name, address = _graph_email(raw.get("from") or raw.get("sender"))
    name, address = _sender_parts(name, address)

    to_addresses = [_graph_email(r)[1] for r in raw.get("toRecipients") or []]

    return Message(
        id=raw.get("id") or "",
        subject=(raw.get("subject") or "").strip() or NO_SUBJECT,
        from_display=format_sender(name, address),
        from_address=address.lower(),
        received_at=parse_received(raw.get("receivedDateTime")),
        importance=Importance.parse(raw.get("importance")),
        body_preview=_preview(raw.get("bodyPreview")),
        is_direct_recipient=is_direct_recipient(session.user_address, to_addresses),
    )


# ---------------------------------------------------------------------------
# Exchange Web Services (SOAP/XML)
# ---------------------------------------------------------------------------


def _text(element: ET.Element | None, path: str) -> str:
    if element is None:
        return ""
    found = element.find(path)
    if found is None or found.text is None:
        return ""
    return found.text.strip()


def normalize_ews_message(item: ET.Element, session: Session) -> Message:
    """Convert an EWS <t:Message> element into a Message.

    Args:
        item: The t:Message element from a FindItem response
        session: Acting user's session (for direct-recipient matching)

    Returns:
        Normalized Message
    """
    item_id = item.find(_t("ItemId"))

    mailbox = item.find(f"{_t('From')}/{_t('Mailbox')}")
    name, address = _sender_parts(_text(mailbox, _t("Name")), _text(mailbox, _t("EmailAddress")))

    to_addresses = [
        _text(mb, _t("EmailAddress"))
        for mb in item.iterfind(f"{_t('ToRecipients')}/{_t('Mailbox')}")
    ]

    return Message(
        id=item_id.get("Id", "") if item_id is not None else "",
        subject=_text(item, _t("Subject")) or NO_SUBJECT,
        from_display=format_sender(name, address),
        from_address=address.lower(),
        received_at=parse_received(_text(item, _t("DateTimeReceived"))),
        importance=Importance.parse(_text(item, _t("Importance"))),
        body_preview=_preview(_text(item, _t("Body"))),
        is_direct_recipient=is_direct_recipient(session.user_address, to_addresses),
    )
