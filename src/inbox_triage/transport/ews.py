"""Exchange Web Services (SOAP/XML) mail transport.

Fetches unread inbox messages with a single FindItem request and marks
messages as read with a single UpdateItem request carrying one ItemChange
per id. UpdateItem uses ConflictResolution="AutoResolve", so concurrent
changes to an item are resolved by the server rather than reported.

Envelopes are built with ElementTree, which escapes item ids and other
values embedded in the XML.
"""

from __future__ import annotations

import asyncio
import random
import time
import xml.etree.ElementTree as ET
from collections.abc import Sequence
from datetime import datetime

import requests

from inbox_triage.config_schema import DEFAULT_MAX_ITEMS
from inbox_triage.core.errors import TransportError
from inbox_triage.core.logging import get_logger, short_id
from inbox_triage.core.models import Credential, MarkResult, Message, Session
from inbox_triage.transport.base import MailTransport, since_timestamp
from inbox_triage.transport.normalizer import normalize_ews_message

logger = get_logger(__name__)

SOAP_NS = "http://schemas.xmlsoap.org/soap/envelope/"
TYPES_NS = "http://schemas.microsoft.com/exchange/services/2006/types"
MESSAGES_NS = "http://schemas.microsoft.com/exchange/services/2006/messages"

ET.register_namespace("soap", SOAP_NS)
ET.register_namespace("t", TYPES_NS)
ET.register_namespace("m", MESSAGES_NS)

DEFAULT_RETRY_DELAYS = [1.0, 2.0, 4.0]

# HTTP statuses worth retrying; EWS reports SOAP faults as 500, which are not
RETRYABLE_STATUSES = {429, 502, 503, 504}


def _s(tag: str) -> str:
    return f"{{{SOAP_NS}}}{tag}"


def _t(tag: str) -> str:
    return f"{{{TYPES_NS}}}{tag}"


def _m(tag: str) -> str:
    return f"{{{MESSAGES_NS}}}{tag}"


def _envelope() -> tuple[ET.Element, ET.Element]:
    envelope = ET.Element(_s("Envelope"))
    body = ET.SubElement(envelope, _s("Body"))
    return envelope, body


def _serialize(envelope: ET.Element) -> bytes:
    return ET.tostring(envelope, encoding="utf-8", xml_declaration=True)


def _field_uri(parent: ET.Element, uri: str) -> None:
    ET.SubElement(parent, _t("FieldURI"), FieldURI=uri)


def build_find_item_request(since: str, max_items: int) -> bytes:
    """FindItem envelope: unread inbox items received after ``since``, newest first."""
    envelope, body = _envelope()
    find = ET.SubElement(body, _m("FindItem"), Traversal="Shallow")

    shape = ET.SubElement(find, _m("ItemShape"))
    ET.SubElement(shape, _t("BaseShape")).text = "AllProperties"
    ET.SubElement(shape, _t("BodyType")).text = "Text"

    ET.SubElement(
        find,
        _m("IndexedPageItemView"),
        MaxEntriesReturned=str(max_items),
        Offset="0",
        BasePoint="Beginning",
    )

    restriction = ET.SubElement(find, _m("Restriction"))
    both = ET.SubElement(restriction, _t("And"))

    unread = ET.SubElement(both, _t("IsEqualTo"))
    _field_uri(unread, "message:IsRead")
    constant = ET.SubElement(unread, _t("FieldURIOrConstant"))
    ET.SubElement(constant, _t("Constant"), Value="false")

    recent = ET.SubElement(both, _t("IsGreaterThan"))
    _field_uri(recent, "item:DateTimeReceived")
    constant = ET.SubElement(recent, _t("FieldURIOrConstant"))
    ET.SubElement(constant, _t("Constant"), Value=since)

    sort = ET.SubElement(find, _m("SortOrder"))
    order = ET.SubElement(sort, _t("FieldOrder"), Order="Descending")
    _field_uri(order, "item:DateTimeReceived")

    folders = ET.SubElement(find, _m("ParentFolderIds"))
    ET.SubElement(folders, _t("DistinguishedFolderId"), Id="inbox")

    return _serialize(envelope)


def build_update_item_request(ids: Sequence[str]) -> bytes:
    """UpdateItem envelope setting message:IsRead=true on every id."""
    envelope, body = _envelope()
    update = ET.SubElement(
        body,
        _m("UpdateItem"),
        MessageDisposition="SaveOnly",
        ConflictResolution="AutoResolve",
    )
    changes = ET.SubElement(update, _m("ItemChanges"))

    for item_id in ids:
        change = ET.SubElement(changes, _t("ItemChange"))
        ET.SubElement(change, _t("ItemId"), Id=item_id)
        updates = ET.SubElement(change, _t("Updates"))
        set_field = ET.SubElement(updates, _t("SetItemField"))
        _field_uri(set_field, "message:IsRead")
        message = ET.SubElement(set_field, _t("Message"))
        ET.SubElement(message, _t("IsRead")).text = "true"

    return _serialize(envelope)


def parse_envelope(content: bytes, status_code: int | None = None) -> ET.Element:
    """Parse a SOAP response and raise on SOAP faults.

    status_code, when given, is carried on any TransportError raised here.

    Raises:
        TransportError: If the body is not XML or contains a soap:Fault
    """
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        prefix = f"HTTP {status_code}: " if status_code else ""
        raise TransportError(
            f"EWS returned a malformed XML response ({prefix}{e})", status_code=status_code
        ) from e

    fault = root.find(f"{_s('Body')}/{_s('Fault')}")
    if fault is not None:
        fault_string = (fault.findtext("faultstring") or "").strip() or "SOAP fault"
        response_code = None
        for element in fault.iter():
            if element.tag.endswith("ResponseCode") and element.text:
                response_code = element.text.strip()
                break
        raise TransportError(
            f"EWS SOAP fault: {fault_string}",
            status_code=status_code,
            error_code=response_code,
        )

    return root


def _response_messages(root: ET.Element, tag: str) -> list[ET.Element]:
    return list(root.iter(_m(tag)))


def _response_error(message: ET.Element) -> tuple[str, str]:
    code = (message.findtext(_m("ResponseCode")) or "").strip() or "unknown"
    text = (message.findtext(_m("MessageText")) or "").strip() or code
    return code, text


def parse_find_item_response(content: bytes) -> list[ET.Element]:
    """Extract the t:Message elements from a FindItem response.

    Raises:
        TransportError: On SOAP faults or an error ResponseClass
    """
    root = parse_envelope(content)

    items: list[ET.Element] = []
    for message in _response_messages(root, "FindItemResponseMessage"):
        if message.get("ResponseClass") == "Error":
            code, text = _response_error(message)
            raise TransportError(f"EWS FindItem failed: {text}", error_code=code)
        items.extend(message.iter(_t("Message")))
    return items


def parse_update_item_response(content: bytes, ids: Sequence[str]) -> MarkResult:
    """Map UpdateItem response messages (one per ItemChange, in order) onto ids.

    Raises:
        TransportError: On SOAP faults
    """
    root = parse_envelope(content)
    messages = _response_messages(root, "UpdateItemResponseMessage")

    succeeded: set[str] = set()
    failed: dict[str, str] = {}
    for index, item_id in enumerate(ids):
        if index >= len(messages):
            failed[item_id] = "EWS UpdateItem returned no response for this item"
            continue
        message = messages[index]
        if message.get("ResponseClass") == "Error":
            code, text = _response_error(message)
            failed[item_id] = f"{code}: {text}"
        else:
            succeeded.add(item_id)

    return MarkResult(requested=len(ids), succeeded=frozenset(succeeded), failed=failed)


class EwsTransport(MailTransport):
    """SOAP transport over Exchange Web Services.

    Attributes:
        session: requests.Session used for connection pooling
        max_retries: Retries for timeouts, connection errors and busy statuses
        timeout: Per-request timeout in seconds
    """

    name = "ews"

    def __init__(
        self,
        session: requests.Session | None = None,
        max_items: int = DEFAULT_MAX_ITEMS,
        max_retries: int = 3,
        timeout: float = 30.0,
        retry_delays: list[float] | None = None,
    ):
        super().__init__(max_items=max_items)
        self.session = session or requests.Session()
        self.max_retries = max_retries
        self.timeout = timeout
        self.retry_delays = retry_delays or DEFAULT_RETRY_DELAYS

    def _retry_delay(self, attempt: int) -> float:
        base_delay = self.retry_delays[min(attempt, len(self.retry_delays) - 1)]
        return base_delay + base_delay * 0.2 * (2 * random.random() - 1)

    def _post(self, credential: Credential, payload: bytes, operation: str) -> bytes:
        """POST a SOAP envelope and return the raw response body.

        Raises:
            TransportError: For HTTP errors, timeouts and connection failures
        """
        headers = {
            "Authorization": f"Bearer {credential.token}",
            "Content-Type": "text/xml; charset=utf-8",
            "Accept": "text/xml",
        }

        for attempt in range(self.max_retries + 1):
            logger.debug("EWS request", operation=operation, attempt=attempt + 1)
            try:
                response = self.session.post(
                    credential.base_url,
                    data=payload,
                    headers=headers,
                    timeout=self.timeout,
                )
            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
                if attempt < self.max_retries:
                    delay = self._retry_delay(attempt)
                    logger.warning(
                        "EWS request failed, retrying",
                        operation=operation,
                        attempt=attempt + 1,
                        error=str(e),
                        delay=delay,
                    )
                    time.sleep(delay)
                    continue
                raise TransportError(
                    f"EWS {operation} request failed after {self.max_retries} retries: {e}. "
                    "Check your network connection and the EWS endpoint URL.",
                ) from e

            if response.status_code in RETRYABLE_STATUSES and attempt < self.max_retries:
                delay = self._retry_delay(attempt)
                logger.warning(
                    "Retrying EWS request",
                    operation=operation,
                    status_code=response.status_code,
                    attempt=attempt + 1,
                    delay=delay,
                )
                time.sleep(delay)
                continue

            if response.status_code == 500 and response.content:
                # SOAP faults come back as 500; surface the fault text
                parse_envelope(response.content, status_code=response.status_code)

            if response.status_code >= 400:
                logger.error(
                    "EWS error",
                    operation=operation,
                    status_code=response.status_code,
                )
                if response.status_code == 401:
                    message = (
                        f"EWS {operation} failed (401): the access token was rejected. "
                        "Clear the token cache and re-authenticate."
                    )
                else:
                    message = (
                        f"EWS {operation} failed ({response.status_code}): "
                        f"{(response.text or '')[:200]}"
                    )
                raise TransportError(message, status_code=response.status_code)

            return response.content

        raise TransportError(f"EWS {operation} failed after {self.max_retries} retries")

    def _find_unread(self, session: Session, since: str) -> list[ET.Element]:
        payload = build_find_item_request(since, self.max_items)
        content = self._post(session.credential, payload, "FindItem")
        return parse_find_item_response(content)[: self.max_items]

    async def fetch_unread(
        self, session: Session, days_back: int, now: datetime | None = None
    ) -> list[ET.Element]:
        since = since_timestamp(days_back, now)
        logger.debug("Finding unread messages", days_back=days_back, since=since)

        items = await asyncio.to_thread(self._find_unread, session, since)

        logger.info("Unread messages listed", backend=self.name, count=len(items))
        return items

    def normalize(self, raw: ET.Element, session: Session) -> Message:
        return normalize_ews_message(raw, session)

    def _update_read(self, session: Session, ids: Sequence[str]) -> MarkResult:
        payload = build_update_item_request(ids)
        content = self._post(session.credential, payload, "UpdateItem")
        return parse_update_item_response(content, ids)

    async def mark_as_read(self, session: Session, ids: Sequence[str]) -> MarkResult:
        """Mark all ids as read in one UpdateItem request."""
        if not ids:
            return MarkResult()

        logger.info("Marking messages as read", backend=self.name, count=len(ids))
        result = await asyncio.to_thread(self._update_read, session, list(ids))

        for message_id, reason in result.failed.items():
            logger.warning(
                "EWS rejected read update",
                message_id=short_id(message_id),
                reason=reason[:200],
            )
        logger.info(
            "Mark as read complete",
            backend=self.name,
            requested=result.requested,
            succeeded=result.succeeded_count,
            failed=len(result.failed),
        )
        return result
