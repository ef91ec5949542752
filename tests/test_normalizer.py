"""Tests for converting Graph and EWS wire records into Messages."""

import xml.etree.ElementTree as ET
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import pytest

from inbox_triage.core.models import NO_SUBJECT, UNKNOWN_SENDER, Importance, Session
from inbox_triage.transport.normalizer import (
    PREVIEW_LENGTH,
    format_sender,
    is_direct_recipient,
    normalize_ews_message,
    normalize_graph_message,
    parse_received,
    split_sender,
)

T = "http://schemas.microsoft.com/exchange/services/2006/types"


def _ews_item(body: str) -> ET.Element:
    return ET.fromstring(f'<t:Message xmlns:t="{T}">{body}</t:Message>')


class TestSenderHelpers:
    """Tests for sender splitting and formatting."""

    def test_format_name_and_address(self) -> None:
        assert format_sender("Jane Doe", "jane@corp.com") == "Jane Doe <jane@corp.com>"

    def test_format_same_name_and_address(self) -> None:
        assert format_sender("JANE@corp.com", "jane@corp.com") == "jane@corp.com"

    def test_format_address_only(self) -> None:
        assert format_sender("", "jane@corp.com") == "jane@corp.com"

    def test_format_name_only(self) -> None:
        assert format_sender("Jane Doe", "") == "Jane Doe"

    def test_format_nothing(self) -> None:
        assert format_sender("", "") == UNKNOWN_SENDER

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("Jane Doe <jane@corp.com>", ("Jane Doe", "jane@corp.com")),
            ("jane@corp.com", ("", "jane@corp.com")),
            ("Jane Doe", ("Jane Doe", "")),
            ("", ("", "")),
        ],
    )
    def test_split_sender(self, value: str, expected: tuple[str, str]) -> None:
        assert split_sender(value) == expected


class TestParseReceived:
    """Tests for receive-time parsing."""

    def test_z_suffix(self) -> None:
        assert parse_received("2025-03-10T11:00:00Z") == datetime(2025, 3, 10, 11, tzinfo=UTC)

    def test_offset_converted_to_utc(self) -> None:
        parsed = parse_received("2025-03-10T13:00:00+02:00")

        assert parsed == datetime(2025, 3, 10, 11, tzinfo=UTC)

    def test_naive_assumed_utc(self) -> None:
        assert parse_received("2025-03-10T11:00:00") == datetime(2025, 3, 10, 11, tzinfo=UTC)

    @pytest.mark.parametrize("value", [None, "", "yesterday", "2025-13-45"])
    def test_missing_or_invalid_is_none(self, value: str | None) -> None:
        assert parse_received(value) is None


class TestDirectRecipient:
    """Tests for is_direct_recipient."""

    def test_exact_case_insensitive_match(self) -> None:
        assert is_direct_recipient("me@company.com", ["Other@x.com", " ME@Company.com "])

    def test_substring_is_not_a_match(self) -> None:
        assert not is_direct_recipient("me@company.com", ["team-me@company.com.au"])

    def test_empty_user_never_matches(self) -> None:
        assert not is_direct_recipient("", ["", "a@b.com"])


class TestNormalizeGraphMessage:
    """Tests for normalize_graph_message."""

    def test_full_message(
        self, session: Session, make_graph_message: Callable[..., dict[str, Any]]
    ) -> None:
        raw = make_graph_message(
            msg_id="AAMk-1",
            subject="  Budget review ",
            sender_email="Jane@Corp.com",
            sender_name="Jane Doe",
            to=["me@company.com"],
            importance="high",
            body_preview="Can you\n\n  check this?",
        )

        message = normalize_graph_message(raw, session)

        assert message.id == "AAMk-1"
        assert message.subject == "Budget review"
        assert message.from_display == "Jane Doe <Jane@Corp.com>"
        assert message.from_address == "jane@corp.com"
        assert message.received_at == datetime(2025, 3, 10, 11, tzinfo=UTC)
        assert message.importance is Importance.HIGH
        assert message.body_preview == "Can you check this?"
        assert message.is_direct_recipient is True

    def test_missing_fields_use_sentinels(self, session: Session) -> None:
        message = normalize_graph_message({"id": "x"}, session)

        assert message.subject == NO_SUBJECT
        assert message.from_display == UNKNOWN_SENDER
        assert message.from_address == ""
        assert message.received_at is None
        assert message.importance is Importance.NORMAL
        assert message.body_preview == ""
        assert message.is_direct_recipient is False

    def test_null_subject(
        self, session: Session, make_graph_message: Callable[..., dict[str, Any]]
    ) -> None:
        message = normalize_graph_message(make_graph_message(subject=None), session)

        assert message.subject == NO_SUBJECT

    def test_cc_only_is_not_direct(
        self, session: Session, make_graph_message: Callable[..., dict[str, Any]]
    ) -> None:
        raw = make_graph_message(to=["team@company.com"])
        raw["ccRecipients"] = [{"emailAddress": {"address": "me@company.com"}}]

        assert normalize_graph_message(raw, session).is_direct_recipient is False

    def test_sender_fallback_when_from_missing(self, session: Session) -> None:
        raw = {"id": "x", "sender": {"emailAddress": {"address": "bot@corp.com"}}}

        message = normalize_graph_message(raw, session)

        assert message.from_address == "bot@corp.com"
        assert message.from_display == "bot@corp.com"

    def test_combined_sender_value(self, session: Session) -> None:
        raw = {"id": "x", "from": {"emailAddress": {"name": "Jane Doe <Jane@Corp.com>"}}}

        message = normalize_graph_message(raw, session)

        assert message.from_address == "jane@corp.com"
        assert message.from_display == "Jane Doe <Jane@Corp.com>"

    def test_preview_truncated(
        self, session: Session, make_graph_message: Callable[..., dict[str, Any]]
    ) -> None:
        raw = make_graph_message(body_preview="word " * 200)

        assert len(normalize_graph_message(raw, session).body_preview) == PREVIEW_LENGTH


class TestNormalizeEwsMessage:
    """Tests for normalize_ews_message."""

    def test_full_item(self, ews_session: Session) -> None:
        item = _ews_item(
            '<t:ItemId Id="AAMkEws=" ChangeKey="CQAA"/>'
            "<t:Subject>Decision needed &amp; soon</t:Subject>"
            "<t:Body BodyType=\"Text\">Let me know\nby Friday</t:Body>"
            "<t:DateTimeReceived>2025-03-10T11:00:00Z</t:DateTimeReceived>"
            "<t:Importance>Low</t:Importance>"
            "<t:From><t:Mailbox><t:Name>Boss</t:Name>"
            "<t:EmailAddress>Boss@Company.com</t:EmailAddress></t:Mailbox></t:From>"
            "<t:ToRecipients><t:Mailbox><t:EmailAddress>me@company.com</t:EmailAddress>"
            "</t:Mailbox></t:ToRecipients>"
        )

        message = normalize_ews_message(item, ews_session)

        assert message.id == "AAMkEws="
        assert message.subject == "Decision needed & soon"
        assert message.from_display == "Boss <Boss@Company.com>"
        assert message.from_address == "boss@company.com"
        assert message.received_at == datetime(2025, 3, 10, 11, tzinfo=UTC)
        assert message.importance is Importance.LOW
        assert message.body_preview == "Let me know by Friday"
        assert message.is_direct_recipient is True

    def test_sparse_item(self, ews_session: Session) -> None:
        message = normalize_ews_message(_ews_item(""), ews_session)

        assert message.id == ""
        assert message.subject == NO_SUBJECT
        assert message.from_display == UNKNOWN_SENDER
        assert message.received_at is None
        assert message.importance is Importance.NORMAL
        assert message.is_direct_recipient is False

    def test_cc_recipient_is_not_direct(self, ews_session: Session) -> None:
        item = _ews_item(
            "<t:CcRecipients><t:Mailbox><t:EmailAddress>me@company.com</t:EmailAddress>"
            "</t:Mailbox></t:CcRecipients>"
        )

        assert normalize_ews_message(item, ews_session).is_direct_recipient is False
