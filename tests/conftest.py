"""Pytest fixtures and configuration for Inbox Triage tests.

Provides common fixtures for configuration, sessions, rules and messages.
"""

import os
from collections.abc import Callable, Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from inbox_triage.classifier.rules import TriageRules, resolve_rules
from inbox_triage.config import CONFIG_PATH_ENV, reset_config
from inbox_triage.core.models import Credential, Importance, Message, Session

FIXED_NOW = datetime(2025, 3, 10, 12, 0, tzinfo=UTC)
USER_ADDRESS = "me@company.com"


@pytest.fixture(autouse=True)
def reset_config_singleton() -> Generator[None, None, None]:
    """Reset the config singleton before each test."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def now() -> datetime:
    """Fixed reference time for recency scoring."""
    return FIXED_NOW


@pytest.fixture
def session() -> Session:
    """Return a session for the acting user against the Graph endpoint."""
    return Session(
        user_address=USER_ADDRESS,
        credential=Credential(token="test-token", base_url="https://graph.example.test/v1.0"),
    )


@pytest.fixture
def ews_session() -> Session:
    """Return a session for the acting user against an EWS endpoint."""
    return Session(
        user_address=USER_ADDRESS,
        credential=Credential(
            token="test-token", base_url="https://ews.example.test/EWS/Exchange.asmx"
        ),
    )


@pytest.fixture
def rules() -> TriageRules:
    """Return rules built from the compiled-in defaults."""
    return resolve_rules()


def _make_message(
    msg_id: str = "msg-001",
    subject: str = "Quarterly plan",
    from_address: str = "colleague@company.com",
    from_display: str | None = None,
    hours_ago: float | None = 30,
    importance: Importance = Importance.NORMAL,
    body_preview: str = "",
    is_direct_recipient: bool = False,
    now: datetime = FIXED_NOW,
) -> Message:
    """Create a normalized Message for testing."""
    return Message(
        id=msg_id,
        subject=subject,
        from_display=from_display or from_address,
        from_address=from_address,
        received_at=None if hours_ago is None else now - timedelta(hours=hours_ago),
        importance=importance,
        body_preview=body_preview,
        is_direct_recipient=is_direct_recipient,
    )


def _make_graph_message(
    msg_id: str = "msg-001",
    subject: str | None = "Quarterly plan",
    sender_email: str = "colleague@company.com",
    sender_name: str = "Colleague",
    to: list[str] | None = None,
    received: str | None = "2025-03-10T11:00:00Z",
    importance: str = "normal",
    body_preview: str = "",
) -> dict[str, Any]:
    """Create a raw Graph API message dict for testing."""
    return {
        "id": msg_id,
        "subject": subject,
        "from": {"emailAddress": {"address": sender_email, "name": sender_name}},
        "toRecipients": [
            {"emailAddress": {"address": address, "name": ""}} for address in (to or [])
        ],
        "receivedDateTime": received,
        "importance": importance,
        "bodyPreview": body_preview,
        "isRead": False,
    }


@pytest.fixture
def temp_config_dir(tmp_path: Path) -> Path:
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def sample_config_yaml() -> str:
    """Return a minimal valid config.yaml content."""
    return """
schema_version: 1

auth:
  client_id: "test-client-id"
  tenant_id: "test-tenant-id"

transport:
  backend: "ews"
  max_items: 25

rules:
  high_senders: "boss@company.com"
  days_back: 14

user_email: "me@company.com"
"""


@pytest.fixture
def config_file(temp_config_dir: Path, sample_config_yaml: str) -> Path:
    """Create a temporary config file with valid content."""
    config_path = temp_config_dir / "config.yaml"
    config_path.write_text(sample_config_yaml)
    return config_path


@pytest.fixture
def set_config_env(config_file: Path) -> Generator[None, None, None]:
    """Point INBOX_TRIAGE_CONFIG_PATH at the temporary config file."""
    old_value = os.environ.get(CONFIG_PATH_ENV)
    os.environ[CONFIG_PATH_ENV] = str(config_file)
    yield
    if old_value is None:
        del os.environ[CONFIG_PATH_ENV]
    else:
        os.environ[CONFIG_PATH_ENV] = old_value


@pytest.fixture
def make_message() -> Callable[..., Message]:
    """Return the Message factory."""
    return _make_message


@pytest.fixture
def make_graph_message() -> Callable[..., dict[str, Any]]:
    """Return the raw Graph message factory."""
    return _make_graph_message
