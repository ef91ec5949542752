"""Pydantic configuration schema for Inbox Triage.

This module defines the configuration schema that mirrors config.yaml structure.
All configuration is validated against these models when it is loaded.

Usage:
    from inbox_triage.config_schema import AppConfig

    config = AppConfig(**yaml_data)
"""

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

# Current schema version - increment when adding new required fields
CURRENT_SCHEMA_VERSION = 1

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
EWS_URL = "https://outlook.office365.com/EWS/Exchange.asmx"

# Compiled-in keyword lists, in the same comma-separated form a user types
DEFAULT_HIGH_SENDERS = "yourboss@company.com, ceo@company.com"
DEFAULT_LOW_SENDERS = (
    "noreply@, notifications@, newsletter@, donotreply@, no-reply@, "
    "alerts@, updates@, mailer@, promo@, marketing@"
)
DEFAULT_HIGH_SUBJECTS = "urgent, action required, decision needed, approval, critical, important"
DEFAULT_LOW_SUBJECTS = (
    "unsubscribe, newsletter, your receipt, subscription, sale, offer, free, "
    "webinar, digest, weekly update, monthly report, automated, notification"
)
DEFAULT_DAYS_BACK = 7
DEFAULT_MAX_ITEMS = 50

Backend = Literal["graph", "ews"]


class AuthConfig(BaseModel):
    """Azure AD authentication configuration."""

    client_id: str = Field(
        default="",
        description="Azure AD Application (client) ID",
    )
    tenant_id: str = Field(
        default="common",
        description="Azure AD Directory (tenant) ID or 'common' for personal accounts",
    )
    scopes: list[str] | None = Field(
        default=None,
        description="Permission scopes (defaults depend on the transport backend)",
    )
    token_cache_path: str = Field(
        default="data/token_cache.json",
        description="Path to MSAL token cache file",
    )

    @field_validator("token_cache_path")
    @classmethod
    def validate_token_cache_path(cls, v: str) -> str:
        """Ensure token cache path doesn't contain path traversal."""
        if not v or not v.strip():
            raise ValueError("Token cache path cannot be empty")
        if ".." in v:
            raise ValueError("Token cache path cannot contain '..' (path traversal)")
        return v


class TransportConfig(BaseModel):
    """Mail provider transport configuration."""

    backend: Backend = Field(
        default="graph",
        description="'graph' for the REST/JSON API, 'ews' for the SOAP/XML API",
    )
    graph_base_url: str = Field(
        default=GRAPH_BASE_URL,
        description="Microsoft Graph API base URL",
    )
    ews_url: str = Field(
        default=EWS_URL,
        description="Exchange Web Services endpoint",
    )
    max_items: int = Field(
        default=DEFAULT_MAX_ITEMS,
        ge=1,
        le=1000,
        description="Maximum unread messages fetched per run",
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=300,
        description="Per-request network timeout (seconds)",
    )
    max_retries: int = Field(
        default=3,
        ge=0,
        le=5,
        description="Retries for transient provider errors (5xx, 429, timeouts)",
    )

    @field_validator("graph_base_url", "ews_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Require an http(s) URL."""
        if not v.startswith(("https://", "http://")):
            raise ValueError("URL must start with https:// or http://")
        return v.rstrip("/")


class RulesConfig(BaseModel):
    """Classification keyword lists and lookback window.

    Lists are comma-separated strings exactly as a user would type them.
    An empty string disables that list. days_back is parsed leniently at
    run time and falls back to 7 when it is not an integer in 1..30.
    """

    high_senders: str = Field(default=DEFAULT_HIGH_SENDERS, description="VIP sender substrings")
    low_senders: str = Field(default=DEFAULT_LOW_SENDERS, description="Noise sender substrings")
    high_subjects: str = Field(
        default=DEFAULT_HIGH_SUBJECTS, description="High-priority subject keywords"
    )
    low_subjects: str = Field(
        default=DEFAULT_LOW_SUBJECTS, description="Low-priority subject keywords"
    )
    days_back: Any = Field(
        default=DEFAULT_DAYS_BACK,
        description="Lookback window in days (1-30)",
    )

    @field_validator("high_senders", "low_senders", "high_subjects", "low_subjects", mode="before")
    @classmethod
    def join_yaml_lists(cls, v: object) -> object:
        """Accept YAML sequences as well as comma-separated strings."""
        if isinstance(v, list):
            return ", ".join(str(item) for item in v)
        if v is None:
            return ""
        return v


class LoggingConfig(BaseModel):
    """Log output configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Minimum log level",
    )
    json_output: bool = Field(
        default=False,
        alias="json",
        description="Emit JSON log lines instead of console output",
    )

    model_config = {"populate_by_name": True}


class AppConfig(BaseModel):
    """Root configuration schema for Inbox Triage.

    Every section has defaults, so an empty config.yaml is valid.
    """

    schema_version: int = Field(
        default=CURRENT_SCHEMA_VERSION,
        ge=1,
        description="Config schema version for migration tracking",
    )

    auth: AuthConfig = Field(default_factory=AuthConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    rules: RulesConfig = Field(default_factory=RulesConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    # Optional: user email override (normally detected from the token/account)
    user_email: str | None = Field(
        default=None,
        description="Acting user's address, used for direct-recipient matching",
    )
