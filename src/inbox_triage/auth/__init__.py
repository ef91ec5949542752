"""Authentication and session assembly.

Provides MSAL-based device code flow authentication, a static token
provider for pre-acquired tokens, and build_session() which combines a
token, the backend endpoint and the user's address into a Session.

Usage:
    from inbox_triage.auth import build_session, create_token_provider

    provider = create_token_provider(config)
    session = build_session(config, provider)
"""

from inbox_triage.auth.msal_auth import MailboxAuth, StaticTokenProvider, default_scopes
from inbox_triage.auth.session import build_session, create_token_provider

__all__ = [
    "MailboxAuth",
    "StaticTokenProvider",
    "build_session",
    "create_token_provider",
    "default_scopes",
]
