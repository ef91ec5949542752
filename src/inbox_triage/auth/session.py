"""Assembly of the per-run Session (acting user + credential).

The session is built once, before a run starts, and passed explicitly to
every transport and normalizer call.
"""

import os

from inbox_triage.auth.msal_auth import (
    MailboxAuth,
    StaticTokenProvider,
    TokenProvider,
    default_scopes,
)
from inbox_triage.config_schema import AppConfig
from inbox_triage.core.errors import AuthError, TransportError
from inbox_triage.core.logging import get_logger
from inbox_triage.core.models import Credential, Session
from inbox_triage.transport.graph_client import GraphClient

logger = get_logger(__name__)

ACCESS_TOKEN_ENV = "INBOX_TRIAGE_ACCESS_TOKEN"


def create_token_provider(config: AppConfig) -> TokenProvider:
    """Pick the token provider: a static token from the environment, else MSAL."""
    token = os.environ.get(ACCESS_TOKEN_ENV)
    if token:
        logger.debug("Using access token from environment", env=ACCESS_TOKEN_ENV)
        return StaticTokenProvider(token)

    backend = config.transport.backend
    return MailboxAuth(
        client_id=config.auth.client_id,
        tenant_id=config.auth.tenant_id,
        scopes=config.auth.scopes or default_scopes(backend),
        token_cache_path=config.auth.token_cache_path,
    )


def base_url_for(config: AppConfig) -> str:
    """Endpoint the credential is used against."""
    if config.transport.backend == "ews":
        return config.transport.ews_url
    return config.transport.graph_base_url


def build_session(
    config: AppConfig,
    provider: TokenProvider,
    graph_client: GraphClient | None = None,
) -> Session:
    """Acquire a token and resolve the acting user's address.

    The address comes from config.user_email, else the signed-in account,
    else (Graph only) the /me endpoint.

    Raises:
        AuthError: If no token or user address can be obtained
    """
    try:
        token = provider.get_access_token()
    except AuthError:
        raise
    except Exception as e:
        logger.error("Failed to get access token", error=str(e))
        raise AuthError(f"Cannot acquire an access token: {e}") from e

    credential = Credential(token=token, base_url=base_url_for(config))

    user_address = config.user_email or provider.get_username()
    if not user_address and config.transport.backend == "graph":
        client = graph_client or GraphClient(
            max_retries=config.transport.max_retries,
            timeout=config.transport.timeout_seconds,
        )
        try:
            user_address = client.get_user_email(credential)
        except TransportError as e:
            raise AuthError(f"Could not determine the signed-in user's address: {e}") from e

    if not user_address:
        raise AuthError(
            "Could not determine the mailbox address. Set 'user_email' in config.yaml."
        )

    logger.info("Session ready", backend=config.transport.backend, user=user_address)
    return Session(user_address=user_address.strip().lower(), credential=credential)
