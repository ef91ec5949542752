"""Access tokens for the mailbox, via MSAL or from the environment.

MailboxAuth signs the user in with the OAuth2 device code flow: a code is
shown in the terminal and entered at microsoft.com/devicelogin from any
browser. Tokens are cached in a JSON file (mode 600) so later runs refresh
silently. StaticTokenProvider wraps a token obtained some other way.

Usage:
    from inbox_triage.auth.msal_auth import MailboxAuth, default_scopes

    auth = MailboxAuth(
        client_id=config.auth.client_id,
        tenant_id=config.auth.tenant_id,
        scopes=default_scopes(config.transport.backend),
        token_cache_path=config.auth.token_cache_path,
    )
    token = auth.get_access_token()
"""

import os
import random
import stat
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

import msal
import requests
from rich.console import Console
from rich.panel import Panel

from inbox_triage.core.errors import AuthError
from inbox_triage.core.logging import get_logger

logger = get_logger(__name__)
console = Console(stderr=True)

MSAL_MAX_RETRIES = 3
MSAL_RETRY_DELAYS = [1.0, 2.0, 4.0]

GRAPH_SCOPES = ["Mail.ReadWrite", "User.Read"]
EWS_SCOPES = ["https://outlook.office365.com/EWS.AccessAsUser.All"]

# MSAL device-flow error code -> message shown to the user
DEVICE_FLOW_ERRORS = {
    "authorization_pending": (
        "Sign-in timed out before the code was entered. Run the command again and "
        "finish signing in within the time limit."
    ),
    "authorization_declined": (
        "Sign-in was declined. Run the command again and accept the permission request."
    ),
    "expired_token": "The device code expired. Run the command again for a new code.",
}


def default_scopes(backend: str) -> list[str]:
    """Permission scopes needed by a transport backend."""
    return list(EWS_SCOPES if backend == "ews" else GRAPH_SCOPES)


class TokenProvider(Protocol):
    """Anything that can hand out a bearer token."""

    def get_access_token(self) -> str: ...

    def get_username(self) -> str | None: ...


class StaticTokenProvider:
    """Provider for a token acquired elsewhere (e.g. INBOX_TRIAGE_ACCESS_TOKEN)."""

    def __init__(self, token: str, username: str | None = None):
        if not token or not token.strip():
            raise AuthError(
                "Access token is empty. Set INBOX_TRIAGE_ACCESS_TOKEN to a valid token."
            )
        self._token = token.strip()
        self._username = username

    def get_access_token(self) -> str:
        return self._token

    def get_username(self) -> str | None:
        return self._username


class _CacheFile:
    """MSAL token cache persisted as an owner-only JSON file."""

    def __init__(self, path: Path):
        self.path = path
        self.cache = msal.SerializableTokenCache()

    def load(self) -> None:
        if not self.path.is_file():
            return
        try:
            self.cache.deserialize(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable token cache", path=str(self.path), error=str(e))
            return
        logger.debug("Token cache read", path=str(self.path))

    def save(self) -> None:
        if not self.cache.has_state_changed:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(self.cache.serialize(), encoding="utf-8")
            os.chmod(self.path, stat.S_IRUSR | stat.S_IWUSR)
        except OSError as e:
            # next run signs in again
            logger.error("Could not write token cache", path=str(self.path), error=str(e))
            return
        logger.debug("Token cache written", path=str(self.path))


class MailboxAuth:
    """Device code sign-in against Microsoft Entra ID.

    Attributes:
        client_id: Application (client) ID of the app registration
        tenant_id: Directory (tenant) ID, or "common"
        scopes: Scopes requested for the active backend
        app: The MSAL PublicClientApplication

    Tokens are never logged.
    """

    def __init__(
        self,
        client_id: str,
        tenant_id: str,
        scopes: list[str],
        token_cache_path: str,
    ):
        if not client_id or not client_id.strip():
            raise AuthError(
                "auth.client_id is required for device code sign-in. Register an app "
                "under Microsoft Entra ID > App registrations, or set "
                "INBOX_TRIAGE_ACCESS_TOKEN to use a pre-acquired token."
            )

        self.client_id = client_id.strip()
        self.tenant_id = tenant_id
        self.scopes = scopes
        self._cache_file = _CacheFile(Path(token_cache_path))
        self._cache_file.load()

        self.app = msal.PublicClientApplication(
            client_id=self.client_id,
            authority=f"https://login.microsoftonline.com/{tenant_id}",
            token_cache=self._cache_file.cache,
        )
        logger.debug("MSAL client ready", tenant=tenant_id, scopes=scopes)

    def get_access_token(self) -> str:
        """Cached or refreshed token if possible, otherwise an interactive sign-in.

        Raises:
            AuthError: If no token can be obtained
        """
        token = self._acquire_silently()
        if token:
            return token
        logger.info("No usable cached token, starting device code sign-in")
        return self._sign_in_with_device_code()

    def get_username(self) -> str | None:
        """Username (usually the mailbox address) of the cached account."""
        accounts = self.app.get_accounts()
        return accounts[0].get("username") if accounts else None

    def _call(
        self,
        operation: str,
        call: Callable[[], dict[str, Any] | None],
        required: bool = True,
    ) -> dict[str, Any] | None:
        """Invoke MSAL, retrying network errors with jittered backoff.

        Returns None when every attempt failed and the call is not required.

        Raises:
            AuthError: When every attempt failed and the call is required
        """
        for attempt in range(MSAL_MAX_RETRIES):
            try:
                return call()
            except requests.exceptions.RequestException as e:
                if attempt == MSAL_MAX_RETRIES - 1:
                    logger.error(f"{operation} gave up", attempts=MSAL_MAX_RETRIES, error=str(e))
                    if not required:
                        return None
                    raise AuthError(
                        f"{operation} failed after {MSAL_MAX_RETRIES} attempts: {e}. "
                        "Check your network connection."
                    ) from e
                base = MSAL_RETRY_DELAYS[attempt]
                delay = base + base * 0.2 * (2 * random.random() - 1)
                logger.warning(f"{operation} interrupted", attempt=attempt + 1, delay=delay)
                time.sleep(delay)
        return None

    def _acquire_silently(self) -> str | None:
        accounts = self.app.get_accounts()
        if not accounts:
            return None

        result = self._call(
            "Silent token acquisition",
            lambda: self.app.acquire_token_silent(scopes=self.scopes, account=accounts[0]),
            required=False,
        )
        if not result:
            return None
        if "access_token" not in result:
            logger.debug("Cached token not usable", error=result.get("error"))
            return None

        self._cache_file.save()
        logger.debug("Token taken from cache")
        return result["access_token"]

    def _sign_in_with_device_code(self) -> str:
        flow = self._call(
            "Starting device code sign-in",
            lambda: self.app.initiate_device_flow(scopes=self.scopes),
        )
        if "user_code" not in flow:
            reason = flow.get("error_description") or flow.get("error") or "unknown error"
            raise AuthError(
                f"Could not start device code sign-in: {reason}. Make sure public client "
                "flows are allowed under Authentication in the app registration."
            )

        self._display_auth_prompt(flow["verification_uri"], flow["user_code"])

        result = self._call(
            "Completing device code sign-in",
            lambda: self.app.acquire_token_by_device_flow(flow),
        )
        if "access_token" not in result:
            error = result.get("error", "unknown_error")
            logger.error("Device code sign-in did not complete", error=error)
            raise AuthError(
                DEVICE_FLOW_ERRORS.get(error)
                or f"Sign-in failed: {result.get('error_description', error)}"
            )

        self._cache_file.save()
        claims = result.get("id_token_claims") or {}
        logger.info("Signed in", username=claims.get("preferred_username", "unknown"))
        return result["access_token"]

    def _display_auth_prompt(self, verification_uri: str, user_code: str) -> None:
        console.print(
            Panel(
                f"Open [bold blue]{verification_uri}[/bold blue] in a browser\n"
                f"and enter the code [bold green]{user_code}[/bold green]\n\n"
                "Waiting for sign-in to complete...",
                title="Sign in to your mailbox",
                border_style="bright_blue",
            )
        )
