"""Blocking HTTP client for the Microsoft Graph mail endpoints.

Responsibilities:
- Bearer authorization taken from the session credential on every call
- Bounded retries with backoff and jitter for 5xx, 429, timeouts and
  connection errors (429 honours Retry-After)
- Translation of error responses into TransportError with the HTTP status
  and the Graph error code
- Following @odata.nextLink until a collection or an item budget is exhausted

Usage:
    from inbox_triage.transport.graph_client import GraphClient

    client = GraphClient()
    me = client.get(credential, "/me")
"""

import random
import time
from typing import Any, NoReturn

import requests

from inbox_triage.core.errors import TransportError
from inbox_triage.core.logging import get_logger
from inbox_triage.core.models import Credential

logger = get_logger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAYS = [1.0, 2.0, 4.0]
DEFAULT_TIMEOUT = 30.0

# Largest $top Graph accepts for message listings
MAX_PAGE_SIZE = 50

# status -> (label, guidance)
_ERROR_GUIDANCE: dict[int, tuple[str, str]] = {
    401: (
        "Authentication failed",
        "The access token may have expired. Clear the token cache and re-authenticate.",
    ),
    403: (
        "Permission denied",
        "Check that Mail.ReadWrite is granted to the application.",
    ),
    404: (
        "Resource not found",
        "The message may have been moved or deleted since it was listed.",
    ),
    429: (
        "Rate limit exceeded",
        "Microsoft Graph is throttling this mailbox. Wait before triggering another run.",
    ),
}


def _jitter(delay: float) -> float:
    """Spread a delay by up to 20% either way."""
    return delay * (1 + 0.2 * (2 * random.random() - 1))


def _graph_error(response: requests.Response) -> tuple[str, str]:
    """(code, message) from a Graph error body, tolerating non-JSON bodies."""
    try:
        body = response.json()
    except ValueError:
        return "unknown", response.text or f"HTTP {response.status_code}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, str):
        return "unknown", error
    if not isinstance(error, dict):
        return "unknown", response.text or f"HTTP {response.status_code}"
    return error.get("code", "unknown"), error.get("message") or response.text


class GraphClient:
    """Thin Graph client shared by all calls of a run.

    The client is stateless with respect to identity: every call receives
    the Credential of the session it runs for.

    Attributes:
        session: requests.Session used for connection pooling
        max_retries: Retries after the first attempt
        retry_delays: Backoff schedule in seconds, last entry repeats
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delays: list[float] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.session = session or requests.Session()
        self.max_retries = max_retries
        self.retry_delays = retry_delays or DEFAULT_RETRY_DELAYS
        self.timeout = timeout

    def _headers(self, credential: Credential) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {credential.token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
            # ids stay valid if a message moves between folders mid-run
            "Prefer": 'IdType="ImmutableId"',
        }

    @staticmethod
    def _url(credential: Credential, endpoint: str) -> str:
        """Absolute URL for a path, or the endpoint itself if already absolute."""
        if endpoint.startswith(("https://", "http://")):
            return endpoint
        return f"{credential.base_url.rstrip('/')}/{endpoint.lstrip('/')}"

    def _backoff(self, attempt: int, response: requests.Response | None = None) -> float:
        """Delay before retry number attempt+1."""
        if response is not None and response.status_code == 429:
            try:
                return _jitter(float(response.headers.get("Retry-After", "")))
            except ValueError:
                pass
        return _jitter(self.retry_delays[min(attempt, len(self.retry_delays) - 1)])

    @staticmethod
    def _retryable(response: requests.Response) -> bool:
        return response.status_code == 429 or response.status_code >= 500

    def _raise_for_response(
        self, response: requests.Response, method: str, endpoint: str
    ) -> NoReturn:
        status = response.status_code
        code, detail = _graph_error(response)

        logger.error(
            "Graph API error",
            method=method,
            endpoint=endpoint,
            status_code=status,
            error_code=code,
            detail=detail[:200],
        )

        if status in _ERROR_GUIDANCE:
            label, guidance = _ERROR_GUIDANCE[status]
            if status == 429:
                retry_after = response.headers.get("Retry-After", "unknown")
                guidance = f"Retry after {retry_after} seconds. {guidance}"
            message = f"{label} ({status}) on {method} {endpoint}: {detail}. {guidance}"
        else:
            message = f"Graph API error ({status}) on {method} {endpoint}: {detail}"
        raise TransportError(message, status_code=status, error_code=code)

    def _network_failure(self, error: requests.RequestException, endpoint: str) -> TransportError:
        if isinstance(error, requests.exceptions.Timeout):
            return TransportError(
                f"Request to {endpoint} timed out after {self.timeout}s "
                f"({self.max_retries} retries). Microsoft Graph may be degraded."
            )
        return TransportError(
            f"Connection to Microsoft Graph failed: {error}. Check your network and try again."
        )

    def request(
        self,
        method: str,
        credential: Credential,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send one Graph request, retrying transient failures.

        Args:
            method: HTTP verb
            credential: Bearer token and base URL of the session
            endpoint: Path relative to the base URL, or an absolute nextLink
            params: Query string parameters
            json: Request body

        Returns:
            Decoded JSON body, or {} for empty responses

        Raises:
            TransportError: On error responses, exhausted retries or bad JSON
        """
        url = self._url(credential, endpoint)
        attempts = self.max_retries + 1

        for attempt in range(attempts):
            is_last = attempt == attempts - 1
            logger.debug("Graph request", method=method, endpoint=endpoint, attempt=attempt + 1)

            try:
                response = self.session.request(
                    method=method,
                    url=url,
                    headers=self._headers(credential),
                    params=params,
                    json=json,
                    timeout=self.timeout,
                )
            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
                if is_last:
                    raise self._network_failure(e, endpoint) from e
                delay = self._backoff(attempt)
                logger.warning(
                    "Graph request failed, retrying",
                    endpoint=endpoint,
                    error=type(e).__name__,
                    delay=round(delay, 2),
                )
                time.sleep(delay)
                continue

            if response.status_code >= 400:
                if is_last or not self._retryable(response):
                    self._raise_for_response(response, method, endpoint)
                delay = self._backoff(attempt, response)
                logger.warning(
                    "Graph request throttled or failed, retrying",
                    endpoint=endpoint,
                    status_code=response.status_code,
                    delay=round(delay, 2),
                )
                time.sleep(delay)
                continue

            if response.status_code == 204 or not response.content:
                return {}
            try:
                return response.json()
            except ValueError as e:
                raise TransportError(
                    f"Graph returned a non-JSON body for {method} {endpoint}",
                    status_code=response.status_code,
                ) from e

        raise TransportError(f"{method} {endpoint} was not attempted")

    def get(
        self,
        credential: Credential,
        endpoint: str,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return self.request("GET", credential, endpoint, params=params)

    def patch(
        self,
        credential: Credential,
        endpoint: str,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return self.request("PATCH", credential, endpoint, json=json)

    def get_user_email(self, credential: Credential) -> str:
        """Mailbox address of the signed-in user (mail, else userPrincipalName).

        Raises:
            TransportError: If the lookup fails or returns neither field
        """
        profile = self.get(credential, "/me", params={"$select": "mail,userPrincipalName"})
        address = profile.get("mail") or profile.get("userPrincipalName")
        if not address:
            raise TransportError(
                "Could not determine user email: /me returned neither 'mail' nor "
                "'userPrincipalName'. Check that User.Read is granted."
            )
        logger.debug("Signed-in user resolved", email=address)
        return address

    def paginate(
        self,
        credential: Credential,
        endpoint: str,
        params: dict[str, Any] | None = None,
        max_items: int | None = None,
    ) -> list[dict[str, Any]]:
        """Collect the ``value`` arrays of a collection across pages.

        Args:
            credential: Session credential
            endpoint: Collection path
            params: Query parameters for the first page; nextLinks carry their own
            max_items: Stop once this many items are collected (None for all)

        Returns:
            Items in server order, at most max_items
        """
        query = dict(params or {})
        query.setdefault("$top", min(max_items or MAX_PAGE_SIZE, MAX_PAGE_SIZE))

        items: list[dict[str, Any]] = []
        page = self.get(credential, endpoint, params=query)
        pages = 1

        while True:
            items.extend(page.get("value", []))
            next_link = page.get("@odata.nextLink")
            if not next_link or (max_items and len(items) >= max_items):
                break
            page = self.get(credential, next_link)
            pages += 1

        logger.debug("Collection fetched", endpoint=endpoint, pages=pages, items=len(items))
        return items[:max_items] if max_items else items
