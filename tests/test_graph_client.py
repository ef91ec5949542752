"""Tests for the Graph HTTP client: error mapping, retries and pagination."""

from typing import Any
from unittest.mock import MagicMock, patch

import pytest
import requests

from inbox_triage.core.errors import TransportError
from inbox_triage.core.models import Credential
from inbox_triage.transport.graph_client import GraphClient

CREDENTIAL = Credential(token="tok-123", base_url="https://graph.example.test/v1.0")


def _response(
    status_code: int = 200,
    json_data: Any = None,
    headers: dict[str, str] | None = None,
    text: str = "",
) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    response.text = text
    if json_data is None:
        response.content = b""
        response.json.side_effect = ValueError("no json")
    else:
        response.content = b"{...}"
        response.json.return_value = json_data
    return response


def _graph_error(status_code: int, code: str, message: str, **kwargs: Any) -> MagicMock:
    return _response(status_code, {"error": {"code": code, "message": message}}, **kwargs)


@pytest.fixture
def http_session() -> MagicMock:
    """Return a mock requests.Session."""
    return MagicMock(spec=requests.Session)


@pytest.fixture
def client(http_session: MagicMock) -> GraphClient:
    """Return a GraphClient with near-zero retry delays."""
    return GraphClient(session=http_session, max_retries=2, retry_delays=[0.0])


@pytest.fixture(autouse=True)
def no_sleep():
    """Skip real sleeps between retries."""
    with patch("inbox_triage.transport.graph_client.time.sleep") as sleep:
        yield sleep


class TestRequest:
    """Tests for GraphClient.request."""

    def test_sends_bearer_and_builds_url(
        self, client: GraphClient, http_session: MagicMock
    ) -> None:
        http_session.request.return_value = _response(200, {"mail": "me@company.com"})

        result = client.get(CREDENTIAL, "me", params={"$select": "mail"})

        assert result == {"mail": "me@company.com"}
        kwargs = http_session.request.call_args.kwargs
        assert kwargs["url"] == "https://graph.example.test/v1.0/me"
        assert kwargs["headers"]["Authorization"] == "Bearer tok-123"
        assert kwargs["params"] == {"$select": "mail"}

    def test_no_content_returns_empty_dict(
        self, client: GraphClient, http_session: MagicMock
    ) -> None:
        http_session.request.return_value = _response(204)

        assert client.patch(CREDENTIAL, "/me/messages/1", json={"isRead": True}) == {}

    def test_401_maps_to_transport_error(
        self, client: GraphClient, http_session: MagicMock
    ) -> None:
        http_session.request.return_value = _graph_error(
            401, "InvalidAuthenticationToken", "Access token has expired."
        )

        with pytest.raises(TransportError) as exc_info:
            client.get(CREDENTIAL, "/me")

        assert exc_info.value.status_code == 401
        assert exc_info.value.error_code == "InvalidAuthenticationToken"
        assert "re-authenticate" in str(exc_info.value)
        assert http_session.request.call_count == 1

    def test_404_carries_provider_code(
        self, client: GraphClient, http_session: MagicMock
    ) -> None:
        http_session.request.return_value = _graph_error(
            404, "ErrorItemNotFound", "The specified object was not found."
        )

        with pytest.raises(TransportError) as exc_info:
            client.patch(CREDENTIAL, "/me/messages/gone", json={"isRead": True})

        assert exc_info.value.status_code == 404
        assert exc_info.value.error_code == "ErrorItemNotFound"

    def test_string_error_body_is_transport_error(
        self, client: GraphClient, http_session: MagicMock
    ) -> None:
        http_session.request.return_value = _response(400, {"error": "invalid_request"})

        with pytest.raises(TransportError) as exc_info:
            client.patch(CREDENTIAL, "/me/messages/abc", json={"isRead": True})

        assert exc_info.value.status_code == 400
        assert exc_info.value.error_code == "unknown"
        assert "invalid_request" in str(exc_info.value)

    def test_retries_server_errors_then_succeeds(
        self, client: GraphClient, http_session: MagicMock, no_sleep: MagicMock
    ) -> None:
        http_session.request.side_effect = [
            _graph_error(503, "ServiceUnavailable", "busy"),
            _response(200, {"value": []}),
        ]

        assert client.get(CREDENTIAL, "/me/messages") == {"value": []}
        assert http_session.request.call_count == 2
        assert no_sleep.call_count == 1

    def test_429_exhausts_retries(self, client: GraphClient, http_session: MagicMock) -> None:
        http_session.request.return_value = _graph_error(
            429, "TooManyRequests", "slow down", headers={"Retry-After": "0"}
        )

        with pytest.raises(TransportError) as exc_info:
            client.get(CREDENTIAL, "/me/messages")

        assert exc_info.value.status_code == 429
        assert http_session.request.call_count == 3

    def test_timeout_raises_after_retries(
        self, client: GraphClient, http_session: MagicMock
    ) -> None:
        http_session.request.side_effect = requests.exceptions.Timeout()

        with pytest.raises(TransportError, match="timed out"):
            client.get(CREDENTIAL, "/me")

        assert http_session.request.call_count == 3

    def test_connection_error_raises(self, client: GraphClient, http_session: MagicMock) -> None:
        http_session.request.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(TransportError, match="Connection to Microsoft Graph failed"):
            client.get(CREDENTIAL, "/me")


class TestRetryDelay:
    """Tests for backoff delay selection."""

    def test_respects_retry_after(self) -> None:
        client = GraphClient(session=MagicMock())
        response = _response(429, {}, headers={"Retry-After": "10"})

        delay = client._backoff(0, response)

        assert 8.0 <= delay <= 12.0

    def test_uses_backoff_schedule(self) -> None:
        client = GraphClient(session=MagicMock(), retry_delays=[1.0, 2.0, 4.0])

        assert 3.2 <= client._backoff(5) <= 4.8


class TestGetUserEmail:
    """Tests for GraphClient.get_user_email."""

    def test_prefers_mail(self, client: GraphClient, http_session: MagicMock) -> None:
        http_session.request.return_value = _response(
            200, {"mail": "me@company.com", "userPrincipalName": "upn@company.com"}
        )

        assert client.get_user_email(CREDENTIAL) == "me@company.com"

    def test_falls_back_to_upn(self, client: GraphClient, http_session: MagicMock) -> None:
        http_session.request.return_value = _response(200, {"userPrincipalName": "upn@co.com"})

        assert client.get_user_email(CREDENTIAL) == "upn@co.com"

    def test_missing_address_raises(self, client: GraphClient, http_session: MagicMock) -> None:
        http_session.request.return_value = _response(200, {"id": "123"})

        with pytest.raises(TransportError, match="Could not determine user email"):
            client.get_user_email(CREDENTIAL)


class TestPaginate:
    """Tests for GraphClient.paginate."""

    def test_follows_next_link(self, client: GraphClient, http_session: MagicMock) -> None:
        next_link = "https://graph.example.test/v1.0/me/messages?$skip=2"
        http_session.request.side_effect = [
            _response(200, {"value": [{"id": "1"}, {"id": "2"}], "@odata.nextLink": next_link}),
            _response(200, {"value": [{"id": "3"}]}),
        ]

        items = client.paginate(CREDENTIAL, "/me/messages", params={"$filter": "isRead eq false"})

        assert [i["id"] for i in items] == ["1", "2", "3"]
        second = http_session.request.call_args_list[1].kwargs
        assert second["url"] == next_link
        assert second["params"] is None

    def test_stops_at_max_items(self, client: GraphClient, http_session: MagicMock) -> None:
        http_session.request.return_value = _response(
            200,
            {"value": [{"id": str(i)} for i in range(5)], "@odata.nextLink": "https://next"},
        )

        items = client.paginate(CREDENTIAL, "/me/messages", max_items=3)

        assert len(items) == 3
        assert http_session.request.call_count == 1
        assert http_session.request.call_args.kwargs["params"]["$top"] == 3
