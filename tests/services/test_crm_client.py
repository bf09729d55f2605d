"""
Tests for the CRM API enrichment client.
"""
import httpx
import pytest

from src.errors import TransientError
from src.services import CrmApiClient, EmailContent


def crm_with(handler) -> CrmApiClient:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CrmApiClient(base_url="https://crm.test", api_version="2021-04-15", client=client)


class TestFetchEmail:

    async def test_returns_email_content(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={
                "emailMessage": {"subject": "Quote", "body": "Hello", "htmlBody": "<p>Hello</p>"}
            })

        content = await crm_with(handler).fetch_email("em1", "token-1")

        assert content == EmailContent(subject="Quote", body="Hello", html_body="<p>Hello</p>")
        [request] = seen
        assert request.url.path == "/conversations/messages/email/em1"
        assert request.headers["authorization"] == "Bearer token-1"
        assert request.headers["version"] == "2021-04-15"

    async def test_defaults_for_missing_fields(self):
        content = await crm_with(
            lambda request: httpx.Response(200, json={"emailMessage": {"body": "plain"}})
        ).fetch_email("em1", "t")

        assert content.subject == "No subject"
        assert content.html_body == "plain"

    async def test_status_error_returns_none(self):
        crm = crm_with(lambda request: httpx.Response(404, json={"message": "not found"}))

        assert await crm.fetch_email("em1", "t") is None

    async def test_missing_email_returns_none(self):
        crm = crm_with(lambda request: httpx.Response(200, json={}))

        assert await crm.fetch_email("em1", "t") is None

    async def test_timeout_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(TransientError):
            await crm_with(handler).fetch_email("em1", "t")

    async def test_connection_error_returns_none(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        assert await crm_with(handler).fetch_email("em1", "t") is None
