"""
Tests for the Ably and Expo HTTP adapters against a mocked transport.
"""
import json

import httpx
import pytest

from src.errors import NotificationError
from src.realtime import AblyRestPublisher, ExpoPushClient, LogOnlyPublisher, LogOnlyPushClient
from src.repositories import UserRepository


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestAblyRestPublisher:

    async def test_posts_message_with_basic_auth(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(201, json={"messageId": "m1"})

        async with mock_client(handler) as client:
            publisher = AblyRestPublisher("app.key:secret", rest_url="https://ably.test", client=client)
            await publisher.publish("location:loc1", "contact-created", {"id": "c1"})

        [request] = requests
        assert request.method == "POST"
        assert request.url.path == "/channels/location:loc1/messages"
        assert request.headers["authorization"].startswith("Basic ")
        assert json.loads(request.content) == {"name": "contact-created", "data": {"id": "c1"}}

    async def test_http_error_becomes_notification_error(self):
        async with mock_client(lambda request: httpx.Response(500)) as client:
            publisher = AblyRestPublisher("app.key:secret", rest_url="https://ably.test", client=client)

            with pytest.raises(NotificationError):
                await publisher.publish("user:u1", "x", {})

    async def test_unconfigured_key_raises(self):
        publisher = AblyRestPublisher("not-a-key", rest_url="https://ably.test")

        assert publisher.is_configured is False
        with pytest.raises(NotificationError, match="not configured"):
            await publisher.publish("user:u1", "x", {})

    async def test_log_only_publisher_accepts_events(self):
        await LogOnlyPublisher().publish("user:u1", "x", {"a": 1})


class TestExpoPushClient:

    @pytest.fixture
    async def users(self, db):
        await db.users.insert_one({
            "ghlUserId": "ghl-u1",
            "locationId": "loc1",
            "expoPushToken": "ExponentPushToken[abc]",
        })
        await db.users.insert_one({"ghlUserId": "ghl-u2", "locationId": "loc1"})
        return UserRepository(db)

    async def test_sends_to_registered_token(self, users):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"data": [{"status": "ok", "id": "t1"}]})

        async with mock_client(handler) as client:
            push = ExpoPushClient(users, push_url="https://expo.test/push", access_token="tok", client=client)
            sent = await push.send_to_user("ghl-u1", "Payment Received", "$100", {"invoiceId": "i1"})

        assert sent is True
        [request] = requests
        assert request.headers["authorization"] == "Bearer tok"
        [message] = json.loads(request.content)
        assert message["to"] == "ExponentPushToken[abc]"
        assert message["title"] == "Payment Received"
        assert message["data"] == {"invoiceId": "i1"}

    async def test_user_without_token_is_skipped(self, users):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        async with mock_client(handler) as client:
            push = ExpoPushClient(users, push_url="https://expo.test/push", client=client)

            assert await push.send_to_user("ghl-u2", "t", "b") is False
            assert await push.send_to_user("missing", "t", "b") is False

    async def test_error_ticket_raises(self, users):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": [{"status": "error", "message": "DeviceNotRegistered"}]})

        async with mock_client(handler) as client:
            push = ExpoPushClient(users, push_url="https://expo.test/push", client=client)

            with pytest.raises(NotificationError, match="DeviceNotRegistered"):
                await push.send_to_user("ghl-u1", "t", "b")

    async def test_log_only_push_client(self):
        assert await LogOnlyPushClient().send_to_user("u1", "t", "b") is True
