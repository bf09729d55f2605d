"""
Tests for notification fan-out: failures are swallowed, dedup is honoured.
"""
from unittest.mock import AsyncMock

from src.errors import NotificationError
from src.realtime import (
    AutomationQueue,
    DedupGate,
    DedupKey,
    Notifier,
    location_channel,
    project_channel,
    user_channel,
)


class TestPublish:

    async def test_publishes_to_channel(self, publisher, push):
        notifier = Notifier(publisher, push)

        sent = await notifier.publish("location:loc1", "contact-created", {"id": "c1"})

        assert sent is True
        publisher.publish.assert_awaited_once_with("location:loc1", "contact-created", {"id": "c1"})

    async def test_dedup_suppresses_second_publish(self, db, clock, publisher, push):
        notifier = Notifier(publisher, push, DedupGate(db, window_ms=5000, clock=clock))
        key = DedupKey("c1", "contact-created")

        assert await notifier.publish("location:loc1", "contact-created", {}, dedup=key) is True
        assert await notifier.publish("location:loc1", "contact-created", {}, dedup=key) is False
        assert publisher.publish.await_count == 1

    async def test_publish_without_key_skips_dedup(self, db, clock, publisher, push):
        notifier = Notifier(publisher, push, DedupGate(db, clock=clock))

        await notifier.publish("location:loc1", "message:inbound", {})
        await notifier.publish("location:loc1", "message:inbound", {})

        assert publisher.publish.await_count == 2

    async def test_notification_error_is_swallowed(self, push):
        publisher = AsyncMock()
        publisher.publish.side_effect = NotificationError("ably down")

        assert await Notifier(publisher, push).publish("user:u1", "x", {}) is False

    async def test_unexpected_error_is_swallowed(self, push):
        publisher = AsyncMock()
        publisher.publish.side_effect = ValueError("bad payload")

        assert await Notifier(publisher, push).publish("user:u1", "x", {}) is False


class TestPush:

    async def test_push_delegates_to_client(self, publisher, push):
        notifier = Notifier(publisher, push)

        assert await notifier.push("u1", "Payment Received", "$100", {"invoiceId": "i1"}) is True
        push.send_to_user.assert_awaited_once_with("u1", "Payment Received", "$100", {"invoiceId": "i1"})

    async def test_push_without_user_is_skipped(self, publisher, push):
        assert await Notifier(publisher, push).push(None, "t", "b") is False
        push.send_to_user.assert_not_awaited()

    async def test_push_failure_is_swallowed(self, publisher):
        push = AsyncMock()
        push.send_to_user.side_effect = NotificationError("expo down")

        assert await Notifier(publisher, push).push("u1", "t", "b") is False


class TestAutomationTrigger:

    async def test_trigger_queues_pending_row(self, db, publisher, push):
        notifier = Notifier(publisher, push, automation=AutomationQueue(db))

        queued = await notifier.trigger("wh-1", "contact-created", "contact", "loc1", {"contactId": "c1"})

        assert queued is True
        row = await db.automation_queue.find_one({"webhookId": "wh-1"})
        assert row["status"] == "pending"
        assert row["attempts"] == 0
        assert row["trigger"] == {
            "type": "contact-created",
            "entityType": "contact",
            "locationId": "loc1",
            "data": {"contactId": "c1", "locationId": "loc1"},
        }

    async def test_same_webhook_queues_once_per_entity(self, db, publisher, push):
        notifier = Notifier(publisher, push, automation=AutomationQueue(db))

        assert await notifier.trigger("wh-1", "contact-created", "contact", "loc1", {}) is True
        assert await notifier.trigger("wh-1", "contact-updated", "contact", "loc1", {}) is False
        assert await notifier.trigger("wh-2", "contact-updated", "contact", "loc1", {}) is True

        assert await db.automation_queue.count_documents({}) == 2

    async def test_store_failure_is_swallowed(self, publisher, push):
        automation = AsyncMock()
        automation.enqueue.side_effect = RuntimeError("write concern timeout")

        queued = await Notifier(publisher, push, automation=automation).trigger(
            "wh-1", "payment-received", "payment", "loc1", {},
        )

        assert queued is False

    async def test_without_queue_nothing_is_written(self, db, publisher, push):
        assert await Notifier(publisher, push).trigger("wh-1", "sms-received", "message", "loc1", {}) is False
        assert await db.automation_queue.count_documents({}) == 0


def test_channel_names():
    assert user_channel("u1") == "user:u1"
    assert location_channel("loc1") == "location:loc1"
    assert project_channel("p1") == "project:p1"
