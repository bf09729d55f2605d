"""
Tests for webhook classification and routing.
"""
from unittest.mock import AsyncMock

import pytest

from src.analytics.recorder import AnalyticsRecorder
from src.errors import DuplicateWebhookError
from src.message_queue import MongoQueueManager, WebhookRouter, classify, types_for_queue
from src.models.work_item import IncomingWebhook, QueueType


@pytest.fixture
def router(db, clock):
    return WebhookRouter(MongoQueueManager(db, clock=clock), AnalyticsRecorder(db, clock=clock))


class TestClassify:

    @pytest.mark.parametrize("webhook_type,expected", [
        ("INSTALL", (QueueType.CRITICAL, 1)),
        ("UserCreate", (QueueType.CRITICAL, 1)),
        ("InboundMessage", (QueueType.MESSAGES, 2)),
        ("ContactTagUpdate", (QueueType.CONTACTS, 3)),
        ("AppointmentUpdate", (QueueType.APPOINTMENTS, 3)),
        ("OpportunityStageUpdate", (QueueType.PROJECTS, 3)),
        ("InvoicePaid", (QueueType.FINANCIAL, 3)),
        ("LocationUpdate", (QueueType.GENERAL, 1)),
        ("CampaignStatusUpdate", (QueueType.GENERAL, 5)),
    ])
    def test_known_types(self, webhook_type, expected):
        assert classify(webhook_type) == expected

    def test_unknown_type_goes_to_general(self):
        assert classify("SomethingNew") == (QueueType.GENERAL, 5)

    def test_types_for_queue(self):
        assert types_for_queue(QueueType.APPOINTMENTS) == {
            "AppointmentCreate", "AppointmentUpdate", "AppointmentDelete"
        }


class TestRoute:

    async def test_route_enqueues_and_records_arrival(self, db, router):
        item = await router.route(IncomingWebhook(
            webhook_id="wh-1", type="ContactCreate", payload={"id": "c1"}, location_id="loc1"
        ))

        assert item.queue_type == QueueType.CONTACTS
        assert item.priority == 3

        metric = await router.analytics.get_metric("wh-1")
        assert metric.queue_type == "contacts"
        assert metric.type == "ContactCreate"
        assert metric.location_id == "loc1"
        assert metric.sla_target == 60_000

    async def test_explicit_priority_overrides_classification(self, router):
        item = await router.route(IncomingWebhook(webhook_id="wh-1", type="ContactCreate", priority=1))

        assert item.priority == 1

    async def test_accepts_camel_case_ingestion_body(self, router):
        webhook = IncomingWebhook.model_validate({
            "webhookId": "wh-camel",
            "type": "InboundMessage",
            "payload": {"webhookPayload": {"body": "hi"}, "locationId": "loc1"},
            "locationId": "loc1",
        })

        item = await router.route(webhook)

        assert item.queue_type == QueueType.MESSAGES
        assert item.location_id == "loc1"

    async def test_duplicate_is_rejected(self, router):
        webhook = IncomingWebhook(webhook_id="wh-1", type="ContactCreate")
        await router.route(webhook)

        with pytest.raises(DuplicateWebhookError):
            await router.route(webhook)

    async def test_analytics_failure_does_not_block_enqueue(self, db, clock):
        analytics = AsyncMock()
        analytics.record_received.side_effect = RuntimeError("metrics store down")
        router = WebhookRouter(MongoQueueManager(db, clock=clock), analytics)

        item = await router.route(IncomingWebhook(webhook_id="wh-1", type="NoteCreate"))

        assert item.webhook_id == "wh-1"
        assert await router.queue.get_item("wh-1") is not None
