"""
Tests for the general processor: location records, archives and unhandled types.
"""
import pytest

from src.models.work_item import QueueType
from src.processors import general
from src.processors.general import GeneralProcessor
from tests.helpers import make_item


@pytest.fixture
def processor(ctx):
    return GeneralProcessor(ctx)


class TestLocations:

    async def test_location_create_and_update(self, ctx, processor):
        await processor.process_item(make_item("LocationCreate", {
            "id": "loc5", "name": "Acme Roofing", "companyId": "co1", "timezone": "America/Chicago",
        }, webhook_id="wh-loc"))

        location = await ctx.database.locations.find_one({"locationId": "loc5"})
        assert location["name"] == "Acme Roofing"
        assert location["companyId"] == "co1"
        assert location["createdByWebhook"] == "wh-loc"

        await processor.process_item(make_item("LocationUpdate", {"id": "loc5", "phone": "+15550111"}))

        location = await ctx.database.locations.find_one({"locationId": "loc5"})
        assert location["phone"] == "+15550111"
        assert location["name"] == "Acme Roofing"
        assert await ctx.database.locations.count_documents({}) == 1

    async def test_location_id_falls_back_to_envelope(self, ctx, processor):
        await processor.process_item(make_item(
            "LocationUpdate",
            {"webhookPayload": {"name": "Renamed"}, "locationId": "loc7"},
            location_id="loc7",
        ))

        location = await ctx.database.locations.find_one({"locationId": "loc7"})
        assert location["name"] == "Renamed"

    async def test_location_without_id_is_stored_unhandled(self, ctx, processor):
        await processor.process_item(make_item("LocationUpdate", {"name": "Nowhere"}, location_id=""))

        assert await ctx.database.locations.count_documents({}) == 0
        assert await ctx.database.unhandled_webhooks.count_documents({"type": "LocationUpdate"}) == 1


class TestArchives:

    @pytest.mark.parametrize("webhook_type,collection", [
        ("CampaignStatusUpdate", "campaign_events"),
        ("RecordCreate", "custom_object_events"),
        ("AssociationDeleted", "association_events"),
    ])
    async def test_archived_types(self, ctx, processor, webhook_type, collection):
        await processor.process_item(make_item(webhook_type, {"id": "x1", "locationId": "loc1"}))

        archived = await ctx.database[collection].find_one({"type": webhook_type})
        assert archived["payload"]["id"] == "x1"
        assert archived["locationId"] == "loc1"

    async def test_unknown_type_is_stored_not_failed(self, ctx, processor):
        await processor.process_item(make_item("BrandNewEvent", {"foo": "bar"}))

        stored = await ctx.database.unhandled_webhooks.find_one({"type": "BrandNewEvent"})
        assert stored["payload"] == {"foo": "bar"}


class TestHandlerCoverage:

    def test_construction_fails_when_a_routed_type_has_no_handler(self, ctx, monkeypatch):
        original = general.types_for_queue
        monkeypatch.setattr(
            general, "types_for_queue",
            lambda queue_type: original(queue_type) | {"SurpriseEvent"},
        )

        with pytest.raises(ValueError, match="SurpriseEvent"):
            GeneralProcessor(ctx)

    def test_every_general_type_has_a_handler(self, ctx):
        processor = GeneralProcessor(ctx)

        assert general.types_for_queue(QueueType.GENERAL) <= set(processor.handlers)
