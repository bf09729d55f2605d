"""
Base Repository Tests
Idempotent upserts, partial updates and soft deletes keyed by external id.
"""
import pytest
from bson import ObjectId

from src.errors import ReferenceNotFoundError
from src.repositories import ContactRepository
from src.repositories import filters
from src.repositories.base import as_object_id


@pytest.fixture
def repo(db):
    return ContactRepository(db)


class TestUpsert:

    async def test_first_delivery_creates(self, repo, db):
        result = await repo.upsert(
            filters.contact("ghl-1", "loc1"),
            {"firstName": "Ana"},
            set_on_insert={"createdByWebhook": "wh-1"},
        )

        assert result.created is True
        doc = await db.contacts.find_one({"_id": ObjectId(result.document_id)})
        assert doc["ghlContactId"] == "ghl-1"
        assert doc["locationId"] == "loc1"
        assert doc["createdByWebhook"] == "wh-1"
        assert doc["createdAt"] is not None

    async def test_replay_converges_on_same_document(self, repo, db):
        first = await repo.upsert(filters.contact("ghl-1", "loc1"), {"firstName": "Ana"})
        second = await repo.upsert(
            filters.contact("ghl-1", "loc1"),
            {"firstName": "Anna"},
            set_on_insert={"createdByWebhook": "wh-2"},
        )

        assert second.created is False
        assert second.document_id == first.document_id
        doc = await db.contacts.find_one({"ghlContactId": "ghl-1"})
        assert doc["firstName"] == "Anna"
        assert "createdByWebhook" not in doc
        assert await db.contacts.count_documents({}) == 1

    async def test_same_external_id_in_other_location_is_separate(self, repo, db):
        await repo.upsert(filters.contact("ghl-1", "loc1"), {"firstName": "Ana"})
        await repo.upsert(filters.contact("ghl-1", "loc2"), {"firstName": "Bea"})

        assert await db.contacts.count_documents({"ghlContactId": "ghl-1"}) == 2

    async def test_set_fields_win_over_insert_defaults(self, repo, db):
        await repo.upsert(
            filters.contact("ghl-1", "loc1"),
            {"tags": ["vip"]},
            set_on_insert={"tags": [], "source": "webhook"},
        )

        doc = await db.contacts.find_one({"ghlContactId": "ghl-1"})
        assert doc["tags"] == ["vip"]
        assert doc["source"] == "webhook"


class TestPartialWrites:

    @pytest.fixture(autouse=True)
    async def existing(self, db):
        await db.contacts.insert_one({
            "ghlContactId": "ghl-1", "locationId": "loc1", "firstName": "Ana", "email": "a@b.com",
        })

    async def test_update_fields_leaves_others(self, repo, db):
        matched = await repo.update_fields(
            filters.contact("ghl-1", "loc1"), {"firstName": "Ann"}, unset=["email"],
        )

        assert matched is True
        doc = await db.contacts.find_one({"ghlContactId": "ghl-1"})
        assert doc["firstName"] == "Ann"
        assert "email" not in doc
        assert doc["updatedAt"] is not None

    async def test_update_unknown_returns_false(self, repo):
        assert await repo.update_fields(filters.contact("nope", "loc1"), {"firstName": "X"}) is False

    async def test_soft_delete_keeps_document(self, repo, db):
        assert await repo.soft_delete(filters.contact("ghl-1", "loc1")) is True

        doc = await db.contacts.find_one({"ghlContactId": "ghl-1"})
        assert doc["deleted"] is True
        assert doc["deletedAt"] is not None
        assert await repo.find_one(filters.contact("ghl-1", "loc1", exclude_deleted=True)) is None

    async def test_find_by_id_returns_model(self, repo, db):
        doc = await db.contacts.find_one({"ghlContactId": "ghl-1"})

        contact = await repo.find_by_id(str(doc["_id"]))

        assert contact.id == str(doc["_id"])
        assert contact.ghl_contact_id == "ghl-1"
        assert contact.display_name == "Ana"

    async def test_resolve_id(self, repo, db):
        doc = await db.contacts.find_one({"ghlContactId": "ghl-1"})

        assert await repo.resolve_id("ghl-1", "loc1") == str(doc["_id"])
        assert await repo.resolve_id("missing", "loc1") is None
        assert await repo.resolve_id(None, "loc1") is None
        with pytest.raises(ReferenceNotFoundError):
            await repo.resolve_id("missing", "loc1", required=True)


class TestObjectIds:

    def test_hex_strings_become_object_ids(self):
        oid = ObjectId()

        assert as_object_id(str(oid)) == oid
        assert as_object_id(oid) is oid

    def test_other_values_pass_through(self):
        assert as_object_id("not-an-object-id") == "not-an-object-id"
