"""
Generic Repository Base Class
DRY foundation for async idempotent writes on MongoDB entity collections.
"""
from dataclasses import dataclass
from typing import Generic, TypeVar, Type, Optional, List, Dict, Any, Union
from motor.motor_asyncio import AsyncIOMotorClientSession, AsyncIOMotorCollection, AsyncIOMotorDatabase
from bson import ObjectId
from bson.errors import InvalidId

from ..models.base import MongoBaseModel, utcnow
from ..utils.observability import logger
from .filters import EntityFilter

# Generic type for domain models
T = TypeVar("T", bound=MongoBaseModel)

Query = Union[EntityFilter, Dict[str, Any]]
Session = Optional[AsyncIOMotorClientSession]


@dataclass
class UpsertResult:
    document_id: str
    created: bool


def as_query(query: Query) -> Dict[str, Any]:
    return query.to_query() if isinstance(query, EntityFilter) else query


def as_object_id(document_id: Union[str, ObjectId]) -> Union[str, ObjectId]:
    """ObjectId for 24-hex strings, the value itself otherwise."""
    if isinstance(document_id, ObjectId):
        return document_id
    try:
        return ObjectId(document_id)
    except (InvalidId, TypeError):
        return document_id


class BaseRepository(Generic[T]):
    """
    Generic async repository for MongoDB entity collections.

    Writes are keyed by (external id, locationId) through EntityFilter so that
    replaying the same webhook converges on the same document.

    Usage:
        class ContactRepository(BaseRepository[Contact]):
            def __init__(self, database: AsyncIOMotorDatabase):
                super().__init__(database, "contacts", Contact)
    """

    def __init__(
        self,
        database: AsyncIOMotorDatabase,
        collection_name: str,
        model_class: Type[T]
    ):
        """
        Initialize repository with database connection and model type.

        Args:
            database: Motor database instance
            collection_name: MongoDB collection name
            model_class: Pydantic model class for reads
        """
        self.database = database
        self.collection: AsyncIOMotorCollection = database[collection_name]
        self.model_class = model_class
        self.collection_name = collection_name

    async def find_by_id(self, document_id: str, session: Session = None) -> Optional[T]:
        doc = await self.collection.find_one({"_id": as_object_id(document_id)}, session=session)
        return self._to_model(doc)

    async def find_one(self, query: Query, session: Session = None) -> Optional[T]:
        doc = await self.collection.find_one(as_query(query), session=session)
        return self._to_model(doc)

    async def find_many(
        self,
        query: Query,
        limit: int = 100,
        skip: int = 0,
        sort: Optional[List[tuple]] = None
    ) -> List[T]:
        """
        Retrieve multiple documents matching the filter.

        Args:
            query: EntityFilter or raw MongoDB filter
            limit: Maximum number of documents to return
            skip: Number of documents to skip
            sort: List of (field, direction) tuples for sorting
        """
        cursor = self.collection.find(as_query(query)).skip(skip).limit(limit)

        if sort:
            cursor = cursor.sort(sort)

        docs = await cursor.to_list(length=limit)

        return [self._to_model(doc) for doc in docs]

    async def upsert(
        self,
        entity: Query,
        set_fields: Dict[str, Any],
        set_on_insert: Optional[Dict[str, Any]] = None,
        session: Session = None
    ) -> UpsertResult:
        """
        Idempotent create-or-update keyed by (external id, locationId).

        Args:
            entity: Key of the target document (EntityFilter or raw filter)
            set_fields: Fields overwritten on every delivery (last write wins)
            set_on_insert: Creation-only fields (createdAt, createdByWebhook, ...)

        Returns:
            Internal document id and whether this call inserted it
        """
        now = utcnow()
        update: Dict[str, Any] = {"$set": {**set_fields, "updatedAt": now}}

        on_insert = {"createdAt": now, **(set_on_insert or {})}
        on_insert = {k: v for k, v in on_insert.items() if k not in update["$set"]}
        update["$setOnInsert"] = on_insert

        query = as_query(entity)
        result = await self.collection.update_one(query, update, upsert=True, session=session)

        if result.upserted_id is not None:
            logger.debug(
                f"Inserted document in {self.collection_name}",
                extra={"query": query}
            )
            return UpsertResult(document_id=str(result.upserted_id), created=True)

        existing = await self.collection.find_one(query, {"_id": 1}, session=session)
        return UpsertResult(document_id=str(existing["_id"]), created=False)

    async def update_fields(
        self,
        query: Query,
        set_fields: Optional[Dict[str, Any]] = None,
        push: Optional[Dict[str, Any]] = None,
        unset: Optional[List[str]] = None,
        session: Session = None
    ) -> bool:
        """
        Partial update of one document.

        Returns:
            True if a document matched, False if not found
        """
        update: Dict[str, Any] = {"$set": {**(set_fields or {}), "updatedAt": utcnow()}}
        if push:
            update["$push"] = push
        if unset:
            update["$unset"] = {name: "" for name in unset}

        result = await self.collection.update_one(as_query(query), update, session=session)
        return result.matched_count > 0

    async def soft_delete(
        self,
        query: Query,
        extra: Optional[Dict[str, Any]] = None,
        session: Session = None
    ) -> bool:
        """
        Mark a document deleted without removing it.

        Returns:
            True if a document matched, False if not found
        """
        now = utcnow()
        matched = await self.update_fields(
            query,
            {"deleted": True, "deletedAt": now, **(extra or {})},
            session=session
        )

        if matched:
            logger.debug(f"Soft-deleted document in {self.collection_name}")

        return matched

    async def delete_many(self, query: Dict[str, Any], session: Session = None) -> int:
        """Physical delete. Only the uninstall cleanup path uses this."""
        result = await self.collection.delete_many(query, session=session)
        return result.deleted_count

    def _to_model(self, doc: Optional[Dict[str, Any]]) -> Optional[T]:
        """
        Convert MongoDB document to Pydantic model instance.

        Args:
            doc: Raw MongoDB document dict

        Returns:
            Domain model instance, or None for a missing document
        """
        if not doc:
            return None
        # Convert ObjectId to string for Pydantic validation
        if "_id" in doc:
            doc["_id"] = str(doc["_id"])

        known = {
            info.alias or name
            for name, info in self.model_class.model_fields.items()
        }

        cleaned_doc = {
            k: v for k, v in doc.items()
            if k in known or k == "_id"
        }

        return self.model_class.model_validate(cleaned_doc)
