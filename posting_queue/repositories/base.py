"""
Generic Repository Base Class
Shared async helpers for MongoDB-backed collections.
"""
from typing import Generic, TypeVar, Type, Optional, List, Dict, Any
from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from bson import ObjectId
from bson.errors import InvalidId
import datetime as dt

from ..models.base import MongoBaseModel
from ..utils.observability import logger

# Generic type for domain models
T = TypeVar("T", bound=MongoBaseModel)


def to_bson_datetime(value: dt.datetime) -> dt.datetime:
    """BSON stores naive UTC; normalize aware values before writing or querying."""
    if value.tzinfo is not None:
        value = value.astimezone(dt.UTC).replace(tzinfo=None)
    return value


def bson_now() -> dt.datetime:
    return to_bson_datetime(dt.datetime.now(dt.UTC))


def to_object_id(document_id: str) -> Optional[ObjectId]:
    """Parse an id string, returning None for anything that is not an ObjectId."""
    try:
        return ObjectId(document_id)
    except (InvalidId, TypeError):
        return None


class BaseRepository(Generic[T]):
    """
    Generic async repository for MongoDB collections.
    Provides type-safe persistence helpers for domain models.

    Usage:
        class MongoConnectionRepository(BaseRepository[IntegrationConnection]):
            def __init__(self, database: AsyncIOMotorDatabase):
                super().__init__(database, "integration_connections", IntegrationConnection)
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
            model_class: Pydantic model class for type safety
        """
        self.database = database
        self.collection: AsyncIOMotorCollection = database[collection_name]
        self.model_class = model_class
        self.collection_name = collection_name

    async def create(self, document: T) -> T:
        """
        Insert a new document into the collection.

        Raises:
            pymongo.errors.DuplicateKeyError: If unique constraint violated
        """
        now = dt.datetime.now(dt.UTC)
        document.created_at = now
        document.updated_at = now

        result = await self.collection.insert_one(self._to_document(document))

        logger.debug(
            f"Created document in {self.collection_name}",
            extra={"document_id": str(result.inserted_id)}
        )

        document.id = str(result.inserted_id)
        return document

    async def find_by_id(self, document_id: str) -> Optional[T]:
        """
        Retrieve a document by its MongoDB ObjectId.

        Returns:
            Domain model instance or None if not found (or not a valid id)
        """
        object_id = to_object_id(document_id)
        if object_id is None:
            return None

        return self._to_model(await self.collection.find_one({"_id": object_id}))

    async def find_many(
        self,
        filter_dict: Dict[str, Any],
        limit: int = 100,
        skip: int = 0,
        sort: Optional[List[tuple]] = None
    ) -> List[T]:
        """
        Retrieve multiple documents matching the filter.

        Args:
            filter_dict: MongoDB query filter
            limit: Maximum number of documents to return
            skip: Number of documents to skip (pagination)
            sort: List of (field, direction) tuples for sorting
        """
        cursor = self.collection.find(filter_dict, sort=sort, skip=skip, limit=limit)
        docs = await cursor.to_list(length=limit)

        return [self._to_model(doc) for doc in docs]

    async def count(self, filter_dict: Optional[Dict[str, Any]] = None) -> int:
        """Count documents matching the filter (None for all documents)."""
        return await self.collection.count_documents(filter_dict or {})

    def _to_document(self, document: T) -> Dict[str, Any]:
        """Convert a model to a BSON-ready dict without its `_id`."""
        doc_dict = document.model_dump(by_alias=True, exclude={"id"})
        return {
            key: to_bson_datetime(value) if isinstance(value, dt.datetime) else value
            for key, value in doc_dict.items()
        }

    def _to_model(self, doc: Optional[Dict[str, Any]]) -> Optional[T]:
        """Convert a raw MongoDB document to a model instance."""
        if not doc:
            return None

        if "_id" in doc:
            doc["_id"] = str(doc["_id"])

        model_fields = self.model_class.model_fields.keys()
        cleaned_doc = {
            k: v for k, v in doc.items()
            if k in model_fields or k == "_id"
        }

        return self.model_class.model_validate(cleaned_doc)
