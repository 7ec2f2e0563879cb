"""
MongoDB access layer.

`MongoStore` owns the driver client. It is built once per process, connected
in the app lifespan and handed to request handlers through `get_store`.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from fastapi import HTTPException, Request
from pydantic import BaseModel
from pymongo import DESCENDING, MongoClient, ReturnDocument
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)

NOTIFICATIONS = "notifications"
INSPECTIONS = "inspections"

INDEXES = {
    NOTIFICATIONS: "timestamp",
    INSPECTIONS: "submittedAt",
}


def parse_object_id(raw: str) -> ObjectId:
    if not ObjectId.is_valid(raw):
        raise HTTPException(400, "Invalid ID format")
    return ObjectId(raw)


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    doc["_id"] = str(doc["_id"])  # serialize
    return doc


class MongoStore:
    def __init__(
        self,
        uri: Optional[str] = None,
        name: str = "fleet_management",
        max_pool_size: int = 10,
        timeout_ms: int = 5000,
        client: Optional[MongoClient] = None,
    ):
        self.uri = uri
        self.name = name
        self.max_pool_size = max_pool_size
        self.timeout_ms = timeout_ms
        self.client = client
        self.db = None

    @classmethod
    def from_settings(cls, settings) -> "MongoStore":
        return cls(
            uri=settings.MONGODB_URI,
            name=settings.DATABASE_NAME,
            max_pool_size=settings.MONGO_MAX_POOL_SIZE,
            timeout_ms=settings.MONGO_SERVER_SELECTION_TIMEOUT_MS,
        )

    def connect(self) -> None:
        """Open the client, ping it and make sure the sort indexes exist.

        Raises the driver error when the server cannot be reached within the
        selection timeout so startup fails instead of serving traffic.
        """
        if self.client is None:
            self.client = MongoClient(
                self.uri,
                maxPoolSize=self.max_pool_size,
                tz_aware=True,
                serverSelectionTimeoutMS=self.timeout_ms,
            )
        self.db = self.client[self.name]
        self.client.admin.command("ping")
        for collection_name, field in INDEXES.items():
            self.db[collection_name].create_index([(field, DESCENDING)])
        logger.info("Connected to MongoDB", extra={"collection": self.name})

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
            logger.info("MongoDB connection closed")
        self.db = None

    def ping(self) -> bool:
        if self.client is None or self.db is None:
            return False
        try:
            self.client.admin.command("ping")
        except PyMongoError:
            logger.warning("MongoDB ping failed", exc_info=True)
            return False
        return True

    # CRUD helpers

    def create_document(self, collection_name: str, data) -> Dict[str, Any]:
        if isinstance(data, BaseModel):
            data = data.model_dump()
        else:
            data = dict(data)
        now = datetime.now(timezone.utc)
        data["createdAt"] = now
        data["updatedAt"] = now
        result = self.db[collection_name].insert_one(data)
        # read back so callers see what the store kept (UTC, millisecond precision)
        return serialize(self.db[collection_name].find_one({"_id": result.inserted_id}))

    def get_documents(
        self,
        collection_name: str,
        filter_dict: Optional[dict] = None,
        sort: Optional[Tuple[str, int]] = None,
        skip: int = 0,
        limit: int = 0,
    ) -> List[Dict[str, Any]]:
        cursor = self.db[collection_name].find(filter_dict or {})
        if sort:
            cursor = cursor.sort([sort])
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return [serialize(doc) for doc in cursor]

    def count_documents(self, collection_name: str, filter_dict: Optional[dict] = None) -> int:
        return self.db[collection_name].count_documents(filter_dict or {})

    def get_document(self, collection_name: str, oid: ObjectId) -> Optional[Dict[str, Any]]:
        return serialize(self.db[collection_name].find_one({"_id": oid}))

    def update_document(self, collection_name: str, oid: ObjectId, fields: dict) -> Optional[Dict[str, Any]]:
        update = dict(fields)
        update["updatedAt"] = datetime.now(timezone.utc)
        doc = self.db[collection_name].find_one_and_update(
            {"_id": oid},
            {"$set": update},
            return_document=ReturnDocument.AFTER,
        )
        return serialize(doc)


def get_store(request: Request) -> MongoStore:
    return request.app.state.store
