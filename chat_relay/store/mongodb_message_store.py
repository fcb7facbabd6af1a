import logging
from datetime import datetime
from typing import List, Optional

from bson.errors import BSONError
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from ..relay_errors import StoreError
from ..relay_models import ChatMessage
from .message_store import MessageStore

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION = "chatmessages"


class MongoDBMessageStore(MessageStore):
    """Message store backed by a MongoDB collection.

    Documents have the shape ``{_id, seq, author, body, created_at}``. A unique
    index on ``seq`` rejects a second write for the same position, so a retried
    append can never produce a duplicate record.
    """

    def __init__(
        self,
        *,
        mongo_uri: str,
        mongo_db: str,
        mongo_collection: str = DEFAULT_COLLECTION,
        **kwargs,
    ):
        super().__init__(**kwargs)
        if not mongo_uri or not mongo_db or not mongo_collection:
            raise ValueError("MongoDB URI, database, and collection are required")
        self.mongo_uri = mongo_uri
        self.mongo_db = mongo_db
        self.mongo_collection = mongo_collection
        timeout_ms = int(self.timeout * 1000)
        self._client = AsyncIOMotorClient(
            mongo_uri,
            tz_aware=True,
            serverSelectionTimeoutMS=timeout_ms,
        )
        self._coll = self._client[mongo_db][mongo_collection]

    def _now(self) -> datetime:
        # BSON dates carry millisecond resolution
        now = super()._now()
        return now.replace(microsecond=now.microsecond // 1000 * 1000)

    @staticmethod
    def _to_document(message: ChatMessage) -> dict:
        return {
            "_id": message.id,
            "seq": message.seq,
            "author": message.author,
            "body": message.body,
            "created_at": message.created_at,
        }

    @staticmethod
    def _from_document(doc: dict) -> ChatMessage:
        return ChatMessage(
            id=str(doc["_id"]),
            seq=doc.get("seq", 0),
            author=doc["author"],
            body=doc["body"],
            created_at=doc["created_at"],
        )

    async def open(self) -> None:
        try:
            await self._coll.create_index([("seq", ASCENDING)], unique=True)
        except PyMongoError as e:
            raise StoreError(f"Failed to prepare MongoDB collection: {e}")
        await super().open()
        logger.info(f"[STORE] Using MongoDB collection {self.mongo_db}.{self.mongo_collection} (last seq {self._last_seq})")

    async def close(self) -> None:
        self._client.close()

    async def _insert(self, message: ChatMessage) -> None:
        try:
            await self._coll.insert_one(self._to_document(message))
        except (PyMongoError, BSONError, UnicodeEncodeError) as e:
            logger.error(f"[STORE] Failed to insert message {message.id}: {e}")
            raise StoreError(f"Failed to write message to MongoDB: {e}")

    async def _fetch_recent(self, limit: int) -> List[ChatMessage]:
        try:
            cursor = self._coll.find({}).sort("seq", DESCENDING).limit(limit)
            docs = await cursor.to_list(length=limit)
        except PyMongoError as e:
            raise StoreError(f"Failed to read messages from MongoDB: {e}")
        return [self._from_document(doc) for doc in reversed(docs)]

    async def _count(self) -> int:
        try:
            return await self._coll.count_documents({})
        except PyMongoError as e:
            raise StoreError(f"Failed to count messages in MongoDB: {e}")

    async def _load_last(self) -> Optional[ChatMessage]:
        try:
            doc = await self._coll.find_one({}, sort=[("seq", DESCENDING)])
        except PyMongoError as e:
            raise StoreError(f"Failed to read last message from MongoDB: {e}")
        return self._from_document(doc) if doc else None
