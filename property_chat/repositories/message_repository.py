import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import OperationFailure, PyMongoError
from redis.exceptions import RedisError

from property_chat.core.config import settings
from property_chat.core.errors import ChatEngineError, TransientStoreError, UnsupportedQueryError
from property_chat.models.message import Message, MessageDocument, MessageQuery
from property_chat.repositories.snapshot_stream import SnapshotStream
from property_chat.utils.conversation_key import conversation_key

logger = logging.getLogger(__name__)

# BadValue (unusable hint), OperationFailed and QueryExceededMemoryLimitNoDiskUseAllowed
# are what an unindexed sort comes back as.
UNSUPPORTED_QUERY_CODES = {2, 96, 292}


def translate_error(exc: PyMongoError, action: str) -> ChatEngineError:
    if isinstance(exc, OperationFailure) and exc.code in UNSUPPORTED_QUERY_CODES:
        return UnsupportedQueryError(f"{action}: {exc}", cause=exc)
    return TransientStoreError(f"{action}: {exc}", cause=exc)


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase, bus, snapshot_limit: Optional[int] = None) -> None:
        self._db = db
        self._bus = bus
        self.snapshot_limit = snapshot_limit or settings.MAX_SNAPSHOT_SIZE

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("conversation_key", ASCENDING), ("timestamp", ASCENDING)])
        await self.collection.create_index([("sender_id", ASCENDING), ("property_id", ASCENDING), ("timestamp", ASCENDING)])
        await self.collection.create_index([("receiver_id", ASCENDING), ("property_id", ASCENDING), ("timestamp", ASCENDING)])
        await self.collection.create_index([("receiver_id", ASCENDING), ("read", ASCENDING)])

    async def append(self, sender_id: str, receiver_id: str, property_id: str, content: str) -> Message:
        doc: MessageDocument = {
            "conversation_key": conversation_key(sender_id, receiver_id, property_id),
            "sender_id": sender_id,
            "receiver_id": receiver_id,
            "property_id": property_id,
            "content": content,
            "timestamp": datetime.now(timezone.utc),
            "read": False,
            "deleted": False,
        }
        try:
            result = await self.collection.insert_one(doc)
        except PyMongoError as exc:
            raise translate_error(exc, "append message") from exc
        doc["_id"] = result.inserted_id
        await self._publish_change(sender_id, receiver_id, property_id)
        return Message.from_document(doc)

    async def get(self, message_id: str) -> Optional[Message]:
        try:
            oid = ObjectId(message_id)
        except InvalidId:
            return None
        try:
            doc = await self.collection.find_one({"_id": oid})
        except PyMongoError as exc:
            raise translate_error(exc, "get message") from exc
        return Message.from_document(doc) if doc else None

    async def find(self, query: MessageQuery, ordered: bool) -> List[Message]:
        cursor = self.collection.find(query.to_mongo())
        if ordered:
            # newest first so the cap drops the oldest messages
            cursor = cursor.sort([("timestamp", DESCENDING), ("_id", DESCENDING)])
        cursor = cursor.limit(self.snapshot_limit)
        try:
            docs = await cursor.to_list(length=self.snapshot_limit)
        except PyMongoError as exc:
            raise translate_error(exc, "find messages") from exc
        if ordered:
            docs.reverse()
        return [Message.from_document(d) for d in docs]

    async def subscribe(self, query: MessageQuery, ordered: bool) -> SnapshotStream[List[Message]]:
        subs: List[Any] = []
        tasks: List[asyncio.Task] = []

        async def release() -> None:
            for task in tasks:
                task.cancel()
            for sub in subs:
                await sub.cancel()

        stream: SnapshotStream[List[Message]] = SnapshotStream(on_release=release)

        async def on_change(raw: str) -> None:
            try:
                change = json.loads(raw)
            except ValueError:
                logger.warning("ignoring malformed change notification: %r", raw)
                return
            if not query.touches(change.get("sender_id"), change.get("receiver_id"), change.get("property_id")):
                return
            try:
                stream.push(await self.find(query, ordered))
            except ChatEngineError as exc:
                stream.push_error(exc)

        try:
            # listen before the first read so no change between the two is missed
            for channel in query.channels():
                subs.append(await self._bus.subscribe(channel, on_change))
            initial = await self.find(query, ordered)
        except (RedisError, OSError) as exc:
            await release()
            raise TransientStoreError(f"subscribe to change notifications: {exc}", cause=exc) from exc
        except (ChatEngineError, asyncio.CancelledError):
            await release()
            raise
        stream.push(initial)
        for sub in subs:
            tasks.append(asyncio.create_task(sub.run()))
        return stream

    async def bulk_set_read(self, query: MessageQuery) -> int:
        mongo_query: Dict[str, Any] = query.to_mongo()
        mongo_query["read"] = False
        try:
            result = await self.collection.update_many(mongo_query, {"$set": {"read": True}})
        except PyMongoError as exc:
            raise translate_error(exc, "mark read") from exc
        modified = result.modified_count or 0
        if modified:
            await self._publish_change(query.sender_id, query.receiver_id, query.property_id)
        return modified

    async def count_where(self, query: MessageQuery) -> int:
        try:
            return await self.collection.count_documents(query.to_mongo())
        except PyMongoError as exc:
            raise translate_error(exc, "count messages") from exc

    async def mark_deleted(self, message_id: str) -> bool:
        message = await self.get(message_id)
        if message is None:
            return False
        try:
            result = await self.collection.update_one(
                {"_id": ObjectId(message_id), "deleted": {"$ne": True}},
                {"$set": {"deleted": True}},
            )
        except PyMongoError as exc:
            raise translate_error(exc, "delete message") from exc
        if result.modified_count:
            await self._publish_change(message.sender_id, message.receiver_id, message.property_id)
        return bool(result.modified_count)

    async def _publish_change(self, sender_id: Optional[str], receiver_id: Optional[str], property_id: Optional[str]) -> None:
        payload = json.dumps({"sender_id": sender_id, "receiver_id": receiver_id, "property_id": property_id})
        channels = ["messages"]
        if receiver_id is not None:
            channels.append(f"user:{receiver_id}")
        if sender_id is not None and sender_id != receiver_id:
            channels.append(f"user:{sender_id}")
        if property_id is not None:
            channels.append(f"property:{property_id}")
        for channel in channels:
            try:
                await self._bus.publish(channel, payload)
            except Exception as exc:
                # the write is already durable, live views catch up on the next change
                logger.warning("change notification on %s failed: %s", channel, exc)
