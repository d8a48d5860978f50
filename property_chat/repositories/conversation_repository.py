import asyncio
import json
import logging
from datetime import datetime
from typing import Any, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError
from redis.exceptions import RedisError

from property_chat.core.errors import ChatEngineError, SummaryWriteFailure, TransientStoreError
from property_chat.models.conversation import ConversationSummary
from property_chat.repositories.message_repository import translate_error
from property_chat.repositories.snapshot_stream import SnapshotStream

logger = logging.getLogger(__name__)


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase, bus, limit: int = 200) -> None:
        self._db = db
        self._bus = bus
        self._limit = limit

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("participants", ASCENDING)])
        await self.collection.create_index([("last_message_at", DESCENDING)])

    async def upsert(
        self,
        key: str,
        participants: Tuple[str, str],
        property_id: str,
        last_message_text: str,
        last_message_time: datetime,
        unread_for: Optional[str] = None,
    ) -> None:
        update: dict[str, Any] = {
            "$set": {
                "participants": sorted(participants),
                "property_id": property_id,
                "last_message_at": last_message_time,
                "last_message_preview": last_message_text,
            },
        }
        if unread_for is not None:
            update["$inc"] = {f"unread_counters.{unread_for}": 1}
        try:
            await self.collection.update_one({"_id": key}, update, upsert=True)
        except PyMongoError as exc:
            raise SummaryWriteFailure(f"upsert summary {key}: {exc}", cause=exc) from exc
        await self._publish(participants)

    async def reset_unread(self, key: str, user_id: str) -> None:
        try:
            result = await self.collection.update_one({"_id": key}, {"$set": {f"unread_counters.{user_id}": 0}})
        except PyMongoError as exc:
            raise translate_error(exc, "reset summary unread") from exc
        if result.modified_count:
            await self._publish([user_id])

    async def list_for_user(self, user_id: str) -> List[ConversationSummary]:
        cursor = self.collection.find({"participants": {"$in": [user_id]}}).sort(
            [("last_message_at", DESCENDING), ("_id", DESCENDING)]
        )
        try:
            items = await cursor.to_list(length=self._limit)
        except PyMongoError as exc:
            raise translate_error(exc, "list summaries") from exc
        return [ConversationSummary.from_document(it) for it in items]

    async def subscribe(self, user_id: str) -> SnapshotStream[List[ConversationSummary]]:
        tasks: List[asyncio.Task] = []

        async def on_change(raw: str) -> None:
            try:
                stream.push(await self.list_for_user(user_id))
            except ChatEngineError as exc:
                stream.push_error(exc)

        try:
            sub = await self._bus.subscribe(f"summaries:{user_id}", on_change)
        except (RedisError, OSError) as exc:
            raise TransientStoreError(f"subscribe to summary notifications: {exc}", cause=exc) from exc

        async def release() -> None:
            for task in tasks:
                task.cancel()
            await sub.cancel()

        stream: SnapshotStream[List[ConversationSummary]] = SnapshotStream(on_release=release)
        try:
            stream.push(await self.list_for_user(user_id))
        except ChatEngineError:
            await release()
            raise
        tasks.append(asyncio.create_task(sub.run()))
        return stream

    async def _publish(self, participants) -> None:
        for user_id in participants:
            try:
                await self._bus.publish(f"summaries:{user_id}", json.dumps({"user_id": user_id}))
            except Exception as exc:
                logger.warning("summary notification for %s failed: %s", user_id, exc)
