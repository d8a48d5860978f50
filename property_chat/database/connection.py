import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from property_chat.core.config import settings
from property_chat.repositories.base import MessageStore, SummaryStore
from property_chat.repositories.conversation_repository import ConversationRepository
from property_chat.repositories.memory_store import InMemoryMessageStore, InMemorySummaryStore
from property_chat.repositories.message_repository import MessageRepository
from property_chat.utils.realtime_bus import get_bus, reset_bus

logger = logging.getLogger(__name__)

_client: Optional[AsyncIOMotorClient] = None
_db: Optional[AsyncIOMotorDatabase] = None
_message_store: Optional[MessageStore] = None
_summary_store: Optional[SummaryStore] = None


async def connect_to_mongo() -> None:
    global _client, _db, _message_store, _summary_store
    bus = await get_bus()
    if not settings.MONGODB_URL:
        logger.warning("MONGODB_URL is not set, messages are kept in process memory")
        _message_store = InMemoryMessageStore()
        _summary_store = InMemorySummaryStore()
        return
    _client = AsyncIOMotorClient(settings.MONGODB_URL)
    _db = _client[settings.MONGODB_DB]
    messages = MessageRepository(_db, bus)
    summaries = ConversationRepository(_db, bus)
    await messages.ensure_indexes()
    await summaries.ensure_indexes()
    _message_store, _summary_store = messages, summaries
    logger.info("connected to MongoDB database %s", settings.MONGODB_DB)


async def close_mongo_connection() -> None:
    global _client, _db, _message_store, _summary_store
    if _client is not None:
        _client.close()
    _client = _db = None
    _message_store = _summary_store = None
    await reset_bus()


def get_message_store() -> MessageStore:
    if _message_store is None:
        raise RuntimeError("Database is not connected")
    return _message_store


def get_summary_store() -> SummaryStore:
    if _summary_store is None:
        raise RuntimeError("Database is not connected")
    return _summary_store
