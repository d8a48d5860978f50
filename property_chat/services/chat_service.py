import asyncio
import logging
from typing import List, Optional, Set

from property_chat.core.config import settings
from property_chat.core.errors import ChatEngineError
from property_chat.models.conversation import ConversationSummary
from property_chat.models.message import Message
from property_chat.repositories.base import MessageStore, SummaryStore
from property_chat.services.chat_session import ChatSession
from property_chat.services.query_strategy import QueryStrategy
from property_chat.services.read_state import ReadStateManager

logger = logging.getLogger(__name__)


class ChatService:

    def __init__(
        self,
        message_store: MessageStore,
        summary_store: SummaryStore,
        *,
        strategy: Optional[QueryStrategy] = None,
        resubscribe_delay: Optional[float] = None,
    ) -> None:
        self._message_store = message_store
        self._summary_store = summary_store
        self._strategy = strategy
        self._resubscribe_delay = resubscribe_delay
        self._read_state = ReadStateManager(message_store, summary_store)
        self._pending_summaries: Set[asyncio.Task] = set()

    async def send_message(self, sender_id: str, receiver_id: str, property_id: str, content: str) -> Message:
        if not content or not content.strip():
            raise ValueError("Message content cannot be empty")
        if sender_id == receiver_id:
            raise ValueError("Cannot send a message to yourself")
        if not property_id:
            raise ValueError("Message must reference a property")
        saved = await self._message_store.append(sender_id, receiver_id, property_id, content.strip())
        task = asyncio.create_task(self._write_summary(saved))
        self._pending_summaries.add(task)
        task.add_done_callback(self._pending_summaries.discard)
        return saved

    async def delete_message(self, message_id: str, requester_id: str) -> bool:
        message = await self._message_store.get(message_id)
        if message is None:
            raise LookupError(f"Message {message_id} not found")
        if message.sender_id != requester_id:
            raise PermissionError("Only the sender can delete a message")
        return await self._message_store.mark_deleted(message_id)

    async def mark_read(self, viewer_id: str, counterpart_id: str, property_id: str) -> int:
        return await self._read_state.mark_read(viewer_id, counterpart_id, property_id)

    async def get_unread_total(self, viewer_id: str) -> int:
        return await self._read_state.unread_total(viewer_id)

    async def list_conversations(self, user_id: str) -> List[ConversationSummary]:
        return await self._summary_store.list_for_user(user_id)

    def open_session(self, viewer_id: str) -> ChatSession:
        return ChatSession(
            viewer_id,
            self._message_store,
            self._summary_store,
            strategy=self._strategy,
            resubscribe_delay=self._resubscribe_delay,
        )

    async def flush_summaries(self) -> None:
        if self._pending_summaries:
            await asyncio.gather(*list(self._pending_summaries), return_exceptions=True)

    async def _write_summary(self, message: Message) -> None:
        try:
            await self._summary_store.upsert(
                message.conversation_key,
                (message.sender_id, message.receiver_id),
                message.property_id,
                message.content[: settings.SUMMARY_PREVIEW_LENGTH],
                message.timestamp,
                unread_for=message.receiver_id,
            )
        except ChatEngineError as exc:
            # the message is already durable, summaries are rebuildable
            logger.error(
                "summary write for %s failed (%s): %s", message.conversation_key, exc.kind.value, exc, exc_info=exc
            )
