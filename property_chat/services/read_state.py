import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional

from property_chat.core.errors import ChatEngineError
from property_chat.models.message import Message, MessageQuery
from property_chat.repositories.base import MessageStore, SummaryStore
from property_chat.utils.conversation_key import conversation_key

logger = logging.getLogger(__name__)


def unread_count(
    messages: Iterable[Message],
    viewer_id: str,
    counterpart_id: Optional[str] = None,
    property_id: Optional[str] = None,
) -> int:
    """Authoritative unread count, always derived from message state."""
    return sum(
        1
        for m in messages
        if m.receiver_id == viewer_id
        and not m.read
        and (counterpart_id is None or m.sender_id == counterpart_id)
        and (property_id is None or m.property_id == property_id)
    )


@dataclass
class UnreadBadge:
    """Global unread total for quick display.

    Eventually consistent by construction: the value only changes when
    ``refresh`` pulls a fresh count from the store.
    """

    viewer_id: str
    store: MessageStore
    total: Optional[int] = None
    refreshed_at: Optional[datetime] = field(default=None)

    async def refresh(self) -> int:
        self.total = await self.store.count_where(MessageQuery(receiver_id=self.viewer_id, unread_only=True))
        self.refreshed_at = datetime.now(timezone.utc)
        return self.total


class ReadStateManager:

    def __init__(self, message_store: MessageStore, summary_store: Optional[SummaryStore] = None) -> None:
        self._message_store = message_store
        self._summary_store = summary_store

    async def mark_read(self, viewer_id: str, counterpart_id: str, property_id: str) -> int:
        query = MessageQuery(sender_id=counterpart_id, receiver_id=viewer_id, property_id=property_id, unread_only=True)
        updated = await self._message_store.bulk_set_read(query)
        if updated:
            logger.info("marked %d message(s) read for %s from %s on %s", updated, viewer_id, counterpart_id, property_id)
        if self._summary_store is not None:
            key = conversation_key(viewer_id, counterpart_id, property_id)
            try:
                await self._summary_store.reset_unread(key, viewer_id)
            except ChatEngineError as exc:
                logger.error("summary unread reset failed for %s: %s", key, exc)
        return updated

    async def unread_total(self, viewer_id: str) -> int:
        return await self._message_store.count_where(MessageQuery(receiver_id=viewer_id, unread_only=True))
