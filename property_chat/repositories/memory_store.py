from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from bson import ObjectId

from property_chat.core.config import settings
from property_chat.models.conversation import ConversationSummary
from property_chat.models.message import Message, MessageQuery
from property_chat.repositories.snapshot_stream import SnapshotStream


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryMessageStore:
    """Process-local message log with the same contract as the Mongo store.

    Unordered reads return messages in insertion order, which is not
    necessarily timestamp order when the clock is injected. Snapshots are
    capped at ``snapshot_limit``: ordered reads keep the newest messages,
    unordered reads the first ones inserted.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow, snapshot_limit: Optional[int] = None) -> None:
        self._clock = clock
        self.snapshot_limit = snapshot_limit or settings.MAX_SNAPSHOT_SIZE
        self._messages: Dict[str, Message] = {}
        self._streams: List[Tuple[MessageQuery, bool, SnapshotStream]] = []

    async def append(self, sender_id: str, receiver_id: str, property_id: str, content: str) -> Message:
        message = Message(
            id=str(ObjectId()),
            sender_id=sender_id,
            receiver_id=receiver_id,
            property_id=property_id,
            content=content,
            timestamp=self._clock(),
        )
        self._messages[message.id] = message
        self._notify(sender_id, receiver_id, property_id)
        return message

    async def get(self, message_id: str) -> Optional[Message]:
        return self._messages.get(message_id)

    async def find(self, query: MessageQuery, ordered: bool) -> List[Message]:
        return self._snapshot(query, ordered)

    async def subscribe(self, query: MessageQuery, ordered: bool) -> SnapshotStream[List[Message]]:
        entry: Tuple[MessageQuery, bool, SnapshotStream]

        async def release() -> None:
            if entry in self._streams:
                self._streams.remove(entry)

        stream: SnapshotStream[List[Message]] = SnapshotStream(on_release=release)
        entry = (query, ordered, stream)
        self._streams.append(entry)
        stream.push(self._snapshot(query, ordered))
        return stream

    async def bulk_set_read(self, query: MessageQuery) -> int:
        query = replace(query, unread_only=True)
        updated = 0
        for message in self._select(query, ordered=False):
            self._messages[message.id] = message.mark_read()
            updated += 1
        if updated:
            self._notify(query.sender_id, query.receiver_id, query.property_id)
        return updated

    async def count_where(self, query: MessageQuery) -> int:
        return len(self._select(query, ordered=False))

    async def mark_deleted(self, message_id: str) -> bool:
        message = self._messages.get(message_id)
        if message is None or message.deleted:
            return False
        self._messages[message_id] = message.mark_deleted()
        self._notify(message.sender_id, message.receiver_id, message.property_id)
        return True

    @property
    def open_streams(self) -> int:
        return len(self._streams)

    def _select(self, query: MessageQuery, ordered: bool) -> List[Message]:
        items = [m for m in self._messages.values() if query.matches(m)]
        if ordered:
            items.sort(key=lambda m: m.sort_key)
        return items

    def _snapshot(self, query: MessageQuery, ordered: bool) -> List[Message]:
        items = self._select(query, ordered)
        if len(items) <= self.snapshot_limit:
            return items
        return items[-self.snapshot_limit :] if ordered else items[: self.snapshot_limit]

    def _notify(self, sender_id: Optional[str], receiver_id: Optional[str], property_id: Optional[str]) -> None:
        for query, ordered, stream in list(self._streams):
            if query.touches(sender_id, receiver_id, property_id):
                stream.push(self._snapshot(query, ordered))


class InMemorySummaryStore:

    def __init__(self) -> None:
        self._summaries: Dict[str, ConversationSummary] = {}
        self._streams: List[Tuple[str, SnapshotStream]] = []

    async def upsert(
        self,
        key: str,
        participants: Tuple[str, str],
        property_id: str,
        last_message_text: str,
        last_message_time: datetime,
        unread_for: Optional[str] = None,
    ) -> None:
        existing = self._summaries.get(key)
        counters = dict(existing.unread_counters) if existing else {}
        if unread_for is not None:
            counters[unread_for] = counters.get(unread_for, 0) + 1
        self._summaries[key] = ConversationSummary(
            key=key,
            participants=tuple(sorted(participants)),  # type: ignore[arg-type]
            property_id=property_id,
            last_message_text=last_message_text,
            last_message_time=last_message_time,
            unread_counters=counters,
        )
        self._notify(participants)

    async def reset_unread(self, key: str, user_id: str) -> None:
        existing = self._summaries.get(key)
        if existing is None:
            return
        counters = dict(existing.unread_counters)
        counters[user_id] = 0
        self._summaries[key] = replace(existing, unread_counters=counters)
        self._notify(existing.participants)

    async def list_for_user(self, user_id: str) -> List[ConversationSummary]:
        return self._for_user(user_id)

    async def subscribe(self, user_id: str) -> SnapshotStream[List[ConversationSummary]]:
        entry: Tuple[str, SnapshotStream]

        async def release() -> None:
            if entry in self._streams:
                self._streams.remove(entry)

        stream: SnapshotStream[List[ConversationSummary]] = SnapshotStream(on_release=release)
        entry = (user_id, stream)
        self._streams.append(entry)
        stream.push(self._for_user(user_id))
        return stream

    def _for_user(self, user_id: str) -> List[ConversationSummary]:
        items = [s for s in self._summaries.values() if user_id in s.participants]
        items.sort(key=lambda s: (s.last_message_time is not None, s.last_message_time, s.key), reverse=True)
        return items

    def _notify(self, participants) -> None:
        for user_id, stream in list(self._streams):
            if user_id in participants:
                stream.push(self._for_user(user_id))
