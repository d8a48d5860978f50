from datetime import datetime
from typing import List, Optional, Protocol, Tuple

from property_chat.models.conversation import ConversationSummary
from property_chat.models.message import Message, MessageQuery
from property_chat.repositories.snapshot_stream import SnapshotStream


class MessageStore(Protocol):
    """Durable, append-only message log with live full-state subscriptions.

    ``subscribe`` establishes the subscription before returning: establishment
    failures raise ``UnsupportedQueryError`` (the query shape cannot be served,
    e.g. ordering without a supporting index) or ``TransientStoreError``.
    Failures after establishment are delivered through the stream. Snapshots
    hold at most ``snapshot_limit`` messages, the newest ones when ordered.
    """

    snapshot_limit: int

    async def append(self, sender_id: str, receiver_id: str, property_id: str, content: str) -> Message: ...

    async def get(self, message_id: str) -> Optional[Message]: ...

    async def find(self, query: MessageQuery, ordered: bool) -> List[Message]: ...

    async def subscribe(self, query: MessageQuery, ordered: bool) -> SnapshotStream[List[Message]]: ...

    async def bulk_set_read(self, query: MessageQuery) -> int: ...

    async def count_where(self, query: MessageQuery) -> int: ...

    async def mark_deleted(self, message_id: str) -> bool: ...


class SummaryStore(Protocol):
    """Best-effort denormalized conversation summaries, rebuildable from the log.

    ``upsert`` reports storage failures as ``SummaryWriteFailure``.
    """

    async def upsert(
        self,
        key: str,
        participants: Tuple[str, str],
        property_id: str,
        last_message_text: str,
        last_message_time: datetime,
        unread_for: Optional[str] = None,
    ) -> None: ...

    async def reset_unread(self, key: str, user_id: str) -> None: ...

    async def list_for_user(self, user_id: str) -> List[ConversationSummary]: ...

    async def subscribe(self, user_id: str) -> SnapshotStream[List[ConversationSummary]]: ...
