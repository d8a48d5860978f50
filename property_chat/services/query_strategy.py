"""Two-stage retrieval: server-ordered first, unordered plus client sort second."""

import logging
from typing import List, Optional, Protocol, Tuple

from property_chat.core.errors import TransientStoreError, UnsupportedQueryError
from property_chat.models.message import Message, MessageQuery
from property_chat.repositories.base import MessageStore
from property_chat.repositories.snapshot_stream import SnapshotStream
from property_chat.services.merge import order_snapshot

logger = logging.getLogger(__name__)


class QueryPlan(Protocol):

    name: str
    is_fallback: bool

    async def open(self, store: MessageStore, query: MessageQuery) -> SnapshotStream[List[Message]]: ...

    def normalize(self, snapshot: List[Message]) -> List[Message]: ...


class PreferredQuery:

    name = "preferred"
    ordered = True
    is_fallback = False

    async def open(self, store: MessageStore, query: MessageQuery) -> SnapshotStream[List[Message]]:
        return await store.subscribe(query, ordered=True)

    def normalize(self, snapshot: List[Message]) -> List[Message]:
        return list(snapshot)


class FallbackQuery:

    name = "fallback"
    ordered = False
    is_fallback = True

    async def open(self, store: MessageStore, query: MessageQuery) -> SnapshotStream[List[Message]]:
        return await store.subscribe(query, ordered=False)

    def normalize(self, snapshot: List[Message]) -> List[Message]:
        return order_snapshot(snapshot)


class QueryStrategy:
    """Open a live subscription, substituting the fallback at most once.

    Whatever the fallback raises goes to the caller; there is no retry loop here.
    """

    def __init__(self, preferred: Optional[QueryPlan] = None, fallback: Optional[QueryPlan] = None) -> None:
        self.preferred: QueryPlan = preferred or PreferredQuery()
        self.fallback: QueryPlan = fallback or FallbackQuery()

    async def open(self, store: MessageStore, query: MessageQuery) -> Tuple[SnapshotStream[List[Message]], QueryPlan]:
        try:
            return await self.preferred.open(store, query), self.preferred
        except (UnsupportedQueryError, TransientStoreError) as exc:
            logger.warning("ordered subscription for %s unavailable (%s), using fallback", query, exc.kind.value)
        return await self.fallback.open(store, query), self.fallback
