"""Shared fixtures for the conversation engine tests.

The in-process store backs every test; failure modes are injected through
``FlakyStore`` rather than by touching a real database.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional

import pytest

from property_chat.core.errors import ChatEngineError, TransientStoreError, UnsupportedQueryError
from property_chat.models.message import Message, MessageQuery
from property_chat.repositories.memory_store import InMemoryMessageStore, InMemorySummaryStore
from property_chat.repositories.snapshot_stream import SnapshotStream
from property_chat.services.chat_service import ChatService

T0 = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)


class TickingClock:
    """Returns T0, T0+1s, T0+2s, ... unless told otherwise."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start
        self.step = timedelta(seconds=1)

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


class FlakyStore(InMemoryMessageStore):
    """In-memory store with switchable failure modes."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None, snapshot_limit: Optional[int] = None) -> None:
        super().__init__(clock=clock or TickingClock(), snapshot_limit=snapshot_limit)
        self.ordered_unsupported = False
        self.fail_subscribe = 0
        self.subscribe_calls: List[tuple] = []

    async def subscribe(self, query: MessageQuery, ordered: bool) -> SnapshotStream[List[Message]]:
        self.subscribe_calls.append((query, ordered))
        if self.fail_subscribe > 0:
            self.fail_subscribe -= 1
            raise TransientStoreError("store offline")
        if ordered and self.ordered_unsupported:
            raise UnsupportedQueryError("missing index for ordered query")
        return await super().subscribe(query, ordered)

    def fail_streams(self, error: ChatEngineError) -> None:
        for _, _, stream in list(self._streams):
            stream.push_error(error)


class UpdateCollector:
    """Async listener that records updates and lets a test wait for a state."""

    def __init__(self) -> None:
        self.updates: List[Any] = []
        self._changed = asyncio.Event()

    async def __call__(self, update: Any) -> None:
        self.updates.append(update)
        self._changed.set()

    @property
    def latest(self) -> Any:
        return self.updates[-1] if self.updates else None

    async def wait_for(self, predicate: Callable[[Any], bool], timeout: float = 2.0) -> Any:
        async def _wait() -> Any:
            while True:
                if self.updates and predicate(self.updates[-1]):
                    return self.updates[-1]
                self._changed.clear()
                await self._changed.wait()

        return await asyncio.wait_for(_wait(), timeout=timeout)


async def seed_property_chat(store: InMemoryMessageStore) -> List[Message]:
    """S owns P; B1 and S exchange two messages, S writes once to B2."""
    return [
        await store.append("S", "B1", "P", "hi"),
        await store.append("B1", "S", "P", "hello"),
        await store.append("S", "B2", "P", "hi"),
    ]


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def store(clock: TickingClock) -> FlakyStore:
    return FlakyStore(clock=clock)


@pytest.fixture
def summary_store() -> InMemorySummaryStore:
    return InMemorySummaryStore()


@pytest.fixture
def service(store: FlakyStore, summary_store: InMemorySummaryStore) -> ChatService:
    return ChatService(store, summary_store, resubscribe_delay=0.01)


@pytest.fixture
def collector() -> UpdateCollector:
    return UpdateCollector()


def make_message(message_id: str, seconds: int, sender: str = "S", receiver: str = "B1", property_id: str = "P", **kwargs) -> Message:
    return Message(
        id=message_id,
        sender_id=sender,
        receiver_id=receiver,
        property_id=property_id,
        content=kwargs.pop("content", f"m{message_id}"),
        timestamp=T0 + timedelta(seconds=seconds),
        **kwargs,
    )
