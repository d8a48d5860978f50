import asyncio
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from property_chat.core.errors import ChatEngineError, SnapshotResult


T = TypeVar("T")


class SnapshotStream(Generic[T]):
    """Live full-state subscription handed out by a store.

    Snapshots are full state, so only the newest undelivered one is retained;
    a burst of pushes between two reads coalesces into one delivery. A pending
    error is delivered before a pending snapshot so a good snapshot is never
    replaced by a later failure.
    """

    def __init__(self, on_release: Optional[Callable[[], Awaitable[None]]] = None) -> None:
        self._snapshot: Optional[T] = None
        self._has_snapshot = False
        self._error: Optional[ChatEngineError] = None
        self._wakeup = asyncio.Event()
        self._closed = False
        self._released = False
        self._on_release = on_release

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, snapshot: T) -> None:
        if self._closed:
            return
        self._snapshot = snapshot
        self._has_snapshot = True
        self._wakeup.set()

    def push_error(self, error: ChatEngineError) -> None:
        if self._closed:
            return
        self._error = error
        self._wakeup.set()

    def __aiter__(self) -> "SnapshotStream[T]":
        return self

    async def __anext__(self) -> SnapshotResult[T]:
        while True:
            if self._closed:
                raise StopAsyncIteration
            if self._error is not None:
                error, self._error = self._error, None
                return SnapshotResult.failed(error)
            if self._has_snapshot:
                snapshot, self._snapshot, self._has_snapshot = self._snapshot, None, False
                self._wakeup.clear()
                return SnapshotResult.ok(snapshot)  # type: ignore[arg-type]
            self._wakeup.clear()
            await self._wakeup.wait()

    def close(self) -> None:
        """Stop delivery immediately. Store-side resources are freed by ``aclose``."""
        self._closed = True
        self._snapshot = None
        self._has_snapshot = False
        self._error = None
        self._wakeup.set()

    async def aclose(self) -> None:
        self.close()
        if self._released:
            return
        self._released = True
        if self._on_release is not None:
            await self._on_release()
