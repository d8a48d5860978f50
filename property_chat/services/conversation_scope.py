"""Live merge of one viewer's "sent" and "received" subscriptions.

A ``MergeScope`` owns both subscriptions, the latest snapshot of each, and the
listeners fed from the merged list. Snapshot handling, recompute and emit run
under one lock per scope so listeners see merged states in a single order.
Scopes share nothing with each other.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Set, Tuple

from property_chat.core.config import settings
from property_chat.core.errors import ChatEngineError, ErrorKind, InvariantViolation, TransientStoreError
from property_chat.models.message import Message, MessageQuery
from property_chat.repositories.base import MessageStore
from property_chat.repositories.snapshot_stream import SnapshotStream
from property_chat.services.merge import assert_strictly_ordered, merge_snapshots
from property_chat.services.query_strategy import QueryPlan, QueryStrategy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScopeDiagnostics:

    degraded: bool = False
    fallback: bool = False
    reconnecting: bool = False
    # a snapshot reached the store cap, older messages may be missing
    truncated: bool = False
    errors: Tuple[ErrorKind, ...] = ()


@dataclass(frozen=True)
class ScopeUpdate:

    messages: Tuple[Message, ...]
    diagnostics: ScopeDiagnostics


Listener = Callable[[ScopeUpdate], Awaitable[None]]


class _StreamState:

    def __init__(self, name: str, query: MessageQuery) -> None:
        self.name = name
        self.query = query
        self.snapshot: Tuple[Message, ...] = ()
        self.plan: Optional[QueryPlan] = None
        self.stream: Optional[SnapshotStream] = None
        self.delivered = False
        self.truncated = False
        self.establish_failed = False
        self.last_error: Optional[ChatEngineError] = None

    @property
    def settled(self) -> bool:
        return self.delivered or self.establish_failed

    def reset(self) -> None:
        if self.stream is not None:
            self.stream.close()
        self.stream = None
        self.snapshot = ()
        self.plan = None


class MergeScope:

    def __init__(
        self,
        store: MessageStore,
        sent: MessageQuery,
        received: MessageQuery,
        *,
        strategy: Optional[QueryStrategy] = None,
        resubscribe_delay: Optional[float] = None,
        name: str = "scope",
    ) -> None:
        self.name = name
        self._store = store
        self._strategy = strategy or QueryStrategy()
        self._resubscribe_delay = settings.RESUBSCRIBE_DELAY_SECONDS if resubscribe_delay is None else resubscribe_delay
        self._streams = (_StreamState("sent", sent), _StreamState("received", received))
        self._listeners: List[Listener] = []
        self._tasks: Set[asyncio.Task] = set()
        self._lock = asyncio.Lock()
        self._latest: Optional[ScopeUpdate] = None
        self._started = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def latest(self) -> Optional[ScopeUpdate]:
        return self._latest

    def start(self) -> None:
        if self._started or self._closed:
            return
        self._started = True
        for state in self._streams:
            self._spawn(self._pump(state), name=f"{self.name}:{state.name}")

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)
        if self._latest is not None:
            # late joiners get the current state without re-subscribing
            self._spawn(self._replay(listener))

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def _spawn(self, coro, name: Optional[str] = None) -> None:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def close(self) -> None:
        """Stop both subscriptions and drop buffers. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        self._listeners.clear()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        for state in self._streams:
            state.reset()
        self._latest = None
        logger.debug("scope %s closed", self.name)

    async def _pump(self, state: _StreamState) -> None:
        while not self._closed:
            try:
                stream, plan = await self._strategy.open(self._store, state.query)
            except ChatEngineError as exc:
                logger.warning("scope %s: %s stream could not be established: %s", self.name, state.name, exc)
                await self._establish_failed(state, exc)
                continue
            except Exception as exc:
                logger.exception("scope %s: unexpected error establishing %s stream", self.name, state.name)
                await self._establish_failed(state, TransientStoreError(f"establish {state.name} stream: {exc}", cause=exc))
                continue

            state.plan = plan
            state.stream = stream
            state.establish_failed = False
            logger.debug("scope %s: %s stream established via %s query", self.name, state.name, plan.name)
            try:
                async for result in stream:
                    if result.error is not None:
                        logger.warning("scope %s: skipping failed %s snapshot: %s", self.name, state.name, result.error)
                        state.last_error = result.error
                        await self._recompute()
                        continue
                    state.snapshot = tuple(plan.normalize(result.snapshot or []))
                    state.truncated = len(state.snapshot) >= self._store.snapshot_limit
                    state.delivered = True
                    state.last_error = None
                    await self._recompute()
            finally:
                await stream.aclose()
            if not self._closed:
                logger.warning("scope %s: %s stream ended, re-establishing", self.name, state.name)

    async def _establish_failed(self, state: _StreamState, error: ChatEngineError) -> None:
        state.establish_failed = True
        state.last_error = error
        await self._recompute()
        await asyncio.sleep(self._resubscribe_delay)

    def _diagnostics(self) -> ScopeDiagnostics:
        fallback = any(s.plan is not None and s.plan.is_fallback for s in self._streams)
        reconnecting = any(s.establish_failed for s in self._streams)
        truncated = any(s.truncated for s in self._streams)
        errors = tuple(s.last_error.kind for s in self._streams if s.last_error is not None)
        return ScopeDiagnostics(
            degraded=fallback or reconnecting or truncated or bool(errors),
            fallback=fallback,
            reconnecting=reconnecting,
            truncated=truncated,
            errors=errors,
        )

    async def _recompute(self) -> None:
        async with self._lock:
            if self._closed or not all(s.settled for s in self._streams):
                return
            merged = merge_snapshots(*(s.snapshot for s in self._streams))
            try:
                assert_strictly_ordered(merged)
            except InvariantViolation:
                # listeners keep the last valid state
                logger.exception("scope %s produced an invalid merged view", self.name)
                return
            update = ScopeUpdate(messages=tuple(merged), diagnostics=self._diagnostics())
            self._latest = update
            for listener in list(self._listeners):
                if self._closed:
                    return
                await self._deliver(listener, update)

    async def _replay(self, listener: Listener) -> None:
        async with self._lock:
            if self._closed or self._latest is None or listener not in self._listeners:
                return
            await self._deliver(listener, self._latest)

    async def _deliver(self, listener: Listener, update: ScopeUpdate) -> None:
        try:
            await listener(update)
        except Exception:
            logger.exception("scope %s: listener failed", self.name)
