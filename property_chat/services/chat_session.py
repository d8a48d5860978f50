import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Set, Tuple

from property_chat.core.errors import ChatEngineError
from property_chat.models.conversation import PropertyChatGroup
from property_chat.models.message import Message, MessageQuery
from property_chat.repositories.base import MessageStore, SummaryStore
from property_chat.services.conversation_scope import MergeScope, ScopeDiagnostics, ScopeUpdate
from property_chat.services.grouping import group_by_property
from property_chat.services.query_strategy import QueryStrategy
from property_chat.services.read_state import ReadStateManager, UnreadBadge, unread_count
from property_chat.services.visibility import Role, VisibilityFilter, resolve_role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ThreadUpdate:

    property_id: str
    counterpart_id: str
    role: Role
    messages: Tuple[Message, ...]
    unread_count: int
    diagnostics: ScopeDiagnostics


@dataclass(frozen=True)
class GroupsUpdate:

    groups: Tuple[PropertyChatGroup, ...]
    diagnostics: ScopeDiagnostics


class ViewHandle:
    """Cancel handle for an open view. ``cancel`` is synchronous and idempotent."""

    def __init__(self, on_cancel: Callable[[], None]) -> None:
        self._on_cancel = on_cancel
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._on_cancel()


class ChatSession:
    """Everything one viewer has open: merge scopes, views and background work.

    Thread views on the same property share one property-wide scope, each
    seeing it through its own visibility filter. Nothing is shared between
    sessions.
    """

    def __init__(
        self,
        viewer_id: str,
        message_store: MessageStore,
        summary_store: Optional[SummaryStore] = None,
        *,
        strategy: Optional[QueryStrategy] = None,
        resubscribe_delay: Optional[float] = None,
    ) -> None:
        self.viewer_id = viewer_id
        self._store = message_store
        self._strategy = strategy
        self._resubscribe_delay = resubscribe_delay
        self._read_state = ReadStateManager(message_store, summary_store)
        self.badge = UnreadBadge(viewer_id, message_store)
        self._property_scopes: Dict[str, MergeScope] = {}
        self._groups_scope: Optional[MergeScope] = None
        self._background: Set[asyncio.Task] = set()
        self._closed = False

    async def __aenter__(self) -> "ChatSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()

    def open_thread(
        self,
        counterpart_id: str,
        property_id: str,
        on_update: Callable[[ThreadUpdate], Awaitable[None]],
        *,
        property_owner_id: Optional[str] = None,
        auto_mark_read: bool = True,
    ) -> ViewHandle:
        """Open a live thread view.

        ``property_owner_id`` defaults to ``counterpart_id``: a buyer declares
        the owner as counterpart, and an owner passing themselves gets the full
        property view. The unread count covers messages from ``counterpart_id``
        only, or from every buyer when an owner passes themselves.
        """
        self._ensure_open()
        owner_id = counterpart_id if property_owner_id is None else property_owner_id
        role = resolve_role(self.viewer_id, owner_id)
        visibility = VisibilityFilter(self.viewer_id, counterpart_id, role)
        scope = self._property_scope(property_id)
        marking = False

        async def listener(update: ScopeUpdate) -> None:
            nonlocal marking
            if handle.cancelled:
                return
            visible = tuple(visibility.apply(update.messages))
            # an owner viewing the property as a whole counts every buyer
            counted_from = None if counterpart_id == self.viewer_id else counterpart_id
            unread = unread_count(update.messages, self.viewer_id, counted_from, property_id)
            await on_update(
                ThreadUpdate(
                    property_id=property_id,
                    counterpart_id=counterpart_id,
                    role=role,
                    messages=visible,
                    unread_count=unread,
                    diagnostics=update.diagnostics,
                )
            )
            if auto_mark_read and role is Role.NON_OWNER and visible and unread and not marking:
                marking = True
                self._spawn(self._auto_mark_read(counterpart_id, property_id), lambda _: _clear_marking())

        def _clear_marking() -> None:
            nonlocal marking
            marking = False

        def cancel() -> None:
            scope.remove_listener(listener)
            if scope.listener_count == 0:
                scope.close()
                if self._property_scopes.get(property_id) is scope:
                    del self._property_scopes[property_id]

        handle = ViewHandle(cancel)
        scope.add_listener(listener)
        scope.start()
        return handle

    def open_property_groups(self, on_update: Callable[[GroupsUpdate], Awaitable[None]]) -> ViewHandle:
        self._ensure_open()
        if self._groups_scope is None or self._groups_scope.closed:
            self._groups_scope = self._new_scope(
                MessageQuery(sender_id=self.viewer_id),
                MessageQuery(receiver_id=self.viewer_id),
                name=f"{self.viewer_id}:groups",
            )
        scope = self._groups_scope

        async def listener(update: ScopeUpdate) -> None:
            if handle.cancelled:
                return
            groups = group_by_property(update.messages, self.viewer_id)
            await on_update(GroupsUpdate(groups=tuple(groups), diagnostics=update.diagnostics))

        def cancel() -> None:
            scope.remove_listener(listener)
            if scope.listener_count == 0:
                scope.close()
                if self._groups_scope is scope:
                    self._groups_scope = None

        handle = ViewHandle(cancel)
        scope.add_listener(listener)
        scope.start()
        return handle

    async def mark_read(self, counterpart_id: str, property_id: str) -> int:
        return await self._read_state.mark_read(self.viewer_id, counterpart_id, property_id)

    async def get_unread_total(self) -> int:
        return await self.badge.refresh()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for scope in list(self._property_scopes.values()):
            scope.close()
        self._property_scopes.clear()
        if self._groups_scope is not None:
            self._groups_scope.close()
            self._groups_scope = None
        for task in list(self._background):
            task.cancel()
        self._background.clear()

    def _property_scope(self, property_id: str) -> MergeScope:
        scope = self._property_scopes.get(property_id)
        if scope is None or scope.closed:
            scope = self._new_scope(
                MessageQuery(sender_id=self.viewer_id, property_id=property_id),
                MessageQuery(receiver_id=self.viewer_id, property_id=property_id),
                name=f"{self.viewer_id}:{property_id}",
            )
            self._property_scopes[property_id] = scope
        return scope

    def _new_scope(self, sent: MessageQuery, received: MessageQuery, name: str) -> MergeScope:
        return MergeScope(
            self._store,
            sent,
            received,
            strategy=self._strategy,
            resubscribe_delay=self._resubscribe_delay,
            name=name,
        )

    async def _auto_mark_read(self, counterpart_id: str, property_id: str) -> None:
        try:
            await self.mark_read(counterpart_id, property_id)
        except ChatEngineError as exc:
            logger.warning("auto mark-read for %s on %s failed: %s", self.viewer_id, property_id, exc)

    def _spawn(self, coro, on_done: Optional[Callable[[asyncio.Task], None]] = None) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        if on_done is not None:
            task.add_done_callback(on_done)

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError(f"chat session for {self.viewer_id} is closed")
