"""Pure merge of the per-viewer "sent" and "received" snapshots.

Nothing here touches a store or mutates its inputs, so the same two snapshots
always merge to the same list.
"""

from dataclasses import replace
from typing import Dict, Iterable, List, Sequence

from property_chat.core.errors import InvariantViolation
from property_chat.models.message import Message


def _combine(a: Message, b: Message) -> Message:
    # read and deleted only ever move false -> true, so the union of the two
    # flags is the freshest state whichever stream lagged
    if a == b:
        return a
    return replace(a, read=a.read or b.read, deleted=a.deleted or b.deleted)


def merge_snapshots(*snapshots: Iterable[Message]) -> List[Message]:
    by_id: Dict[str, Message] = {}
    for snapshot in snapshots:
        for message in snapshot:
            existing = by_id.get(message.id)
            by_id[message.id] = message if existing is None else _combine(existing, message)
    return sorted(by_id.values(), key=lambda m: m.sort_key)


def order_snapshot(messages: Iterable[Message]) -> List[Message]:
    """Client-side dedup and sort for a single unordered snapshot."""
    return merge_snapshots(messages)


def assert_strictly_ordered(messages: Sequence[Message]) -> None:
    for previous, current in zip(messages, messages[1:]):
        if previous.id == current.id:
            raise InvariantViolation(f"duplicate message {current.id} in merged view")
        if previous.sort_key >= current.sort_key:
            raise InvariantViolation(
                f"merged view out of order: {previous.id}@{previous.timestamp} before {current.id}@{current.timestamp}"
            )
