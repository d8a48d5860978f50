"""Grouping of a viewer's merged messages into per-property, per-counterpart threads."""

from collections import defaultdict
from typing import Dict, Iterable, List, Tuple

from property_chat.models.conversation import ConversationCell, PropertyChatGroup
from property_chat.models.message import Message
from property_chat.services.merge import merge_snapshots
from property_chat.services.read_state import unread_count
from property_chat.utils.conversation_key import counterpart_of


def group_by_property(messages: Iterable[Message], viewer_id: str) -> List[PropertyChatGroup]:
    """Build the ordered list of property groups for ``viewer_id``.

    Within a property each counterpart gets its own cell, so an owner talking
    to several buyers about one listing gets one cell per buyer. Cells whose
    messages are all tombstoned are left out. Groups and the cells inside them
    are ordered by most recent message first.
    """
    cells: Dict[Tuple[str, str], List[Message]] = defaultdict(list)
    for message in merge_snapshots(messages):
        if viewer_id not in (message.sender_id, message.receiver_id):
            continue
        counterpart = counterpart_of(viewer_id, message.sender_id, message.receiver_id)
        cells[(message.property_id, counterpart)].append(message)

    by_property: Dict[str, List[ConversationCell]] = defaultdict(list)
    for (property_id, counterpart), thread in cells.items():
        visible = tuple(m for m in thread if not m.deleted)
        if not visible:
            continue
        by_property[property_id].append(
            ConversationCell(
                counterpart_id=counterpart,
                property_id=property_id,
                messages=visible,
                last_message=visible[-1],
                unread_count=unread_count(thread, viewer_id, counterpart, property_id),
            )
        )

    groups = []
    for property_id, property_cells in by_property.items():
        property_cells.sort(key=lambda c: c.last_message.sort_key, reverse=True)
        groups.append(PropertyChatGroup(property_id=property_id, conversations=tuple(property_cells)))
    groups.sort(key=lambda g: (g.conversations[0].last_message.sort_key, g.property_id), reverse=True)
    return groups
