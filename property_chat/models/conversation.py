from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, TypedDict

from property_chat.models.message import Message


class ConversationDocument(TypedDict, total=False):
    _id: str
    # conversation key
    participants: List[str]
    property_id: str
    last_message_at: datetime
    last_message_preview: Optional[str]
    # per-user unread counters (user_id -> count), best effort
    unread_counters: dict[str, int]


@dataclass(frozen=True)
class ConversationSummary:

    key: str
    participants: Tuple[str, str]
    property_id: str
    last_message_text: Optional[str]
    last_message_time: Optional[datetime]
    unread_counters: Dict[str, int] = field(default_factory=dict)

    def unread_count_for(self, user_id: str) -> int:
        return self.unread_counters.get(user_id, 0)

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "ConversationSummary":
        participants = doc.get("participants") or []
        return cls(
            key=str(doc["_id"]),
            participants=(participants[0], participants[1]),
            property_id=doc.get("property_id", ""),
            last_message_text=doc.get("last_message_preview"),
            last_message_time=doc.get("last_message_at"),
            unread_counters=dict(doc.get("unread_counters") or {}),
        )


@dataclass(frozen=True)
class ConversationCell:
    """One counterpart thread inside a property group."""

    counterpart_id: str
    property_id: str
    messages: Tuple[Message, ...]
    last_message: Message
    unread_count: int

    @property
    def last_message_time(self) -> datetime:
        return self.last_message.timestamp


@dataclass(frozen=True)
class PropertyChatGroup:

    property_id: str
    conversations: Tuple[ConversationCell, ...]

    @property
    def last_message_time(self) -> datetime:
        return max(cell.last_message_time for cell in self.conversations)

    @property
    def unread_count(self) -> int:
        return sum(cell.unread_count for cell in self.conversations)
