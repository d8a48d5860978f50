from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, TypedDict

from property_chat.utils.conversation_key import conversation_key


class MessageDocument(TypedDict, total=False):
    _id: Any
    conversation_key: str
    sender_id: str
    receiver_id: str
    property_id: str
    content: str
    timestamp: datetime
    read: bool
    # tombstone, messages are never erased
    deleted: bool


@dataclass(frozen=True)
class Message:

    id: str
    sender_id: str
    receiver_id: str
    property_id: str
    content: str
    timestamp: datetime
    read: bool = False
    deleted: bool = False
    conversation_key: str = ""

    def __post_init__(self) -> None:
        if not self.conversation_key:
            object.__setattr__(self, "conversation_key", conversation_key(self.sender_id, self.receiver_id, self.property_id))

    @property
    def sort_key(self) -> Tuple[datetime, str]:
        return (self.timestamp, self.id)

    def involves(self, user_a: str, user_b: str) -> bool:
        return {self.sender_id, self.receiver_id} == {user_a, user_b}

    def mark_read(self) -> "Message":
        return replace(self, read=True)

    def mark_deleted(self) -> "Message":
        return replace(self, deleted=True)

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Message":
        return cls(
            id=str(doc["_id"]),
            sender_id=doc["sender_id"],
            receiver_id=doc["receiver_id"],
            property_id=doc["property_id"],
            content=doc.get("content", ""),
            timestamp=doc["timestamp"],
            read=bool(doc.get("read", False)),
            deleted=bool(doc.get("deleted", False)),
            conversation_key=doc.get("conversation_key", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "conversation_key": self.conversation_key,
            "sender_id": self.sender_id,
            "receiver_id": self.receiver_id,
            "property_id": self.property_id,
            "content": self.content,
            "timestamp": self.timestamp,
            "read": self.read,
            "deleted": self.deleted,
        }


@dataclass(frozen=True)
class MessageQuery:
    """Equality predicate over the message log.

    Unset fields do not constrain. ``unread_only`` adds ``read == false``.
    """

    sender_id: Optional[str] = None
    receiver_id: Optional[str] = None
    property_id: Optional[str] = None
    unread_only: bool = False

    def matches(self, message: Message) -> bool:
        if self.sender_id is not None and message.sender_id != self.sender_id:
            return False
        if self.receiver_id is not None and message.receiver_id != self.receiver_id:
            return False
        if self.property_id is not None and message.property_id != self.property_id:
            return False
        if self.unread_only and message.read:
            return False
        return True

    def touches(self, sender_id: Optional[str], receiver_id: Optional[str], property_id: Optional[str]) -> bool:
        """Whether a change to messages with these fields can affect this predicate's result."""
        if self.sender_id is not None and sender_id is not None and sender_id != self.sender_id:
            return False
        if self.receiver_id is not None and receiver_id is not None and receiver_id != self.receiver_id:
            return False
        if self.property_id is not None and property_id is not None and property_id != self.property_id:
            return False
        return True

    def to_mongo(self) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if self.sender_id is not None:
            query["sender_id"] = self.sender_id
        if self.receiver_id is not None:
            query["receiver_id"] = self.receiver_id
        if self.property_id is not None:
            query["property_id"] = self.property_id
        if self.unread_only:
            query["read"] = False
        return query

    def channels(self) -> List[str]:
        if self.receiver_id is not None:
            return [f"user:{self.receiver_id}"]
        if self.sender_id is not None:
            return [f"user:{self.sender_id}"]
        if self.property_id is not None:
            return [f"property:{self.property_id}"]
        return ["messages"]
