from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from property_chat.models.conversation import ConversationCell, ConversationSummary, PropertyChatGroup
from property_chat.models.message import Message
from property_chat.services.chat_session import GroupsUpdate, ThreadUpdate
from property_chat.services.conversation_scope import ScopeDiagnostics


class MessageCreate(BaseModel):

    receiver_id: str
    property_id: str
    content: str = Field(min_length=1)


class MarkReadRequest(BaseModel):

    counterpart_id: str
    property_id: str


class MessagePublic(BaseModel):

    id: str
    conversation_key: str
    sender_id: str
    receiver_id: str
    property_id: str
    content: str
    timestamp: datetime
    read: bool

    @classmethod
    def from_message(cls, message: Message) -> "MessagePublic":
        return cls(
            id=message.id,
            conversation_key=message.conversation_key,
            sender_id=message.sender_id,
            receiver_id=message.receiver_id,
            property_id=message.property_id,
            content=message.content,
            timestamp=message.timestamp,
            read=message.read,
        )


class Diagnostics(BaseModel):

    degraded: bool
    fallback: bool
    reconnecting: bool
    truncated: bool = False
    errors: List[str] = []

    @classmethod
    def from_scope(cls, diagnostics: ScopeDiagnostics) -> "Diagnostics":
        return cls(
            degraded=diagnostics.degraded,
            fallback=diagnostics.fallback,
            reconnecting=diagnostics.reconnecting,
            truncated=diagnostics.truncated,
            errors=[kind.value for kind in diagnostics.errors],
        )


class ThreadPublic(BaseModel):

    type: str = "thread"
    property_id: str
    counterpart_id: str
    role: str
    messages: List[MessagePublic]
    unread_count: int
    diagnostics: Diagnostics

    @classmethod
    def from_update(cls, update: ThreadUpdate) -> "ThreadPublic":
        return cls(
            property_id=update.property_id,
            counterpart_id=update.counterpart_id,
            role=update.role.value,
            messages=[MessagePublic.from_message(m) for m in update.messages],
            unread_count=update.unread_count,
            diagnostics=Diagnostics.from_scope(update.diagnostics),
        )


class ConversationCellPublic(BaseModel):

    counterpart_id: str
    last_message: MessagePublic
    unread_count: int
    messages: List[MessagePublic]

    @classmethod
    def from_cell(cls, cell: ConversationCell) -> "ConversationCellPublic":
        return cls(
            counterpart_id=cell.counterpart_id,
            last_message=MessagePublic.from_message(cell.last_message),
            unread_count=cell.unread_count,
            messages=[MessagePublic.from_message(m) for m in cell.messages],
        )


class PropertyChatGroupPublic(BaseModel):

    property_id: str
    last_message_time: datetime
    unread_count: int
    conversations: List[ConversationCellPublic]

    @classmethod
    def from_group(cls, group: PropertyChatGroup) -> "PropertyChatGroupPublic":
        return cls(
            property_id=group.property_id,
            last_message_time=group.last_message_time,
            unread_count=group.unread_count,
            conversations=[ConversationCellPublic.from_cell(c) for c in group.conversations],
        )


class GroupsPublic(BaseModel):

    type: str = "groups"
    groups: List[PropertyChatGroupPublic]
    diagnostics: Diagnostics

    @classmethod
    def from_update(cls, update: GroupsUpdate) -> "GroupsPublic":
        return cls(
            groups=[PropertyChatGroupPublic.from_group(g) for g in update.groups],
            diagnostics=Diagnostics.from_scope(update.diagnostics),
        )


class ConversationSummaryPublic(BaseModel):

    key: str
    participants: List[str]
    property_id: str
    last_message_text: Optional[str] = None
    last_message_time: Optional[datetime] = None
    unread_count: int = 0

    @classmethod
    def for_user(cls, summary: ConversationSummary, user_id: str) -> "ConversationSummaryPublic":
        return cls(
            key=summary.key,
            participants=list(summary.participants),
            property_id=summary.property_id,
            last_message_text=summary.last_message_text,
            last_message_time=summary.last_message_time,
            unread_count=summary.unread_count_for(user_id),
        )
