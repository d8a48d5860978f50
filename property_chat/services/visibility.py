from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional

from property_chat.models.message import Message


class Role(str, Enum):

    OWNER = "owner"
    NON_OWNER = "non_owner"


def resolve_role(viewer_id: str, property_owner_id: Optional[str]) -> Role:
    return Role.OWNER if property_owner_id == viewer_id else Role.NON_OWNER


@dataclass(frozen=True)
class VisibilityFilter:
    """Read-only view over a property-wide merged list.

    The owner sees every exchange on the property. Anyone else sees only the
    exchange between themselves and ``counterpart_id`` (the owner). Tombstoned
    messages are never shown.
    """

    viewer_id: str
    counterpart_id: str
    role: Role

    def allows(self, message: Message) -> bool:
        if message.deleted:
            return False
        if self.role is Role.OWNER:
            return True
        return message.involves(self.viewer_id, self.counterpart_id)

    def apply(self, messages: Iterable[Message]) -> List[Message]:
        return [m for m in messages if self.allows(m)]
