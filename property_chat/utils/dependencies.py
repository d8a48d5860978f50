from fastapi import Depends, Header, HTTPException, status

from property_chat.database.connection import get_message_store, get_summary_store
from property_chat.services.chat_service import ChatService


async def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    # identity is established upstream by the auth gateway
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    return x_user_id


def get_chat_service(message_store=Depends(get_message_store), summary_store=Depends(get_summary_store)) -> ChatService:
    return ChatService(message_store, summary_store)
