import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect

from property_chat.core.errors import ChatEngineError
from property_chat.schemas.chat import ConversationSummaryPublic, GroupsPublic
from property_chat.services.chat_service import ChatService
from property_chat.services.chat_session import GroupsUpdate
from property_chat.utils.dependencies import get_chat_service, get_current_user_id


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/conversations", tags=["chat"])

GROUPS_SNAPSHOT_TIMEOUT_SECONDS = 10.0


@router.get("")
async def list_conversations(current_user_id: str = Depends(get_current_user_id), service: ChatService = Depends(get_chat_service)):
    try:
        items = await service.list_conversations(current_user_id)
    except ChatEngineError as exc:
        raise HTTPException(status_code=503, detail=f"Summary store unavailable: {exc}")
    return {"items": [ConversationSummaryPublic.for_user(s, current_user_id) for s in items]}


@router.get("/groups", response_model=GroupsPublic)
async def property_groups(current_user_id: str = Depends(get_current_user_id), service: ChatService = Depends(get_chat_service)):
    first: asyncio.Future = asyncio.get_running_loop().create_future()

    async def capture(update: GroupsUpdate) -> None:
        if not first.done():
            first.set_result(update)

    async with service.open_session(current_user_id) as session:
        session.open_property_groups(capture)
        try:
            update = await asyncio.wait_for(first, timeout=GROUPS_SNAPSHOT_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            raise HTTPException(status_code=504, detail="Timed out waiting for conversations")
    return GroupsPublic.from_update(update)


@router.websocket("/ws/groups")
async def groups_socket(websocket: WebSocket, service: ChatService = Depends(get_chat_service)):
    user_id = websocket.query_params.get("user_id")
    if not user_id:
        await websocket.close(code=4401)
        return
    await websocket.accept()

    async def push(update: GroupsUpdate) -> None:
        await websocket.send_text(GroupsPublic.from_update(update).model_dump_json())

    session = service.open_session(user_id)
    session.open_property_groups(push)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("groups socket for %s closed", user_id)
    finally:
        session.close()
