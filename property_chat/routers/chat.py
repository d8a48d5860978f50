import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status

from property_chat.core.errors import ChatEngineError
from property_chat.schemas.chat import MarkReadRequest, MessageCreate, MessagePublic, ThreadPublic
from property_chat.services.chat_service import ChatService
from property_chat.services.chat_session import ThreadUpdate
from property_chat.utils.dependencies import get_chat_service, get_current_user_id


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/messages", tags=["chat"])


def store_unavailable(exc: ChatEngineError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=f"Message store unavailable: {exc}")


@router.post("", response_model=MessagePublic, status_code=status.HTTP_201_CREATED)
async def send_message(body: MessageCreate, current_user_id: str = Depends(get_current_user_id), service: ChatService = Depends(get_chat_service)):
    try:
        saved = await service.send_message(current_user_id, body.receiver_id, body.property_id, body.content)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except ChatEngineError as exc:
        raise store_unavailable(exc)
    return MessagePublic.from_message(saved)


@router.delete("/{message_id}")
async def delete_message(message_id: str, current_user_id: str = Depends(get_current_user_id), service: ChatService = Depends(get_chat_service)):
    try:
        deleted = await service.delete_message(message_id, current_user_id)
    except LookupError:
        raise HTTPException(status_code=404, detail="Message not found.")
    except PermissionError as exc:
        raise HTTPException(status_code=403, detail=str(exc))
    except ChatEngineError as exc:
        raise store_unavailable(exc)
    return {"deleted": deleted}


@router.post("/mark_read")
async def mark_read(body: MarkReadRequest, current_user_id: str = Depends(get_current_user_id), service: ChatService = Depends(get_chat_service)):
    try:
        count = await service.mark_read(current_user_id, body.counterpart_id, body.property_id)
    except ChatEngineError as exc:
        raise store_unavailable(exc)
    return {"updated": count}


@router.get("/unread_total")
async def unread_total(current_user_id: str = Depends(get_current_user_id), service: ChatService = Depends(get_chat_service)):
    try:
        total = await service.get_unread_total(current_user_id)
    except ChatEngineError as exc:
        raise store_unavailable(exc)
    return {"total": total}


@router.websocket("/ws/thread/{property_id}/{counterpart_id}")
async def thread_socket(websocket: WebSocket, property_id: str, counterpart_id: str, service: ChatService = Depends(get_chat_service)):
    user_id = websocket.query_params.get("user_id")
    if not user_id:
        await websocket.close(code=4401)
        return
    owner_id = websocket.query_params.get("owner_id")
    await websocket.accept()

    async def push(update: ThreadUpdate) -> None:
        await websocket.send_text(ThreadPublic.from_update(update).model_dump_json())

    session = service.open_session(user_id)
    session.open_thread(counterpart_id, property_id, push, property_owner_id=owner_id)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                # {"type": "message", "content": str} | {"type": "mark_read"}
                msg: Dict[str, Any] = json.loads(raw)
                if msg.get("type") == "mark_read":
                    await session.mark_read(counterpart_id, property_id)
                elif msg.get("type") == "message":
                    await service.send_message(user_id, counterpart_id, property_id, msg.get("content", ""))
                else:
                    await websocket.send_text(json.dumps({"type": "error", "detail": "Invalid message payload"}))
            except (ValueError, ChatEngineError) as exc:
                await websocket.send_text(json.dumps({"type": "error", "detail": str(exc)}))
    except WebSocketDisconnect:
        logger.debug("thread socket for %s on %s closed", user_id, property_id)
    finally:
        session.close()
