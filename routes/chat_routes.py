from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder

from dependencies import get_chat_manager, get_current_user_id
from models.chat_models import ChatInitModel, ChatMessageModel
from serializers import serialize_chat
from services import ChatSessionManager

router = APIRouter(prefix="/chats", tags=["chats"])


@router.post("/init")
async def init_chat(
    payload: ChatInitModel,
    user_id: str = Depends(get_current_user_id),
    chats: ChatSessionManager = Depends(get_chat_manager),
):
    """Create or reactivate the caller's chat with another user about a book."""
    chat, created = await chats.open_chat(payload.book_id, user_id, payload.user_id)
    return JSONResponse(
        status_code=201 if created else 200,
        content=jsonable_encoder(serialize_chat(chat)),
    )


@router.get("/")
async def get_my_chats(
    user_id: str = Depends(get_current_user_id),
    chats: ChatSessionManager = Depends(get_chat_manager),
):
    return await chats.list_for_user(user_id)


@router.get("/{chat_id}")
async def get_chat(
    chat_id: str,
    user_id: str = Depends(get_current_user_id),
    chats: ChatSessionManager = Depends(get_chat_manager),
):
    return serialize_chat(await chats.get(chat_id, user_id))


@router.post("/{chat_id}/message")
async def send_message(
    chat_id: str,
    payload: ChatMessageModel,
    user_id: str = Depends(get_current_user_id),
    chats: ChatSessionManager = Depends(get_chat_manager),
):
    chat = await chats.post_message(chat_id, user_id, payload.text)
    return serialize_chat(chat)


@router.post("/{chat_id}/close")
async def close_chat(
    chat_id: str,
    user_id: str = Depends(get_current_user_id),
    chats: ChatSessionManager = Depends(get_chat_manager),
):
    return await chats.close(chat_id, user_id)
