"""
Chat and message endpoints. Every chat-scoped route checks that the caller
is a participant of the chat.
"""
import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from khidma.core.database import get_db
from khidma.core.exceptions import NotFoundError
from khidma.modules.auth.dependencies import CurrentCustomer, CurrentUser, CurrentWorker
from khidma.modules.auth.models import User, UserType
from khidma.modules.chats.models import Chat, Message
from khidma.modules.chats.schemas import (
    CategoryChatRequest,
    ChatInfoResponse,
    ChatResponse,
    InitialInstructionsRequest,
    MessageIdsRequest,
    MessagePage,
    MessageResponse,
    SendMessageRequest,
    SendMessageResponse,
    SystemMessageRequest,
)
from khidma.modules.chats.service import ChatService, MessageService
from khidma.modules.chats.system_messages import SystemMessageService

router = APIRouter(prefix="/chats", tags=["Chats"])


async def _participant_chat(db: AsyncSession, chat_id: uuid.UUID, user: User) -> Chat:
    chat = await ChatService(db).get_specific_chat(chat_id, user.id)
    if not chat:
        raise NotFoundError("Chat not found")
    return chat


async def _participant_message(db: AsyncSession, message_id: uuid.UUID, user: User) -> Message:
    message = await db.get(Message, message_id)
    if not message:
        raise NotFoundError("Message not found")
    await _participant_chat(db, message.chat_id, user)
    return message


# ============== Chats ==============

@router.post("/category", response_model=ChatResponse)
async def get_or_create_category_chat(
    payload: CategoryChatRequest,
    current_user: CurrentCustomer,
    db: AsyncSession = Depends(get_db),
):
    return await ChatService(db).get_or_create_category_chat(current_user.id, payload.category_id)


@router.post("/worker-category", response_model=ChatResponse)
async def get_or_create_worker_category_chat(
    payload: CategoryChatRequest,
    current_user: CurrentWorker,
    db: AsyncSession = Depends(get_db),
):
    return await ChatService(db).get_or_create_worker_category_chat(current_user.id, payload.category_id)


@router.get("/notifications", response_model=list[ChatResponse])
async def get_worker_notification_chats(
    current_user: CurrentWorker,
    db: AsyncSession = Depends(get_db),
):
    return await ChatService(db).get_worker_notification_chats(current_user.id)


@router.get("/conversations", response_model=list[ChatResponse])
async def get_conversation_chats(
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    service = ChatService(db)
    if current_user.user_type == UserType.WORKER.value:
        return await service.get_worker_conversation_chats(current_user.id)
    return await service.get_customer_conversation_chats(current_user.id)


@router.get("/by-job/{job_id}", response_model=ChatResponse)
async def get_conversation_chat_by_job(
    job_id: uuid.UUID,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    chat = await ChatService(db).get_conversation_chat_by_job(job_id, current_user.id)
    if not chat:
        raise NotFoundError("Conversation chat not found")
    return chat


@router.get("/{chat_id}", response_model=ChatResponse)
async def get_chat(
    chat_id: uuid.UUID,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    return await _participant_chat(db, chat_id, current_user)


@router.get("/{chat_id}/info", response_model=ChatInfoResponse)
async def get_chat_info(
    chat_id: uuid.UUID,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    await _participant_chat(db, chat_id, current_user)
    return await ChatService(db).get_chat_info(chat_id)


@router.get("/{chat_id}/fresh")
async def is_chat_fresh(
    chat_id: uuid.UUID,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
) -> dict:
    await _participant_chat(db, chat_id, current_user)
    return {"chat_id": chat_id, "is_fresh": await ChatService(db).is_chat_fresh(chat_id)}


@router.get("/{chat_id}/messages", response_model=MessagePage)
async def get_chat_messages(
    chat_id: uuid.UUID,
    current_user: CurrentUser,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    await _participant_chat(db, chat_id, current_user)
    return await ChatService(db).get_chat_messages(chat_id, limit=limit, offset=offset)


@router.post("/{chat_id}/messages", response_model=SendMessageResponse)
async def send_message(
    chat_id: uuid.UUID,
    payload: SendMessageRequest,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    await _participant_chat(db, chat_id, current_user)
    message = await MessageService(db).send_message(
        chat_id,
        current_user.id,
        payload.bubble_type,
        payload.content,
        payload.metadata,
    )
    if message is None:
        return SendMessageResponse(completion_flow_started=True)
    return SendMessageResponse(message=MessageResponse.model_validate(message))


@router.post("/{chat_id}/system-messages", response_model=MessageResponse)
async def send_system_message(
    chat_id: uuid.UUID,
    payload: SystemMessageRequest,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    await _participant_chat(db, chat_id, current_user)
    return await SystemMessageService(db).send_system_message(
        chat_id,
        payload.bubble_type,
        payload.message_key,
        payload.language,
        variables=payload.variables,
        metadata=payload.metadata,
    )


@router.post("/{chat_id}/initial-instructions", response_model=list[MessageResponse])
async def send_initial_instructions(
    chat_id: uuid.UUID,
    payload: InitialInstructionsRequest,
    current_user: CurrentCustomer,
    db: AsyncSession = Depends(get_db),
):
    await _participant_chat(db, chat_id, current_user)
    return await SystemMessageService(db).send_initial_instructions(
        chat_id, payload.category_id, payload.language
    )


# ============== Messages ==============

@router.post("/messages/delivered")
async def mark_messages_delivered(
    payload: MessageIdsRequest,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
) -> dict:
    updated = await MessageService(db).mark_batch_delivered(payload.message_ids, current_user.id)
    return {"success": True, "updated": updated}


@router.post("/messages/expire")
async def expire_messages(
    payload: MessageIdsRequest,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
) -> dict:
    for message_id in payload.message_ids:
        await _participant_message(db, message_id, current_user)
    expired = await MessageService(db).expire_messages(payload.message_ids)
    return {"success": True, "expired": expired}


@router.post("/messages/{message_id}/delivered")
async def mark_message_delivered(
    message_id: uuid.UUID,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
) -> dict:
    updated = await MessageService(db).mark_delivered(message_id, current_user.id)
    return {"success": True, "updated": updated}


@router.post("/messages/{message_id}/read")
async def mark_message_read(
    message_id: uuid.UUID,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
) -> dict:
    updated = await MessageService(db).mark_read(message_id, current_user.id)
    return {"success": True, "updated": updated}


@router.post("/messages/{message_id}/expire", response_model=MessageResponse)
async def expire_message(
    message_id: uuid.UUID,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    await _participant_message(db, message_id, current_user)
    return await MessageService(db).expire_message(message_id)


@router.post("/messages/{message_id}/dismiss", response_model=MessageResponse)
async def dismiss_message(
    message_id: uuid.UUID,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    await _participant_message(db, message_id, current_user)
    return await MessageService(db).dismiss_message(message_id)
