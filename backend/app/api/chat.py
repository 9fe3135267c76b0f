############################################################
#
# mathchat - Math-focused Chat Service
#
# chat.py: Chat API routes (conversations, messages, settings)
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Chat API routes.

Every route requires a bearer token; the caller's user id scopes all
reads and writes.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.auth import get_current_user_id
from backend.app.core.backends.registry import BackendAdapters, get_adapters
from backend.app.core.errors import InvalidRequestError, NotFoundError
from backend.app.core.schemas import SettingsUpdate
from backend.app.db import chat_crud, crud
from backend.app.db.models import ChatMessage
from backend.app.db.session import get_async_db, get_async_db_context
from backend.app.logging_config import get_logger
from backend.app.services.dispatch import (
    CONVERSATION_NOT_FOUND,
    DispatchService,
    parse_model_type,
)
from backend.app.services.streaming import (
    SSE_HEADERS,
    SessionFactory,
    stream_chat_events,
)
from backend.app.settings import get_settings

logger = get_logger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_adapter_set() -> BackendAdapters:
    return get_adapters()


def get_db_context_factory() -> SessionFactory:
    """Session factory for work that outlives the request (streaming)."""
    return get_async_db_context


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        raise InvalidRequestError("Invalid JSON body")


def _message_to_dict(msg: ChatMessage) -> Dict[str, Any]:
    return {
        "id": msg.id,
        "message": msg.message,
        "response": msg.response,
        "modelType": msg.model_type.value,
        "isMathRelated": msg.is_math_related,
        "createdAt": msg.created_at.isoformat() if msg.created_at else None,
    }


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------

@router.get("/conversations")
async def list_conversations(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
):
    conversations = await chat_crud.get_user_conversations(db, user_id)
    return JSONResponse({"conversations": conversations})


@router.post("/conversations")
async def create_conversation(
    request: Request,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
):
    body = await _read_json(request)
    if not isinstance(body, dict):
        raise InvalidRequestError("Model type is required")

    raw_model_type = body.get("modelType")
    if not raw_model_type:
        raise InvalidRequestError("Model type is required")
    model_type = parse_model_type(raw_model_type)
    if model_type is None:
        raise InvalidRequestError(
            f"Invalid model type: {raw_model_type}. Must be 'api', 'custom', or 'mistral'"
        )

    title = body.get("title")
    if title is not None and not isinstance(title, str):
        raise InvalidRequestError("Title must be a string")

    settings = get_settings()
    conv = await chat_crud.create_conversation(
        db,
        user_id=user_id,
        model_type=model_type,
        title=title.strip() if title else None,
        default_title=settings.default_conversation_title,
    )
    await crud.record_conversation_created(db, user_id)
    await db.commit()

    logger.info(
        "conversation_created",
        conversation_id=conv.id,
        model_type=model_type.value,
        implicit=False,
    )
    return JSONResponse(
        {
            "conversationId": conv.id,
            "title": conv.title,
            "modelType": model_type.value,
            "createdAt": conv.created_at.isoformat(),
        },
        status_code=201,
    )


@router.get("/conversations/{conversation_id}")
async def get_conversation(
    conversation_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
):
    conv = await chat_crud.get_conversation(db, conversation_id, user_id)
    if not conv:
        raise NotFoundError(CONVERSATION_NOT_FOUND)

    messages = await chat_crud.get_conversation_messages(db, conversation_id)
    return JSONResponse({
        "messages": [_message_to_dict(m) for m in messages],
        "conversation": {
            "id": conv.id,
            "modelType": conv.model_type.value if conv.model_type else None,
            "title": conv.title,
        },
    })


@router.delete("/conversations/{conversation_id}")
async def delete_conversation(
    conversation_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
):
    if not await chat_crud.delete_conversation(db, conversation_id, user_id):
        raise NotFoundError(CONVERSATION_NOT_FOUND)
    await crud.record_conversation_deleted(db, user_id)
    await db.commit()

    logger.info("conversation_deleted", conversation_id=conversation_id)
    return JSONResponse({"message": "Conversation deleted successfully"})


@router.delete("/conversations/{conversation_id}/messages")
async def clear_conversation(
    conversation_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
):
    if not await chat_crud.clear_conversation_messages(db, conversation_id, user_id):
        raise NotFoundError(CONVERSATION_NOT_FOUND)
    await db.commit()

    logger.info("conversation_cleared", conversation_id=conversation_id)
    return JSONResponse({"message": "Conversation cleared successfully"})


@router.delete("/history")
async def clear_history(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
):
    cleared = await chat_crud.clear_user_history(db, user_id)
    await db.commit()

    logger.info("history_cleared", conversations=cleared)
    return JSONResponse({"message": "All chat history cleared successfully"})


@router.post("/fix-model-types")
async def fix_model_types(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
):
    """Bind every legacy conversation of the caller to the default backend."""
    fallback = parse_model_type(get_settings().legacy_model_type_default)
    fixed = await chat_crud.repair_user_model_types(db, user_id, fallback)
    if not fixed:
        return JSONResponse({
            "message": "No conversations with NULL model_type found",
            "fixed": 0,
            "conversationsFixed": [],
        })
    await db.commit()

    logger.info("model_types_repaired", count=len(fixed), model_type=fallback.value)
    return JSONResponse({
        "message": f"Fixed {len(fixed)} conversations",
        "fixed": len(fixed),
        "conversationsFixed": [
            {"id": c.id, "title": c.title, "newModelType": fallback.value}
            for c in fixed
        ],
    })


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

@router.post("/messages")
async def send_message(
    request: Request,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
    adapters: BackendAdapters = Depends(get_adapter_set),
):
    body = await _read_json(request)
    service = DispatchService(db, adapters)
    send = service.parse_send_request(body)
    record = await service.send_message(user_id, send)
    return JSONResponse(record.to_response())


@router.post("/messages/stream")
async def send_message_stream(
    request: Request,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
    adapters: BackendAdapters = Depends(get_adapter_set),
    session_factory: SessionFactory = Depends(get_db_context_factory),
):
    """Streaming send.

    Validation and conversation resolution happen before the stream
    starts, so those failures still get a proper HTTP status.
    """
    body = await _read_json(request)
    service = DispatchService(db, adapters)
    send = service.parse_send_request(body)
    conv = await service.resolve_conversation(user_id, send)
    context = await service.build_context(conv)

    return StreamingResponse(
        stream_chat_events(
            service,
            conv,
            user_id,
            send,
            context,
            session_factory,
            chunk_delay=get_settings().stream_chunk_delay,
        ),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


# ---------------------------------------------------------------------------
# Settings and statistics
# ---------------------------------------------------------------------------

@router.get("/settings")
async def get_user_settings(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
):
    prefs = await crud.get_or_create_settings(db, user_id)
    await db.commit()
    return JSONResponse(crud.settings_to_dict(prefs))


@router.put("/settings")
async def update_user_settings(
    request: Request,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
):
    body = await _read_json(request)
    try:
        update = SettingsUpdate.model_validate(body if body is not None else {})
    except ValidationError as e:
        raise InvalidRequestError("Invalid settings", detail=str(e)) from e

    prefs = await crud.replace_user_settings(
        db,
        user_id,
        theme=update.theme,
        language=update.language,
        preferred_model=update.preferred_model,
        notifications_enabled=update.notifications_enabled,
    )
    await db.commit()

    logger.info("settings_updated")
    return JSONResponse({
        "message": "Settings updated successfully",
        "settings": crud.settings_to_dict(prefs),
    })


@router.get("/statistics")
async def get_user_statistics(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
):
    stats = await crud.get_or_create_statistics(db, user_id)
    await db.commit()
    return JSONResponse(crud.statistics_to_dict(stats))
