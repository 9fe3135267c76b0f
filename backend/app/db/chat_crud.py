############################################################
#
# mathchat - Math-focused Chat Service
#
# chat_crud.py: Database CRUD operations for chat entities
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Database CRUD operations for conversations and messages.

This module is the single authority for conversation existence and
backend binding. Every lookup is scoped by owner: a conversation owned by
someone else is reported exactly like one that does not exist.
"""

from typing import List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.base import utcnow
from backend.app.db.models import ChatMessage, Conversation, ModelType


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------

async def create_conversation(
    db: AsyncSession,
    user_id: int,
    model_type: ModelType,
    title: Optional[str] = None,
    default_title: str = "New Conversation",
) -> Conversation:
    conv = Conversation(
        user_id=user_id,
        title=title or default_title,
        model_type=model_type,
        message_count=0,
    )
    db.add(conv)
    await db.flush()
    return conv


async def get_conversation(
    db: AsyncSession,
    conversation_id: int,
    user_id: int,
) -> Optional[Conversation]:
    result = await db.execute(
        select(Conversation).where(
            Conversation.id == conversation_id,
            Conversation.user_id == user_id,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_user_conversations(
    db: AsyncSession,
    user_id: int,
) -> List[dict]:
    """List conversations, most recently updated first, with a preview.

    Each entry carries the request/response text of the conversation's
    newest message, or empty strings when it has none.
    """
    result = await db.execute(
        select(Conversation)
        .where(Conversation.user_id == user_id)
        .order_by(Conversation.updated_at.desc(), Conversation.id.desc())
        .execution_options(populate_existing=True)
    )
    convs = list(result.scalars().all())

    conversations = []
    for conv in convs:
        last = await get_last_message(db, conv.id)
        conversations.append({
            "id": conv.id,
            "title": conv.title,
            "modelType": conv.model_type.value if conv.model_type else None,
            "messageCount": conv.message_count,
            "isPinned": conv.is_pinned,
            "createdAt": conv.created_at.isoformat() if conv.created_at else None,
            "updatedAt": conv.updated_at.isoformat() if conv.updated_at else None,
            "lastMessage": last.message if last else "",
            "lastResponse": last.response if last else "",
        })
    return conversations


async def repair_model_type(
    db: AsyncSession,
    conversation: Conversation,
    fallback: ModelType,
) -> bool:
    """Bind a legacy conversation that has no backend yet.

    Idempotent: a conversation that already has a binding is left alone.
    Returns True when the binding was changed.
    """
    if conversation.model_type is not None:
        return False
    result = await db.execute(
        update(Conversation)
        .where(
            Conversation.id == conversation.id,
            Conversation.model_type.is_(None),
        )
        .values(model_type=fallback)
        .execution_options(synchronize_session=False)
    )
    await db.flush()
    if result.rowcount:
        conversation.model_type = fallback
        return True
    # Lost a race with another repair; pick up whatever won
    await db.refresh(conversation, ["model_type"])
    return False


async def repair_user_model_types(
    db: AsyncSession,
    user_id: int,
    fallback: ModelType,
) -> List[Conversation]:
    """Bulk-repair every unbound conversation of a user."""
    result = await db.execute(
        select(Conversation).where(
            Conversation.user_id == user_id,
            Conversation.model_type.is_(None),
        )
    )
    unbound = list(result.scalars().all())
    if not unbound:
        return []

    await db.execute(
        update(Conversation)
        .where(
            Conversation.id.in_([c.id for c in unbound]),
            Conversation.model_type.is_(None),
        )
        .values(model_type=fallback)
        .execution_options(synchronize_session=False)
    )
    for conv in unbound:
        conv.model_type = fallback
    await db.flush()
    return unbound


async def record_message_added(
    db: AsyncSession,
    conversation_id: int,
) -> None:
    """Increment the message counter and touch updated_at."""
    await db.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(
            message_count=Conversation.message_count + 1,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )


async def delete_conversation(
    db: AsyncSession,
    conversation_id: int,
    user_id: int,
) -> bool:
    conv = await get_conversation(db, conversation_id, user_id)
    if not conv:
        return False

    # Delete messages explicitly; not every backend enforces ON DELETE CASCADE
    await db.execute(
        delete(ChatMessage).where(ChatMessage.conversation_id == conversation_id)
    )
    await db.delete(conv)
    await db.flush()
    return True


async def clear_conversation_messages(
    db: AsyncSession,
    conversation_id: int,
    user_id: int,
) -> bool:
    """Delete a conversation's messages; the conversation row and title stay."""
    conv = await get_conversation(db, conversation_id, user_id)
    if not conv:
        return False

    await db.execute(
        delete(ChatMessage).where(ChatMessage.conversation_id == conversation_id)
    )
    conv.message_count = 0
    await db.flush()
    return True


async def clear_user_history(
    db: AsyncSession,
    user_id: int,
) -> int:
    """Clear the messages of every conversation the user owns.

    Returns the number of conversations touched.
    """
    result = await db.execute(
        select(Conversation.id).where(Conversation.user_id == user_id)
    )
    conv_ids = list(result.scalars().all())
    if not conv_ids:
        return 0

    await db.execute(
        delete(ChatMessage).where(ChatMessage.conversation_id.in_(conv_ids))
    )
    await db.execute(
        update(Conversation)
        .where(Conversation.id.in_(conv_ids))
        .values(message_count=0)
        .execution_options(synchronize_session=False)
    )
    await db.flush()
    return len(conv_ids)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

async def create_message(
    db: AsyncSession,
    conversation_id: int,
    user_id: int,
    message: str,
    response: str,
    model_type: ModelType,
    is_math_related: bool = False,
) -> ChatMessage:
    msg = ChatMessage(
        conversation_id=conversation_id,
        user_id=user_id,
        message=message,
        response=response,
        model_type=model_type,
        is_math_related=is_math_related,
    )
    db.add(msg)
    await db.flush()
    return msg


async def get_conversation_messages(
    db: AsyncSession,
    conversation_id: int,
) -> List[ChatMessage]:
    result = await db.execute(
        select(ChatMessage)
        .where(ChatMessage.conversation_id == conversation_id)
        .order_by(ChatMessage.created_at, ChatMessage.id)
    )
    return list(result.scalars().all())


async def get_recent_messages(
    db: AsyncSession,
    conversation_id: int,
    limit: int = 5,
) -> List[ChatMessage]:
    """Most recent ``limit`` messages, returned oldest first."""
    result = await db.execute(
        select(ChatMessage)
        .where(ChatMessage.conversation_id == conversation_id)
        .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
        .limit(limit)
    )
    recent = list(result.scalars().all())
    recent.reverse()
    return recent


async def get_last_message(
    db: AsyncSession,
    conversation_id: int,
) -> Optional[ChatMessage]:
    result = await db.execute(
        select(ChatMessage)
        .where(ChatMessage.conversation_id == conversation_id)
        .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()
