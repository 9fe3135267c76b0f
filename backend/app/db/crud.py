############################################################
#
# mathchat - Math-focused Chat Service
#
# crud.py: Database CRUD operations for per-user statistics and settings
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Database CRUD operations for user statistics and user settings."""

from typing import Optional

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.base import utcnow
from backend.app.db.models import (
    MODEL_USAGE_COLUMNS,
    ModelType,
    Theme,
    UserSettings,
    UserStatistics,
)


# Statistics CRUD
async def get_user_statistics(db: AsyncSession, user_id: int) -> Optional[UserStatistics]:
    """Get statistics row for a user."""
    result = await db.execute(
        select(UserStatistics)
        .where(UserStatistics.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_or_create_statistics(db: AsyncSession, user_id: int) -> UserStatistics:
    """Get statistics row for a user, creating a zeroed one on first access."""
    stats = await get_user_statistics(db, user_id)
    if stats is None:
        stats = UserStatistics(
            user_id=user_id,
            total_conversations=0,
            total_messages=0,
            math_questions_count=0,
            general_questions_count=0,
            api_model_uses=0,
            custom_model_uses=0,
            mistral_model_uses=0,
            last_active_at=utcnow(),
        )
        db.add(stats)
        await db.flush()
    return stats


async def record_conversation_created(db: AsyncSession, user_id: int) -> None:
    """Count a new conversation and touch last activity."""
    await get_or_create_statistics(db, user_id)
    await db.execute(
        update(UserStatistics)
        .where(UserStatistics.user_id == user_id)
        .values(
            total_conversations=UserStatistics.total_conversations + 1,
            last_active_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )


async def record_conversation_deleted(db: AsyncSession, user_id: int) -> None:
    """Uncount a deleted conversation, never going below zero."""
    await get_or_create_statistics(db, user_id)
    await db.execute(
        update(UserStatistics)
        .where(UserStatistics.user_id == user_id)
        .values(
            total_conversations=case(
                (UserStatistics.total_conversations > 0,
                 UserStatistics.total_conversations - 1),
                else_=0,
            ),
        )
        .execution_options(synchronize_session=False)
    )


async def record_message_sent(
    db: AsyncSession,
    user_id: int,
    model_type: ModelType,
    is_math_related: bool,
) -> None:
    """Bump message counters for one persisted turn.

    Exactly one classification bucket (math xor general) and exactly one
    backend usage counter move.
    """
    await get_or_create_statistics(db, user_id)

    usage_column = MODEL_USAGE_COLUMNS[model_type]
    classification = (
        UserStatistics.math_questions_count
        if is_math_related
        else UserStatistics.general_questions_count
    )
    await db.execute(
        update(UserStatistics)
        .where(UserStatistics.user_id == user_id)
        .values({
            UserStatistics.total_messages: UserStatistics.total_messages + 1,
            classification: classification + 1,
            usage_column: usage_column + 1,
            UserStatistics.last_active_at: utcnow(),
        })
        .execution_options(synchronize_session=False)
    )


def statistics_to_dict(stats: UserStatistics) -> dict:
    return {
        "totalConversations": stats.total_conversations,
        "totalMessages": stats.total_messages,
        "mathQuestionsCount": stats.math_questions_count,
        "generalQuestionsCount": stats.general_questions_count,
        "apiModelUses": stats.api_model_uses,
        "customModelUses": stats.custom_model_uses,
        "mistralModelUses": stats.mistral_model_uses,
        "lastActiveAt": stats.last_active_at.isoformat() if stats.last_active_at else None,
    }


# Settings CRUD
async def get_user_settings(db: AsyncSession, user_id: int) -> Optional[UserSettings]:
    """Get settings row for a user."""
    result = await db.execute(
        select(UserSettings).where(UserSettings.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def get_or_create_settings(db: AsyncSession, user_id: int) -> UserSettings:
    """Get settings for a user, creating the defaults on first read."""
    prefs = await get_user_settings(db, user_id)
    if prefs is None:
        prefs = UserSettings(
            user_id=user_id,
            theme=Theme.LIGHT,
            language="tr",
            preferred_model=ModelType.API,
            notifications_enabled=True,
        )
        db.add(prefs)
        await db.flush()
    return prefs


async def replace_user_settings(
    db: AsyncSession,
    user_id: int,
    theme: Theme,
    language: str,
    preferred_model: ModelType,
    notifications_enabled: bool,
) -> UserSettings:
    """Overwrite every preference of a user in one go."""
    prefs = await get_or_create_settings(db, user_id)
    prefs.theme = theme
    prefs.language = language
    prefs.preferred_model = preferred_model
    prefs.notifications_enabled = notifications_enabled
    await db.flush()
    return prefs


def settings_to_dict(prefs: UserSettings) -> dict:
    return {
        "theme": prefs.theme.value,
        "language": prefs.language,
        "preferredModel": prefs.preferred_model.value,
        "notificationsEnabled": prefs.notifications_enabled,
    }
