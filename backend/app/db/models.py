############################################################
#
# mathchat - Math-focused Chat Service
#
# models.py: SQLAlchemy ORM models for all database entities
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""SQLAlchemy database models for MathChat.

Users themselves live in the authentication service; rows here only
carry the owning user id.
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.db.base import Base, TimestampMixin, utcnow

# Use enum values (lowercase) for database storage, not enum names (uppercase)
_enum_values = lambda obj: [e.value for e in obj]


# Enums
class ModelType(str, PyEnum):
    """Answer-generation backends a conversation can be bound to."""
    API = "api"
    CUSTOM = "custom"
    MISTRAL = "mistral"


class Theme(str, PyEnum):
    """UI theme preference."""
    LIGHT = "light"
    DARK = "dark"


_model_type_enum = Enum(
    ModelType,
    name="model_type",
    values_callable=_enum_values,
    native_enum=False,
    length=20,
)


# Chat Models
class Conversation(Base, TimestampMixin):
    """Titled conversation bound to a single backend."""

    __tablename__ = "conversations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(
        String(255), nullable=False, default="New Conversation"
    )
    # Nullable only for legacy rows; repaired lazily on next use
    model_type: Mapped[Optional[ModelType]] = mapped_column(_model_type_enum, nullable=True)
    message_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_pinned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Relationships
    messages: Mapped[List["ChatMessage"]] = relationship(
        "ChatMessage",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ChatMessage.created_at",
    )

    __table_args__ = (
        Index("ix_conversations_user_updated", "user_id", "updated_at"),
    )


class ChatMessage(Base):
    """One immutable (request, response) turn within a conversation."""

    __tablename__ = "chat_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    response: Mapped[str] = mapped_column(Text, nullable=False)
    model_type: Mapped[ModelType] = mapped_column(_model_type_enum, nullable=False)
    is_math_related: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    # Relationships
    conversation: Mapped["Conversation"] = relationship(
        "Conversation", back_populates="messages"
    )

    __table_args__ = (
        Index("ix_chat_history_conv_created", "conversation_id", "created_at"),
    )


# Per-user Models
class UserStatistics(Base):
    """Usage counters, one row per user, created lazily."""

    __tablename__ = "user_statistics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    total_conversations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_messages: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    math_questions_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    general_questions_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    api_model_uses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    custom_model_uses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    mistral_model_uses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_active_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )


class UserSettings(Base, TimestampMixin):
    """UI and backend preferences, one row per user, created lazily."""

    __tablename__ = "user_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    theme: Mapped[Theme] = mapped_column(
        Enum(Theme, name="theme", values_callable=_enum_values, native_enum=False, length=10),
        nullable=False,
        default=Theme.LIGHT,
    )
    language: Mapped[str] = mapped_column(String(10), nullable=False, default="tr")
    preferred_model: Mapped[ModelType] = mapped_column(
        _model_type_enum, nullable=False, default=ModelType.API
    )
    notifications_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


# Column each backend's usage is counted in
MODEL_USAGE_COLUMNS = {
    ModelType.API: UserStatistics.api_model_uses,
    ModelType.CUSTOM: UserStatistics.custom_model_uses,
    ModelType.MISTRAL: UserStatistics.mistral_model_uses,
}
