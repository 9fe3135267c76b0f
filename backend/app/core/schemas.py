############################################################
#
# mathchat - Math-focused Chat Service
#
# schemas.py: Request, context and reply schemas for the chat core
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Schemas shared by the dispatcher, the adapters and the HTTP layer."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from backend.app.db.models import ModelType, Theme


class MessageRole(str, Enum):
    """Message roles in a conversation."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Turn(BaseModel):
    """One entry of the context window handed to a backend."""
    role: MessageRole
    content: str

    def to_openai(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


class SendMessageRequest(BaseModel):
    """Validated inbound chat message."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    message: str
    model_type: ModelType = Field(alias="modelType")
    conversation_id: Optional[int] = Field(default=None, alias="conversationId")
    is_math_related: bool = Field(default=False, alias="isMathRelated")


class SettingsUpdate(BaseModel):
    """Wholesale replacement of a user's preferences."""
    model_config = ConfigDict(populate_by_name=True)

    theme: Theme = Theme.LIGHT
    language: str = Field(default="tr", min_length=1, max_length=10)
    preferred_model: ModelType = Field(default=ModelType.API, alias="preferredModel")
    notifications_enabled: bool = Field(default=True, alias="notificationsEnabled")


@dataclass(frozen=True)
class BackendReply:
    """Normalized adapter output.

    ``degraded`` marks a canned placeholder produced because a local
    backend could not be reached; ``error`` then holds the failure text.
    """
    content: str
    model_label: str
    degraded: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class TurnRecord:
    """A persisted turn as echoed back to the client."""
    id: int
    conversation_id: int
    message: str
    response: str
    model_type: ModelType
    is_math_related: bool
    created_at: datetime
    degraded: bool = False

    def to_response(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "conversationId": self.conversation_id,
            "message": self.message,
            "response": self.response,
            "modelType": self.model_type.value,
            "isMathRelated": self.is_math_related,
            "createdAt": self.created_at.isoformat(),
            "degraded": self.degraded,
        }

    def to_complete_event(self) -> Dict[str, Any]:
        return {
            "type": "complete",
            "messageId": self.id,
            "conversationId": self.conversation_id,
            "message": self.message,
            "response": self.response,
            "modelType": self.model_type.value,
            "createdAt": self.created_at.isoformat(),
        }
