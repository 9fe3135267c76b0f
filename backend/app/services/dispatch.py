############################################################
#
# mathchat - Math-focused Chat Service
#
# dispatch.py: Message dispatch from inbound text to persisted turn
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Dispatch service - takes one inbound message to a persisted turn.

Steps per message:
- Validate the payload
- Resolve (or create) the conversation and repair a legacy binding
- Build the context window
- Invoke the adapter of the conversation's bound backend
- Persist the turn, the conversation counter and the user statistics
  together, then echo the stored turn
"""

from typing import Any, List, Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.backends.registry import BackendAdapters
from backend.app.core.context import build_context
from backend.app.core.errors import InvalidRequestError, NotFoundError, PersistenceError
from backend.app.core.metrics import MESSAGES_TOTAL, PERSISTENCE_FAILURES
from backend.app.core.schemas import BackendReply, SendMessageRequest, Turn, TurnRecord
from backend.app.db import chat_crud, crud
from backend.app.db.models import Conversation, ModelType
from backend.app.logging_config import get_logger
from backend.app.settings import Settings, get_settings

logger = get_logger(__name__)

INVALID_MODEL_TYPE = "Valid model type is required (api, custom, or mistral)"
CONVERSATION_NOT_FOUND = "Conversation not found or access denied"


def parse_model_type(value: Any) -> Optional[ModelType]:
    """Map a raw backend identifier onto ModelType, None when unknown."""
    if isinstance(value, ModelType):
        return value
    if not isinstance(value, str):
        return None
    try:
        return ModelType(value)
    except ValueError:
        return None


class DispatchService:
    """Runs the send pipeline for one request.

    The session is request-scoped; ``persist_turn`` accepts another one
    for callers (streaming) that outlive the request.
    """

    def __init__(
        self,
        db: AsyncSession,
        adapters: BackendAdapters,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.adapters = adapters
        self._settings = settings or get_settings()

    @staticmethod
    def parse_send_request(body: Any) -> SendMessageRequest:
        """Validate an inbound message payload.

        The text must contain something other than whitespace; it is
        stored exactly as sent.
        """
        if not isinstance(body, dict):
            raise InvalidRequestError("Message is required")

        message = body.get("message")
        if not isinstance(message, str) or not message.strip():
            raise InvalidRequestError("Message is required")
        if parse_model_type(body.get("modelType")) is None:
            raise InvalidRequestError(INVALID_MODEL_TYPE)

        try:
            return SendMessageRequest.model_validate(body)
        except ValidationError as e:
            raise InvalidRequestError("Invalid message payload", detail=str(e)) from e

    async def resolve_conversation(
        self,
        user_id: int,
        request: SendMessageRequest,
    ) -> Conversation:
        """Load the target conversation, creating it when no id is given.

        A loaded conversation whose binding is unset gets bound to the
        requested backend. Once bound, the binding is never changed here.
        """
        if request.conversation_id is None:
            conv = await chat_crud.create_conversation(
                self.db,
                user_id=user_id,
                model_type=request.model_type,
                default_title=self._settings.default_conversation_title,
            )
            await crud.record_conversation_created(self.db, user_id)
            await self.db.commit()
            logger.info(
                "conversation_created",
                conversation_id=conv.id,
                model_type=conv.model_type.value,
                implicit=True,
            )
            return conv

        conv = await chat_crud.get_conversation(self.db, request.conversation_id, user_id)
        if conv is None:
            raise NotFoundError(CONVERSATION_NOT_FOUND)

        if await chat_crud.repair_model_type(self.db, conv, request.model_type):
            await self.db.commit()
            logger.info(
                "model_type_repaired",
                conversation_id=conv.id,
                model_type=conv.model_type.value,
            )
        elif conv.model_type is not request.model_type:
            logger.info(
                "model_type_mismatch",
                conversation_id=conv.id,
                bound=conv.model_type.value,
                requested=request.model_type.value,
            )
        return conv

    async def build_context(self, conversation: Conversation) -> List[Turn]:
        recent = await chat_crud.get_recent_messages(
            self.db, conversation.id, limit=self._settings.context_turns
        )
        return build_context(recent, max_entries=self._settings.context_max_entries)

    async def generate_reply(
        self,
        conversation: Conversation,
        request: SendMessageRequest,
        context: List[Turn],
    ) -> BackendReply:
        """Invoke the adapter bound to the conversation.

        Only the hosted adapter can raise (ProviderError); the local ones
        answer with a degraded reply instead.
        """
        adapter = self.adapters.get(conversation.model_type)
        return await adapter.invoke(request.message, context, request.is_math_related)

    async def persist_turn(
        self,
        conversation: Conversation,
        user_id: int,
        request: SendMessageRequest,
        reply: BackendReply,
        db: Optional[AsyncSession] = None,
    ) -> TurnRecord:
        """Store the turn and move every counter in one transaction.

        The reply already exists at this point; when storage fails it is
        not retried, only logged and reported as PersistenceError.
        """
        db = db or self.db
        # Rollback expires the instance; read what the error path needs first
        conversation_id = conversation.id
        model_type = conversation.model_type
        try:
            msg = await chat_crud.create_message(
                db,
                conversation_id=conversation_id,
                user_id=user_id,
                message=request.message,
                response=reply.content,
                model_type=model_type,
                is_math_related=request.is_math_related,
            )
            await chat_crud.record_message_added(db, conversation_id)
            await crud.record_message_sent(
                db,
                user_id=user_id,
                model_type=model_type,
                is_math_related=request.is_math_related,
            )
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            PERSISTENCE_FAILURES.inc()
            logger.error(
                "turn_not_persisted",
                conversation_id=conversation_id,
                model_type=model_type.value,
                response_length=len(reply.content),
                error=str(e),
            )
            raise PersistenceError(
                "Server error while processing message", detail=str(e)
            ) from e

        MESSAGES_TOTAL.labels(model_type=model_type.value).inc()
        return TurnRecord(
            id=msg.id,
            conversation_id=conversation_id,
            message=msg.message,
            response=msg.response,
            model_type=model_type,
            is_math_related=msg.is_math_related,
            created_at=msg.created_at,
            degraded=reply.degraded,
        )

    async def send_message(self, user_id: int, request: SendMessageRequest) -> TurnRecord:
        """Non-streaming send: resolve, generate, persist, echo."""
        conv = await self.resolve_conversation(user_id, request)
        context = await self.build_context(conv)
        reply = await self.generate_reply(conv, request, context)
        record = await self.persist_turn(conv, user_id, request, reply)
        logger.info(
            "message_sent",
            conversation_id=conv.id,
            message_id=record.id,
            model_type=record.model_type.value,
            model=reply.model_label,
            degraded=reply.degraded,
        )
        return record
