############################################################
#
# mathchat - Math-focused Chat Service
#
# test_dispatch.py: Unit tests for the message dispatch service
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Dispatch pipeline tests: binding, persistence and counters."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest
from prometheus_client import REGISTRY
from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError

from backend.app.core.backends.local import CustomModelAdapter
from backend.app.core.backends.registry import BackendAdapters
from backend.app.core.errors import (
    ForbiddenError,
    InvalidRequestError,
    PersistenceError,
    ProviderError,
)
from backend.app.core.schemas import SendMessageRequest
from backend.app.db import chat_crud, crud
from backend.app.db.models import ChatMessage, Conversation, ModelType
from backend.app.services.dispatch import DispatchService


def _request(message="2+2", model_type=ModelType.API, conversation_id=None, is_math=False):
    return SendMessageRequest(
        message=message,
        model_type=model_type,
        conversation_id=conversation_id,
        is_math_related=is_math,
    )


async def _messages(db, conversation_id):
    result = await db.execute(
        select(ChatMessage).where(ChatMessage.conversation_id == conversation_id)
    )
    return list(result.scalars().all())


class TestParseSendRequest:

    def test_valid_payload(self):
        req = DispatchService.parse_send_request({
            "message": "2+2",
            "modelType": "mistral",
            "conversationId": 7,
            "isMathRelated": True,
        })
        assert req.message == "2+2"
        assert req.model_type is ModelType.MISTRAL
        assert req.conversation_id == 7
        assert req.is_math_related is True

    def test_optional_fields_default(self):
        req = DispatchService.parse_send_request({"message": "hi", "modelType": "api"})
        assert req.conversation_id is None
        assert req.is_math_related is False

    def test_text_stored_as_sent(self):
        req = DispatchService.parse_send_request({"message": "  2+2 ", "modelType": "api"})
        assert req.message == "  2+2 "

    @pytest.mark.parametrize("body", [
        {"modelType": "api"},
        {"message": "", "modelType": "api"},
        {"message": "   \n", "modelType": "api"},
        {"message": 42, "modelType": "api"},
        None,
    ])
    def test_message_required(self, body):
        with pytest.raises(InvalidRequestError) as exc_info:
            DispatchService.parse_send_request(body)
        assert exc_info.value.message == "Message is required"
        assert exc_info.value.status_code == 400

    @pytest.mark.parametrize("model_type", [None, "", "gpt-4", "API", 1])
    def test_model_type_must_be_known(self, model_type):
        with pytest.raises(InvalidRequestError) as exc_info:
            DispatchService.parse_send_request({"message": "hi", "modelType": model_type})
        assert "api, custom, or mistral" in exc_info.value.message

    def test_bad_conversation_id(self):
        with pytest.raises(InvalidRequestError):
            DispatchService.parse_send_request({
                "message": "hi", "modelType": "api", "conversationId": "abc",
            })


class TestSendMessage:

    @pytest.mark.asyncio
    async def test_first_message_creates_bound_conversation(self, db, adapters, fake_adapters):
        service = DispatchService(db, adapters)
        record = await service.send_message(1, _request("2+2", ModelType.API))

        assert record.conversation_id is not None
        assert record.message == "2+2"
        assert record.response == "api reply"
        assert record.model_type is ModelType.API

        conv = await chat_crud.get_conversation(db, record.conversation_id, 1)
        assert conv.model_type is ModelType.API
        assert conv.message_count == 1
        rows = await _messages(db, conv.id)
        assert len(rows) == 1
        assert rows[0].model_type is ModelType.API
        assert len(fake_adapters[ModelType.API].calls) == 1

    @pytest.mark.asyncio
    async def test_implicit_creation_counts_conversation(self, db, adapters):
        await DispatchService(db, adapters).send_message(1, _request())

        stats = await crud.get_user_statistics(db, 1)
        assert stats.total_conversations == 1
        assert stats.total_messages == 1

    @pytest.mark.asyncio
    async def test_binding_wins_over_request(self, db, adapters, fake_adapters):
        conv = await chat_crud.create_conversation(db, 1, ModelType.CUSTOM)
        await db.commit()

        service = DispatchService(db, adapters)
        record = await service.send_message(
            1, _request("hi", ModelType.API, conversation_id=conv.id)
        )

        assert record.model_type is ModelType.CUSTOM
        assert record.response == "custom reply"
        assert fake_adapters[ModelType.API].calls == []
        rows = await _messages(db, conv.id)
        assert [r.model_type for r in rows] == [ModelType.CUSTOM]

    @pytest.mark.asyncio
    async def test_unset_binding_repaired_once(self, db, adapters):
        conv = await chat_crud.create_conversation(db, 1, ModelType.API)
        await db.commit()
        await db.execute(
            update(Conversation).where(Conversation.id == conv.id).values(model_type=None)
        )
        await db.commit()

        service = DispatchService(db, adapters)
        first = await service.send_message(
            1, _request("a", ModelType.MISTRAL, conversation_id=conv.id)
        )
        second = await service.send_message(
            1, _request("b", ModelType.API, conversation_id=conv.id)
        )

        assert first.model_type is ModelType.MISTRAL
        assert second.model_type is ModelType.MISTRAL
        conv = await chat_crud.get_conversation(db, conv.id, 1)
        assert conv.model_type is ModelType.MISTRAL
        assert conv.message_count == 2

    @pytest.mark.asyncio
    async def test_foreign_conversation_forbidden(self, db, adapters, fake_adapters):
        conv = await chat_crud.create_conversation(db, 2, ModelType.API)
        await db.commit()

        with pytest.raises(ForbiddenError) as exc_info:
            await DispatchService(db, adapters).send_message(
                1, _request(conversation_id=conv.id)
            )
        assert exc_info.value.status_code == 403
        assert fake_adapters[ModelType.API].calls == []

    @pytest.mark.asyncio
    async def test_missing_conversation_looks_like_foreign(self, db, adapters):
        with pytest.raises(ForbiddenError) as exc_info:
            await DispatchService(db, adapters).send_message(
                1, _request(conversation_id=999)
            )
        assert exc_info.value.message == "Conversation not found or access denied"

    @pytest.mark.asyncio
    async def test_context_comes_from_recent_turns(self, db, adapters, fake_adapters):
        service = DispatchService(db, adapters)
        first = await service.send_message(1, _request("one"))
        for text in ("two", "three", "four", "five", "six"):
            await service.send_message(
                1, _request(text, conversation_id=first.conversation_id)
            )

        context = fake_adapters[ModelType.API].calls[-1]["context"]
        assert len(context) == 10
        # Five most recent turns, oldest first
        assert [t.content for t in context[::2]] == ["one", "two", "three", "four", "five"]

    @pytest.mark.asyncio
    async def test_classification_hint_forwarded(self, db, adapters, fake_adapters):
        await DispatchService(db, adapters).send_message(1, _request(is_math=True))
        assert fake_adapters[ModelType.API].calls[0]["is_math_related"] is True

    @pytest.mark.asyncio
    async def test_math_message_statistics(self, db, adapters):
        await crud.get_or_create_statistics(db, 1)
        await db.commit()

        await DispatchService(db, adapters).send_message(
            1, _request("2+2", ModelType.API, is_math=True)
        )

        stats = await crud.get_user_statistics(db, 1)
        assert stats.total_messages == 1
        assert stats.math_questions_count == 1
        assert stats.api_model_uses == 1
        assert stats.general_questions_count == 0
        assert stats.custom_model_uses == 0
        assert stats.mistral_model_uses == 0


class TestFailures:

    @pytest.mark.asyncio
    async def test_local_backend_down_still_answers(self, db, fake_adapters):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        custom = CustomModelAdapter(
            url="http://localhost:8000/chat",
            timeout=30,
            length_limit=512,
            start_command="model_service/start_model.bat",
            transport=httpx.MockTransport(refuse),
        )
        adapters = BackendAdapters([fake_adapters[ModelType.API], custom])

        record = await DispatchService(db, adapters).send_message(
            1, _request("hello", ModelType.CUSTOM)
        )

        assert record.degraded
        assert record.response
        assert "model_service/start_model.bat" in record.response
        rows = await _messages(db, record.conversation_id)
        assert rows[0].response == record.response

    @pytest.mark.asyncio
    async def test_provider_error_is_terminal(self, db, adapters, fake_adapters):
        fake_adapters[ModelType.API].error = ProviderError("Hosted API request failed.")

        with pytest.raises(ProviderError):
            await DispatchService(db, adapters).send_message(1, _request())

        result = await db.execute(select(ChatMessage))
        assert result.scalars().all() == []
        stats = await crud.get_user_statistics(db, 1)
        assert stats.total_messages == 0

    @pytest.mark.asyncio
    async def test_storage_failure_reported(self, db, adapters, fake_adapters):
        conv = await chat_crud.create_conversation(db, 1, ModelType.API)
        await db.commit()
        conv_id = conv.id
        before = _persistence_failures()

        failure = OperationalError("INSERT", {}, Exception("database is locked"))
        with patch.object(db, "commit", AsyncMock(side_effect=failure)):
            with pytest.raises(PersistenceError) as exc_info:
                await DispatchService(db, adapters).send_message(
                    1, _request(conversation_id=conv_id)
                )

        assert exc_info.value.status_code == 500
        assert exc_info.value.message == "Server error while processing message"
        assert _persistence_failures() == before + 1
        # The reply was generated, then dropped with the rolled back transaction
        assert len(fake_adapters[ModelType.API].calls) == 1
        assert await _messages(db, conv_id) == []

    @pytest.mark.asyncio
    async def test_insert_failure_on_existing_conversation(self, db, adapters):
        conv = await chat_crud.create_conversation(db, 1, ModelType.API)
        await crud.record_conversation_created(db, 1)
        await db.commit()
        conv_id = conv.id
        before = _persistence_failures()

        failure = OperationalError("INSERT", {}, Exception("disk I/O error"))
        with patch.object(chat_crud, "create_message", AsyncMock(side_effect=failure)):
            with pytest.raises(PersistenceError):
                await DispatchService(db, adapters).send_message(
                    1, _request(conversation_id=conv_id)
                )

        assert _persistence_failures() == before + 1
        assert await _messages(db, conv_id) == []
        stats = await crud.get_user_statistics(db, 1)
        assert stats.total_messages == 0


def _persistence_failures() -> float:
    return REGISTRY.get_sample_value("mathchat_persistence_failures_total") or 0.0
