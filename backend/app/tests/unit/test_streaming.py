############################################################
#
# mathchat - Math-focused Chat Service
#
# test_streaming.py: Unit tests for server-sent event delivery
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Streaming transport tests.

Covers event framing, the cumulative word reveal, terminal events and
persistence when the client goes away mid-stream.
"""

import json
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from backend.app.core.errors import ProviderError
from backend.app.core.schemas import SendMessageRequest
from backend.app.db import chat_crud, crud
from backend.app.db.models import ChatMessage, ModelType
from backend.app.services.dispatch import DispatchService
from backend.app.services.streaming import reveal_words, sse_event, stream_chat_events


# --- Helpers ---


def _decode(frame: bytes) -> dict:
    text = frame.decode()
    assert text.startswith("data: ")
    assert text.endswith("\n\n")
    return json.loads(text[len("data: "):])


async def _collect_stream(async_gen):
    """Collect all items from an async generator."""
    items = []
    async for item in async_gen:
        items.append(item)
    return items


async def _open_stream(db, adapters, session_factory, model_type=ModelType.API, text="hi"):
    service = DispatchService(db, adapters)
    request = SendMessageRequest(message=text, model_type=model_type)
    conv = await service.resolve_conversation(1, request)
    context = await service.build_context(conv)
    stream = stream_chat_events(
        service, conv, 1, request, context, session_factory, chunk_delay=0
    )
    return conv, stream


async def _stored(session_factory):
    async with session_factory() as session:
        result = await session.execute(select(ChatMessage))
        return list(result.scalars().all())


class TestFraming:

    def test_sse_event(self):
        frame = sse_event({"type": "error", "message": "x"})
        assert frame == b'data: {"type": "error", "message": "x"}\n\n'

    @pytest.mark.asyncio
    async def test_reveal_words_cumulative(self):
        prefixes = await _collect_stream(reveal_words("hello world test", delay=0))
        assert prefixes == ["hello", "hello world", "hello world test"]

    @pytest.mark.asyncio
    async def test_reveal_keeps_exact_spacing(self):
        text = "line one\n\nline  two"
        prefixes = await _collect_stream(reveal_words(text, delay=0))
        assert prefixes[-1] == text

    @pytest.mark.asyncio
    async def test_reveal_single_word(self):
        assert await _collect_stream(reveal_words("42", delay=0)) == ["42"]


class TestStreamChatEvents:

    @pytest.mark.asyncio
    async def test_chunks_then_complete(self, db, adapters, fake_adapters, session_factory):
        fake_adapters[ModelType.API].content = "hello world test"
        conv, stream = await _open_stream(db, adapters, session_factory, text="greet me")

        events = [_decode(f) for f in await _collect_stream(stream)]

        chunks = [e for e in events if e["type"] == "chunk"]
        assert [c["content"] for c in chunks] == ["hello", "hello world", "hello world test"]
        assert all(c["conversationId"] == conv.id for c in chunks)

        terminal = events[len(chunks):]
        assert len(terminal) == 1
        complete = terminal[0]
        assert complete["type"] == "complete"
        assert complete["response"] == "hello world test"
        assert complete["message"] == "greet me"
        assert complete["conversationId"] == conv.id
        assert complete["modelType"] == "api"

        stored = await _stored(session_factory)
        assert len(stored) == 1
        assert complete["messageId"] == stored[0].id

    @pytest.mark.asyncio
    async def test_custom_model_single_chunk(self, db, adapters, fake_adapters, session_factory):
        fake_adapters[ModelType.CUSTOM].content = "one two three"
        _, stream = await _open_stream(
            db, adapters, session_factory, model_type=ModelType.CUSTOM
        )

        events = [_decode(f) for f in await _collect_stream(stream)]

        assert [e["type"] for e in events] == ["chunk", "complete"]
        assert events[0]["content"] == "one two three"

    @pytest.mark.asyncio
    async def test_mistral_revealed_word_by_word(self, db, adapters, fake_adapters, session_factory):
        fake_adapters[ModelType.MISTRAL].content = "a b"
        _, stream = await _open_stream(
            db, adapters, session_factory, model_type=ModelType.MISTRAL
        )

        events = [_decode(f) for f in await _collect_stream(stream)]
        assert [e["type"] for e in events] == ["chunk", "chunk", "complete"]

    @pytest.mark.asyncio
    async def test_provider_error_event(self, db, adapters, fake_adapters, session_factory):
        fake_adapters[ModelType.API].error = ProviderError(
            "Hosted API request failed. Please check your API key and try again."
        )
        _, stream = await _open_stream(db, adapters, session_factory)

        events = [_decode(f) for f in await _collect_stream(stream)]

        assert len(events) == 1
        assert events[0]["type"] == "error"
        assert "API key" in events[0]["message"]
        assert await _stored(session_factory) == []

    @pytest.mark.asyncio
    async def test_unexpected_error_event(self, db, adapters, fake_adapters, session_factory):
        fake_adapters[ModelType.API].invoke = _boom
        _, stream = await _open_stream(db, adapters, session_factory)

        events = [_decode(f) for f in await _collect_stream(stream)]

        assert events == [{"type": "error", "message": "AI model error occurred"}]

    @pytest.mark.asyncio
    async def test_statistics_updated_by_stream(self, db, adapters, session_factory):
        _, stream = await _open_stream(db, adapters, session_factory)
        await _collect_stream(stream)

        async with session_factory() as session:
            stats = await crud.get_user_statistics(session, 1)
        assert stats.total_messages == 1
        assert stats.api_model_uses == 1

    @pytest.mark.asyncio
    async def test_disconnect_mid_reveal_still_persists(
        self, db, adapters, fake_adapters, session_factory
    ):
        fake_adapters[ModelType.API].content = "a long reply that the client abandons"
        _, stream = await _open_stream(db, adapters, session_factory)

        first = _decode(await stream.__anext__())
        assert first["content"] == "a"
        await stream.aclose()

        stored = await _stored(session_factory)
        assert len(stored) == 1
        assert stored[0].response == "a long reply that the client abandons"

    @pytest.mark.asyncio
    async def test_storage_failure_ends_with_error(self, db, adapters, session_factory):
        _, stream = await _open_stream(db, adapters, session_factory)

        failure = OperationalError("INSERT", {}, Exception("database is locked"))
        with patch.object(chat_crud, "create_message", AsyncMock(side_effect=failure)):
            events = [_decode(f) for f in await _collect_stream(stream)]

        assert all(e["type"] == "chunk" for e in events[:-1])
        assert events[-1] == {
            "type": "error",
            "message": "Server error while processing message",
        }
        assert not any(e["type"] == "complete" for e in events)
        assert await _stored(session_factory) == []


async def _boom(*args, **kwargs):
    raise RuntimeError("adapter bug")
