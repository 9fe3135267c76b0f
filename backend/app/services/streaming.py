############################################################
#
# mathchat - Math-focused Chat Service
#
# streaming.py: Server-sent event delivery of chat replies
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Server-sent event stream for one chat message.

Event framing is ``data: <json>\\n\\n``. A stream is zero or more
``chunk`` events carrying the cumulative reply text, followed by exactly
one ``complete`` or ``error`` event.
"""

import asyncio
import json
from typing import Any, AsyncContextManager, AsyncIterator, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.errors import ChatError
from backend.app.core.schemas import BackendReply, SendMessageRequest, Turn, TurnRecord
from backend.app.db.models import Conversation
from backend.app.logging_config import get_logger
from backend.app.services.dispatch import DispatchService

logger = get_logger(__name__)

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]

STREAM_ERROR_MESSAGE = "AI model error occurred"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def sse_event(payload: Dict[str, Any]) -> bytes:
    """Frame one event."""
    return ("data: " + json.dumps(payload) + "\n\n").encode()


async def reveal_words(text: str, delay: float = 0.05) -> AsyncIterator[str]:
    """Yield growing prefixes of ``text``, one more word each time.

    Splits on single spaces so the last prefix is exactly ``text``.
    """
    words = text.split(" ")
    for i in range(1, len(words) + 1):
        if i > 1 and delay > 0:
            await asyncio.sleep(delay)
        yield " ".join(words[:i])


async def stream_chat_events(
    service: DispatchService,
    conversation: Conversation,
    user_id: int,
    request: SendMessageRequest,
    context: List[Turn],
    session_factory: SessionFactory,
    chunk_delay: float = 0.05,
) -> AsyncIterator[bytes]:
    """Generate the event stream for an already-resolved conversation.

    The turn is stored before the terminal event, through a session of
    its own. If the client goes away after the reply exists but before it
    is stored, the store still runs, shielded from the cancellation.
    """
    conversation_id = conversation.id
    reply: Optional[BackendReply] = None
    persist_started = False

    async def _persist(reply: BackendReply) -> TurnRecord:
        async with session_factory() as session:
            return await service.persist_turn(
                conversation, user_id, request, reply, db=session
            )

    try:
        reply = await service.generate_reply(conversation, request, context)

        adapter = service.adapters.get(conversation.model_type)
        if adapter.streams_incrementally:
            async for prefix in reveal_words(reply.content, chunk_delay):
                yield sse_event({
                    "type": "chunk",
                    "content": prefix,
                    "conversationId": conversation_id,
                })
        else:
            yield sse_event({
                "type": "chunk",
                "content": reply.content,
                "conversationId": conversation_id,
            })

        persist_started = True
        record = await asyncio.shield(_persist(reply))
        logger.info(
            "message_streamed",
            conversation_id=conversation_id,
            message_id=record.id,
            model_type=record.model_type.value,
            model=reply.model_label,
            degraded=reply.degraded,
        )
        yield sse_event(record.to_complete_event())

    except ChatError as e:
        logger.warning(
            "chat_stream_error",
            conversation_id=conversation_id,
            error_type=type(e).__name__,
            error=e.message,
        )
        yield sse_event({"type": "error", "message": e.message})
    except Exception as e:
        logger.exception("chat_stream_error", conversation_id=conversation_id, error=str(e))
        yield sse_event({"type": "error", "message": STREAM_ERROR_MESSAGE})
    finally:
        # Client disconnected mid-reveal: store the reply anyway
        if reply is not None and not persist_started:
            logger.info("chat_stream_cancelled", conversation_id=conversation_id)
            try:
                await asyncio.shield(_persist(reply))
            except asyncio.CancelledError:
                pass
            except ChatError as e:
                # Already logged by persist_turn
                logger.warning(
                    "failed_to_save_streamed_reply",
                    conversation_id=conversation_id,
                    error=e.message,
                )
