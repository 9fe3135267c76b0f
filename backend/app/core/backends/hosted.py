############################################################
#
# mathchat - Math-focused Chat Service
#
# hosted.py: Hosted LLM API backend adapter
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Adapter for the hosted chat-completions API ("api" backend).

This backend is billed and assumed reliable, so there is no placeholder
fallback: any provider failure surfaces as ``ProviderError``.
"""

import time
from typing import Any, Dict, List, Optional, Sequence

import openai
from openai import AsyncOpenAI

from backend.app.core.backends.base import BackendAdapter
from backend.app.core.errors import ProviderError
from backend.app.core.metrics import BACKEND_LATENCY, PROVIDER_FAILURES
from backend.app.core.schemas import BackendReply, Turn
from backend.app.db.models import ModelType
from backend.app.logging_config import get_logger

logger = get_logger(__name__)

MATH_SYSTEM_PROMPT = (
    "You are a helpful AI assistant specialized in mathematics. Provide clear, "
    "step-by-step solutions to mathematical problems and explain concepts thoroughly."
)
GENERAL_SYSTEM_PROMPT = (
    "You are a helpful AI assistant. Provide clear, accurate, and helpful "
    "responses to user questions."
)
EMPTY_COMPLETION_REPLY = "Sorry, I could not generate a response."


class HostedAPIAdapter(BackendAdapter):
    """Chat completions through the OpenAI SDK."""

    model_type = ModelType.API

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-3.5-turbo",
        max_tokens: int = 1000,
        temperature: float = 0.7,
        timeout: float = 60.0,
        base_url: Optional[str] = None,
        max_context_entries: int = 10,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        self.base_url = base_url
        self.max_context_entries = max_context_entries
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        """Create the SDK client on first use.

        Construction fails when no API key is configured, which must be
        reported per request rather than at startup.
        """
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    def build_messages(
        self,
        prompt: str,
        context: Sequence[Turn],
        is_math_related: bool = False,
    ) -> List[Dict[str, Any]]:
        system = MATH_SYSTEM_PROMPT if is_math_related else GENERAL_SYSTEM_PROMPT
        messages: List[Dict[str, Any]] = [{"role": "system", "content": system}]
        if self.max_context_entries > 0:
            messages.extend(t.to_openai() for t in list(context)[-self.max_context_entries:])
        messages.append({"role": "user", "content": prompt})
        return messages

    async def invoke(
        self,
        prompt: str,
        context: Sequence[Turn],
        is_math_related: bool = False,
    ) -> BackendReply:
        messages = self.build_messages(prompt, context, is_math_related)
        start = time.monotonic()
        try:
            client = self._get_client()
            completion = await client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except openai.OpenAIError as exc:
            PROVIDER_FAILURES.inc()
            logger.error(
                "hosted_backend_failed",
                model=self.model,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise ProviderError(
                "Hosted API request failed. Please check your API key and try again.",
                detail=str(exc),
            ) from exc
        finally:
            BACKEND_LATENCY.labels(model_type=self.model_type.value).observe(
                time.monotonic() - start
            )

        content = None
        if completion.choices:
            content = completion.choices[0].message.content
        usage = completion.usage
        logger.debug(
            "hosted_backend_reply",
            model=completion.model,
            total_tokens=usage.total_tokens if usage else None,
        )
        return BackendReply(
            content=content or EMPTY_COMPLETION_REPLY,
            model_label=completion.model or self.model,
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
