############################################################
#
# mathchat - Math-focused Chat Service
#
# local.py: Locally hosted model backend adapters
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Adapters for the locally hosted models ("custom" and "mistral").

Both talk to a small HTTP service that accepts ``{"message": ...}`` and
answers ``{"response": ..., "model": ...}``. These services are optional
local processes, so when one cannot be reached the adapter returns a
placeholder reply explaining how to start it instead of failing the send.
"""

import asyncio
import time
from abc import abstractmethod
from typing import Optional, Sequence

import httpx

from backend.app.core.backends.base import BackendAdapter
from backend.app.core.errors import BackendUnavailableError, FailureKind
from backend.app.core.metrics import BACKEND_LATENCY, DEGRADED_REPLIES
from backend.app.core.schemas import BackendReply, Turn
from backend.app.db.models import ModelType
from backend.app.logging_config import get_logger

logger = get_logger(__name__)


def _error_text(response: httpx.Response) -> str:
    """Pull a short error message out of a failed service response."""
    try:
        data = response.json()
    except ValueError:
        return response.reason_phrase or "unknown error"
    if isinstance(data, dict):
        for key in ("error", "detail", "message"):
            if data.get(key):
                return str(data[key])
    return response.reason_phrase or "unknown error"


class LocalModelAdapter(BackendAdapter):
    """Shared transport and degradation logic for local model services."""

    service_name: str = "local model service"
    length_field: str = "max_length"
    default_label: str = "local-model"
    demo_label: str = "local-model-Demo-Fallback"

    def __init__(
        self,
        url: str,
        timeout: float,
        length_limit: int,
        start_command: str,
        retry_delay: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.length_limit = length_limit
        self.start_command = start_command
        # One delayed retry on network-level failures when set
        self.retry_delay = retry_delay
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={"Content-Type": "application/json"},
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _call(self, prompt: str) -> BackendReply:
        """Single request to the service; raises BackendUnavailableError."""
        client = await self._get_client()
        start = time.monotonic()
        try:
            response = await client.post(
                self.url,
                json={"message": prompt, self.length_field: self.length_limit},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as exc:
            raise BackendUnavailableError(
                FailureKind.TIMEOUT,
                f"{self.service_name} did not respond within {self.timeout:g} seconds",
                detail=repr(exc),
            ) from exc
        except httpx.ConnectError as exc:
            raise BackendUnavailableError(
                FailureKind.CONNECTION_REFUSED,
                f"{self.service_name} is not running at {self.url}",
                detail=repr(exc),
            ) from exc
        except httpx.HTTPStatusError as exc:
            raise BackendUnavailableError(
                FailureKind.HTTP_ERROR,
                f"{self.service_name} error ({exc.response.status_code}): "
                f"{_error_text(exc.response)}",
            ) from exc
        except httpx.TransportError as exc:
            raise BackendUnavailableError(
                FailureKind.NETWORK,
                f"Network error while talking to {self.service_name}: {exc}",
                detail=repr(exc),
            ) from exc
        except ValueError as exc:
            raise BackendUnavailableError(
                FailureKind.MALFORMED_RESPONSE,
                f"{self.service_name} returned a body that is not JSON",
            ) from exc
        finally:
            BACKEND_LATENCY.labels(model_type=self.model_type.value).observe(
                time.monotonic() - start
            )

        content = data.get("response") if isinstance(data, dict) else None
        if not isinstance(content, str) or not content:
            raise BackendUnavailableError(
                FailureKind.MALFORMED_RESPONSE,
                f"Invalid response structure from {self.service_name}",
            )
        label = data.get("model")
        return BackendReply(
            content=content,
            model_label=label if isinstance(label, str) and label else self.default_label,
        )

    async def invoke(
        self,
        prompt: str,
        context: Sequence[Turn],
        is_math_related: bool = False,
    ) -> BackendReply:
        try:
            return await self._call(prompt)
        except BackendUnavailableError as exc:
            failure = exc

        if self.retry_delay is not None and failure.kind is FailureKind.NETWORK:
            logger.info(
                "local_backend_retry",
                model_type=self.model_type.value,
                delay=self.retry_delay,
                error=failure.message,
            )
            await asyncio.sleep(self.retry_delay)
            try:
                return await self._call(prompt)
            except BackendUnavailableError as exc:
                failure = exc

        logger.warning(
            "local_backend_degraded",
            model_type=self.model_type.value,
            url=self.url,
            kind=failure.kind.value,
            error=failure.message,
        )
        DEGRADED_REPLIES.labels(
            model_type=self.model_type.value, kind=failure.kind.value
        ).inc()
        return BackendReply(
            content=self.demo_reply(prompt, failure),
            model_label=self.demo_label,
            degraded=True,
            error=failure.message,
        )

    @abstractmethod
    def demo_reply(self, prompt: str, failure: BackendUnavailableError) -> str:
        """Placeholder text served while the local service is unreachable."""


class CustomModelAdapter(LocalModelAdapter):
    """Local fine-tuned model. Fast, single-turn, no retry."""

    model_type = ModelType.CUSTOM
    streams_incrementally = False

    service_name = "Fine-tuned model service"
    length_field = "max_length"
    default_label = "T5-Fine-tuned"
    demo_label = "Custom-Demo-Fallback"

    def demo_reply(self, prompt: str, failure: BackendUnavailableError) -> str:
        return (
            "**Fine-tuned Model Demo Response:**\n\n"
            "The local fine-tuned model is still loading or has not been started.\n\n"
            f"**Your message:** \"{prompt}\"\n\n"
            "**Demo answer:** This is a temporary placeholder for the fine-tuned model. "
            "To use the real model:\n\n"
            f"1. Start the model service: `{self.start_command}`\n"
            f"2. Make sure it is listening on {self.url}\n"
            "3. Send this message again\n\n"
            "*Replies switch to the real model automatically once the service is running.*"
        )


class MistralModelAdapter(LocalModelAdapter):
    """Local large model. Slow; retried once on network-level errors.

    The service is single-turn, so history is not forwarded.
    """

    model_type = ModelType.MISTRAL
    streams_incrementally = True

    service_name = "Mistral 7B model service"
    length_field = "max_tokens"
    default_label = "Mistral-7B-Instruct-v0.3"
    demo_label = "Mistral-7B-Demo-Fallback"

    @property
    def health_url(self) -> str:
        return str(httpx.URL(self.url).copy_with(path="/health"))

    def demo_reply(self, prompt: str, failure: BackendUnavailableError) -> str:
        return (
            "**Mistral 7B Model Demo Response:**\n\n"
            "The local Mistral 7B model is still loading or has not been started.\n\n"
            f"**Your message:** \"{prompt}\"\n\n"
            "**Demo answer:** This is a temporary placeholder for the Mistral 7B model. "
            "To use the real model:\n\n"
            f"1. Start the model service: `{self.start_command}`\n"
            f"2. Make sure it is listening on {self.url}\n"
            "3. Send this message again\n\n"
            f"**Error detail:** {failure.message}\n\n"
            f"*Check whether the service is up: {self.health_url}*"
        )
