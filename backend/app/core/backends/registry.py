############################################################
#
# mathchat - Math-focused Chat Service
#
# registry.py: Process-wide set of backend adapters
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Backend adapter set, built once from settings at startup."""

from typing import Dict, Iterable, Optional

from backend.app.core.backends.base import BackendAdapter
from backend.app.core.backends.hosted import HostedAPIAdapter
from backend.app.core.backends.local import CustomModelAdapter, MistralModelAdapter
from backend.app.db.models import ModelType
from backend.app.logging_config import get_logger
from backend.app.settings import Settings, get_settings

logger = get_logger(__name__)


class BackendAdapters:
    """One adapter per backend identifier, read-only after construction."""

    def __init__(self, adapters: Iterable[BackendAdapter]):
        self._adapters: Dict[ModelType, BackendAdapter] = {
            adapter.model_type: adapter for adapter in adapters
        }

    @classmethod
    def from_settings(cls, settings: Settings) -> "BackendAdapters":
        return cls([
            HostedAPIAdapter(
                api_key=settings.openai_api_key,
                model=settings.openai_model,
                max_tokens=settings.openai_max_tokens,
                temperature=settings.openai_temperature,
                timeout=settings.openai_timeout,
                base_url=settings.openai_base_url,
                max_context_entries=settings.context_max_entries,
            ),
            CustomModelAdapter(
                url=settings.custom_model_url,
                timeout=settings.custom_model_timeout,
                length_limit=settings.custom_model_max_length,
                start_command=settings.custom_model_start_command,
            ),
            MistralModelAdapter(
                url=settings.mistral_model_url,
                timeout=settings.mistral_model_timeout,
                length_limit=settings.mistral_model_max_tokens,
                start_command=settings.mistral_model_start_command,
                retry_delay=settings.mistral_retry_delay,
            ),
        ])

    def get(self, model_type: ModelType) -> BackendAdapter:
        try:
            return self._adapters[model_type]
        except KeyError:
            raise LookupError(f"No adapter configured for {model_type.value}") from None

    def __contains__(self, model_type: ModelType) -> bool:
        return model_type in self._adapters

    async def close(self) -> None:
        for adapter in self._adapters.values():
            await adapter.close()


# Global adapter set
_adapters: Optional[BackendAdapters] = None


def get_adapters() -> BackendAdapters:
    """Get the global adapter set."""
    global _adapters
    if _adapters is None:
        _adapters = BackendAdapters.from_settings(get_settings())
    return _adapters


async def init_adapters() -> BackendAdapters:
    """Build the adapter set on startup."""
    adapters = get_adapters()
    logger.info(
        "backend_adapters_ready",
        backends=[m.value for m in ModelType if m in adapters],
    )
    return adapters


async def shutdown_adapters() -> None:
    """Close adapter transports on shutdown."""
    global _adapters
    if _adapters:
        await _adapters.close()
        _adapters = None
