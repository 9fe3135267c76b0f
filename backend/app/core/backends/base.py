############################################################
#
# mathchat - Math-focused Chat Service
#
# base.py: Uniform interface over the answer-generation backends
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Backend adapter interface."""

from abc import ABC, abstractmethod
from typing import Sequence

from backend.app.core.schemas import BackendReply, Turn
from backend.app.db.models import ModelType


class BackendAdapter(ABC):
    """One answer-generation backend.

    Implementations either return a ``BackendReply`` or raise a
    ``ChatError``; the local ones never raise and degrade instead.
    """

    model_type: ModelType

    # Streaming path reveals the reply word by word when True,
    # otherwise it is sent as a single chunk.
    streams_incrementally: bool = True

    @abstractmethod
    async def invoke(
        self,
        prompt: str,
        context: Sequence[Turn],
        is_math_related: bool = False,
    ) -> BackendReply:
        """Produce a reply to ``prompt``."""

    async def close(self) -> None:
        """Release transport resources."""
