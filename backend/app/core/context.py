############################################################
#
# mathchat - Math-focused Chat Service
#
# context.py: Conversation history window for context-aware backends
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Build the bounded history window fed to multi-turn backends."""

from typing import Iterable, List, Protocol

from backend.app.core.schemas import MessageRole, Turn


class StoredTurn(Protocol):
    message: str
    response: str


def build_context(turns: Iterable[StoredTurn], max_entries: int = 10) -> List[Turn]:
    """Expand stored turns (oldest first) into alternating user/assistant entries.

    Only the newest ``max_entries`` entries are kept.
    """
    entries: List[Turn] = []
    for turn in turns:
        entries.append(Turn(role=MessageRole.USER, content=turn.message))
        entries.append(Turn(role=MessageRole.ASSISTANT, content=turn.response))
    if max_entries <= 0:
        return []
    return entries[-max_entries:]
