"""Summarization collaborator used by the SUMMARIZE budget strategy."""

from typing import List, Optional, Protocol, runtime_checkable

from dialogue_engine.domain.model.conversation import Message
from dialogue_engine.domain.model.llm import ProviderSelection


@runtime_checkable
class SummarizerPort(Protocol):
    async def summarize(
        self,
        messages: List[Message],
        selection: ProviderSelection,
        previous_summary: Optional[str] = None,
    ) -> str:
        """Return a summary standing in for ``messages``."""
        ...
