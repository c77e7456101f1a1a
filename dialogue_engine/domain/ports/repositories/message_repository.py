"""Persistence collaborator for messages and conversation contexts."""

from abc import ABC, abstractmethod
from typing import List, Optional

from dialogue_engine.domain.model.conversation import ConversationContext, Message


class MessageRepository(ABC):
    """
    Durable, append-only message store.

    ``save_and_activate`` writes the messages and appends their ids to the
    context's active list in one transaction.
    """

    @abstractmethod
    async def save_and_activate(self, messages: List[Message], context: ConversationContext) -> None:
        pass

    @abstractmethod
    async def update_message(self, message: Message) -> None:
        """Persist token backfill of an already saved message."""
        pass

    @abstractmethod
    async def load_by_ids(self, message_ids: List[str]) -> List[Message]:
        """Load messages in the order of ``message_ids``; unknown ids are skipped."""
        pass

    @abstractmethod
    async def get_context(self, session_id: str) -> Optional[ConversationContext]:
        pass

    @abstractmethod
    async def save_context(self, context: ConversationContext) -> None:
        pass

    @abstractmethod
    async def save_summary(self, summary: Message, context: ConversationContext) -> None:
        """Persist a summary message together with the rewritten context."""
        pass
