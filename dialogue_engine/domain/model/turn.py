"""Turn request and the immutable-per-turn execution context."""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Set

from dialogue_engine.domain.model.agent import Agent
from dialogue_engine.domain.model.conversation import ConversationContext, Message
from dialogue_engine.domain.model.llm import (
    LLMModel,
    Provider,
    ProviderSelection,
    TokenBudgetConfig,
)


class TurnKind(str, Enum):
    """How a turn is provisioned with tools; resolved once during assembly."""

    STANDARD = "standard"  # plain chat, no tools bound
    AGENT = "agent"  # remote tools and/or sub-agent tools bound


@dataclass(kw_only=True)
class ChatRequest:
    """A user message addressed to a session."""

    session_id: str
    message: str
    file_urls: List[str] = field(default_factory=list)
    model_id: Optional[str] = None


@dataclass(kw_only=True)
class TurnContext:
    """
    The single unit of work handed to the streaming orchestrator.

    Built fresh per request by the context assembler. Only
    ``suppressed_tool_names`` changes afterwards: tools add their own name
    to keep the generic "tool invoked" marker off the primary timeline.
    """

    session_id: str
    user_id: str
    message: str
    file_urls: List[str] = field(default_factory=list)
    agent: Agent
    model: LLMModel
    provider: Provider  # declared provider, kept for telemetry
    selection: ProviderSelection  # provider/model actually called
    tool_ids: List[str] = field(default_factory=list)
    history: List[Message] = field(default_factory=list)
    conversation_context: ConversationContext
    budget: TokenBudgetConfig = field(default_factory=TokenBudgetConfig)
    kind: TurnKind = TurnKind.STANDARD
    streaming: bool = True
    suppress_persistence: bool = False
    delegation_depth: int = 0
    suppressed_tool_names: Set[str] = field(default_factory=set)
    turn_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def is_delegated(self) -> bool:
        return self.delegation_depth > 0

    def suppress_tool(self, tool_name: str) -> None:
        self.suppressed_tool_names.add(tool_name)

    def is_tool_suppressed(self, tool_name: str) -> bool:
        return tool_name in self.suppressed_tool_names
