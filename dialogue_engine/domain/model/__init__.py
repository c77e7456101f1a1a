from dialogue_engine.domain.model.agent import Agent, AgentVersion, PresetToolParams
from dialogue_engine.domain.model.conversation import (
    ConversationContext,
    Message,
    MessageRole,
    MessageType,
    Session,
)
from dialogue_engine.domain.model.llm import (
    LLMModel,
    Provider,
    ProviderSelection,
    TokenBudgetConfig,
    TokenBudgetStrategy,
    UserSettings,
    WorkspaceModelConfig,
)
from dialogue_engine.domain.model.stream import ChatEvent, ChatEventType, StreamState
from dialogue_engine.domain.model.turn import ChatRequest, TurnContext, TurnKind

__all__ = [
    "Agent",
    "AgentVersion",
    "PresetToolParams",
    "ConversationContext",
    "Message",
    "MessageRole",
    "MessageType",
    "Session",
    "LLMModel",
    "Provider",
    "ProviderSelection",
    "TokenBudgetConfig",
    "TokenBudgetStrategy",
    "UserSettings",
    "WorkspaceModelConfig",
    "ChatEvent",
    "ChatEventType",
    "StreamState",
    "ChatRequest",
    "TurnContext",
    "TurnKind",
]
