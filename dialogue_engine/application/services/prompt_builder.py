"""Materializes conversation memory for a turn as chat-format messages."""

from typing import Any, Dict, List, Optional

from dialogue_engine.domain.model.agent import Agent
from dialogue_engine.domain.model.conversation import Message, MessageRole
from dialogue_engine.domain.model.turn import TurnContext

DEFAULT_SUMMARY_PREFIX = "Summary of the earlier conversation: "


class PromptBuilder:
    """
    Builds the prompt of a turn, in order:
    rolling summary, system prompt + preset tool parameters, history, current message.
    """

    def __init__(self, summary_prefix: str = DEFAULT_SUMMARY_PREFIX) -> None:
        self._summary_prefix = summary_prefix

    def build(self, turn: TurnContext) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = []

        summary = turn.conversation_context.summary
        if summary:
            messages.append({"role": "assistant", "content": f"{self._summary_prefix}{summary}"})

        system_prompt = self.render_system_prompt(turn.agent)
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})

        for message in turn.history:
            entry = self.to_entry(message)
            if entry is not None:
                messages.append(entry)

        messages.append({"role": "user", "content": turn.message})
        return messages

    @staticmethod
    def render_system_prompt(agent: Agent) -> str:
        preset_text = PromptBuilder.render_preset_params(agent)
        if not preset_text:
            return agent.system_prompt
        if not agent.system_prompt:
            return preset_text
        return f"{agent.system_prompt}\n{preset_text}"

    @staticmethod
    def render_preset_params(agent: Agent) -> str:
        lines = []
        for server_name, tools in sorted(agent.tool_preset_params.items()):
            for tool_name, params in sorted(tools.items()):
                if not params:
                    continue
                rendered = ", ".join(f"{key}={value}" for key, value in sorted(params.items()))
                lines.append(f"- {server_name}/{tool_name}: {rendered}")
        if not lines:
            return ""
        return "Preset tool parameters (already applied to the calls):\n" + "\n".join(lines)

    @staticmethod
    def to_entry(message: Message) -> Optional[Dict[str, Any]]:
        """Map a history message to a chat entry; summaries and empty messages are skipped."""
        if message.role == MessageRole.USER:
            if not message.file_urls:
                return {"role": "user", "content": message.content} if message.content else None
            parts: List[Dict[str, Any]] = [
                {"type": "image_url", "image_url": {"url": url}} for url in message.file_urls
            ]
            if message.content:
                parts.append({"type": "text", "text": message.content})
            return {"role": "user", "content": parts}
        if message.role in (MessageRole.ASSISTANT, MessageRole.SYSTEM):
            if not message.content:
                return None
            return {"role": message.role.value, "content": message.content}
        return None
