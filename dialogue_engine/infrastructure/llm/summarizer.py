"""LLM-backed summarizer for the SUMMARIZE budget strategy."""

import logging
from typing import List, Optional

from dialogue_engine.domain.model.conversation import Message, MessageRole
from dialogue_engine.domain.model.llm import ProviderSelection
from dialogue_engine.domain.ports.llm_invoker_port import LLMInvocationRequest, LLMInvokerPort
from dialogue_engine.domain.ports.summarizer_port import SummarizerPort

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM_PROMPT = (
    "You compress conversation history. Write a concise summary of the conversation "
    "below that keeps user goals, decisions, facts, names, numbers and open questions. "
    "Write in the language of the conversation. Output only the summary."
)


class LLMSummarizer(SummarizerPort):
    """Summarizes a run of messages with a single-shot model call."""

    def __init__(self, llm_invoker: LLMInvokerPort, max_tokens: int = 500) -> None:
        self._llm = llm_invoker
        self._max_tokens = max_tokens

    async def summarize(
        self,
        messages: List[Message],
        selection: ProviderSelection,
        previous_summary: Optional[str] = None,
    ) -> str:
        transcript = self._render_transcript(messages, previous_summary)
        request = LLMInvocationRequest(
            messages=[
                {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
                {"role": "user", "content": transcript},
            ],
            model=selection.qualified_model_name,
            api_key=selection.provider.api_key,
            api_base=selection.provider.base_url,
            temperature=0.2,
            max_tokens=self._max_tokens,
        )
        result = await self._llm.invoke(request)
        logger.info(
            f"[Summarizer] Summarized {len(messages)} messages into "
            f"{result.output_tokens} tokens with {selection.qualified_model_name}"
        )
        return result.content.strip()

    @staticmethod
    def _render_transcript(messages: List[Message], previous_summary: Optional[str]) -> str:
        lines = []
        if previous_summary:
            lines.append(f"Earlier summary: {previous_summary}")
        for message in messages:
            if message.role == MessageRole.SUMMARY or not message.content:
                continue
            lines.append(f"{message.role.value}: {message.content}")
        return "\n".join(lines)
