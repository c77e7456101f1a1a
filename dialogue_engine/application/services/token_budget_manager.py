"""
Token Budget Manager - decides which prior messages stay in the prompt.

Strategies:
1. NONE: history unchanged
2. SLIDING_WINDOW: newest suffix that fits ``max_tokens``
3. SUMMARIZE: above ``summary_threshold``, the oldest contiguous run is
   replaced by one summary message placed first

The split is a pure function of (history, config). Summary text comes from
an external summarization call supplied by the caller.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from dialogue_engine.domain.model.conversation import Message, MessageRole
from dialogue_engine.domain.model.llm import TokenBudgetConfig, TokenBudgetStrategy

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4.0

# (messages to summarize, previous rolling summary) -> summary text
SummarizeFn = Callable[[List[Message], Optional[str]], Awaitable[str]]


def estimate_tokens(text: Optional[str]) -> int:
    """Rough token estimate for text that the model has not counted."""
    if not text:
        return 0
    return max(1, math.ceil(len(text) / CHARS_PER_TOKEN))


def order_messages(messages: Sequence[Message]) -> List[Message]:
    """
    Stable prompt order: summary first, then creation time, ties by id.
    """
    return sorted(messages, key=lambda m: (0 if m.is_summary() else 1, m.created_at, m.id))


def total_tokens(messages: Sequence[Message]) -> int:
    return sum(m.budget_tokens for m in messages)


@dataclass
class BudgetSplit:
    """Pure split decision: which messages stay and which get summarized."""

    retained: List[Message]
    to_summarize: List[Message] = field(default_factory=list)

    @property
    def needs_summary(self) -> bool:
        return bool(self.to_summarize)


@dataclass
class TokenBudgetResult:
    """Result of applying a strategy to a history."""

    retained: List[Message]
    strategy: TokenBudgetStrategy
    summary: Optional[Message] = None
    original_count: int = 0
    original_tokens: int = 0
    summarized_message_count: int = 0

    @property
    def was_compressed(self) -> bool:
        return len(self.retained) != self.original_count or self.summary is not None

    @property
    def retained_tokens(self) -> int:
        return total_tokens(self.retained)

    def to_event_data(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "was_compressed": self.was_compressed,
            "original_count": self.original_count,
            "retained_count": len(self.retained),
            "original_tokens": self.original_tokens,
            "retained_tokens": self.retained_tokens,
            "summarized_message_count": self.summarized_message_count,
        }


class TokenBudgetManager:
    """
    Applies a TokenBudgetConfig to an ordered message history.

    Usage:
        manager = TokenBudgetManager()
        result = await manager.apply(history, config, summarize=summarizer_fn)
        prompt_history = result.retained
    """

    def split(self, history: Sequence[Message], config: TokenBudgetConfig) -> BudgetSplit:
        ordered = order_messages(history)
        if config.strategy == TokenBudgetStrategy.SLIDING_WINDOW:
            return BudgetSplit(retained=self._sliding_window(ordered, config.max_tokens))
        if config.strategy == TokenBudgetStrategy.SUMMARIZE:
            return self._summarize_split(ordered, config)
        return BudgetSplit(retained=ordered)

    async def apply(
        self,
        history: Sequence[Message],
        config: TokenBudgetConfig,
        summarize: Optional[SummarizeFn] = None,
    ) -> TokenBudgetResult:
        split = self.split(history, config)
        result = TokenBudgetResult(
            retained=split.retained,
            strategy=config.strategy,
            original_count=len(history),
            original_tokens=total_tokens(history),
        )
        if not split.needs_summary:
            return result

        if summarize is None:
            # No summarizer wired: keep the full history rather than drop content
            logger.warning(
                "[TokenBudget] SUMMARIZE requested without a summarizer; history kept intact"
            )
            result.retained = order_messages(history)
            return result

        previous = next((m.content for m in split.to_summarize if m.is_summary()), None)
        text = await summarize(split.to_summarize, previous)
        result.summary = self._build_summary(split, text)
        result.summarized_message_count = len(split.to_summarize)
        logger.info(
            f"[TokenBudget] Summarized {len(split.to_summarize)} messages "
            f"({total_tokens(split.to_summarize)} tokens), "
            f"retained {len(split.retained)} ({total_tokens(split.retained)} tokens)"
        )
        return result

    @staticmethod
    def _sliding_window(ordered: List[Message], max_tokens: int) -> List[Message]:
        if not ordered:
            return []
        used = 0
        start = len(ordered)
        for index in range(len(ordered) - 1, -1, -1):
            tokens = ordered[index].budget_tokens
            if used + tokens > max_tokens:
                break
            used += tokens
            start = index
        if start == len(ordered):
            # the newest message alone exceeds the budget; never drop it
            start = len(ordered) - 1
        return ordered[start:]

    @staticmethod
    def _summarize_split(ordered: List[Message], config: TokenBudgetConfig) -> BudgetSplit:
        if len(ordered) < 2 or total_tokens(ordered) <= config.summary_threshold:
            return BudgetSplit(retained=ordered)

        budget = config.retain_budget
        remaining = total_tokens(ordered)
        cut = 0
        # smallest oldest prefix whose removal brings the rest under budget
        while cut < len(ordered) - 1 and remaining > budget:
            remaining -= ordered[cut].budget_tokens
            cut += 1
        return BudgetSplit(retained=ordered[cut:], to_summarize=ordered[:cut])

    @staticmethod
    def _build_summary(split: BudgetSplit, text: str) -> Message:
        first = split.to_summarize[0]
        tokens = estimate_tokens(text)
        return Message(
            session_id=first.session_id,
            role=MessageRole.SUMMARY,
            content=text,
            token_count=tokens,
            body_token_count=tokens,
            created_at=first.created_at,
            metadata={"summarized_message_ids": [m.id for m in split.to_summarize]},
        )
