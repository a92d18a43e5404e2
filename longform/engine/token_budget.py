"""
Priority-based context packing for writer prompts.

Token counts are a chars/4 heuristic; good enough to stay well clear of the
context window without pulling in a tokenizer per provider.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, List

logger = logging.getLogger(__name__)

# writer-context priorities
PRIORITY_CHAPTER_PLAN = 100
PRIORITY_PREVIOUS_ENDING = 80
PRIORITY_ROLLING_SUMMARY = 60
PRIORITY_MEMORY = 40


@dataclass
class ContextItem:
    key: str
    content: str
    priority: int
    required: bool = False


@dataclass
class AssembledContext:
    text: str
    total_tokens: int
    included: List[str] = field(default_factory=list)
    dropped: List[str] = field(default_factory=list)


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


class TokenBudget:
    def __init__(self, max_input_tokens: int = 128_000) -> None:
        self.max_input_tokens = max_input_tokens

    def pack(self, items: Iterable[ContextItem], budget: int) -> AssembledContext:
        """
        Required items go in unconditionally (they alone may exceed *budget*).
        Optional items follow in descending priority and are dropped whole
        once they no longer fit.
        """
        items = list(items)
        required = sorted((i for i in items if i.required), key=lambda i: -i.priority)
        optional = sorted((i for i in items if not i.required), key=lambda i: -i.priority)

        parts: List[str] = []
        included: List[str] = []
        dropped: List[str] = []
        used = 0

        for item in required:
            parts.append(item.content)
            included.append(item.key)
            used += estimate_tokens(item.content)

        for item in optional:
            cost = estimate_tokens(item.content)
            if used + cost <= budget:
                parts.append(item.content)
                included.append(item.key)
                used += cost
            else:
                dropped.append(item.key)

        if used > budget:
            logger.warning("Required context alone is %d tokens (budget %d)", used, budget)
        return AssembledContext("\n\n".join(parts), used, included, dropped)

    def assemble_writer_context(
        self,
        plan: str,
        rolling_summary: str = "",
        previous_chapter_ending: str = "",
        memory_context: str = "",
        system_prompt_tokens: int = 0,
    ) -> AssembledContext:
        items = [ContextItem("chapter_plan", plan, PRIORITY_CHAPTER_PLAN, required=True)]
        if previous_chapter_ending:
            items.append(ContextItem(
                "previous_chapter_ending",
                f"**End of Previous Chapter (for continuity):**\n{previous_chapter_ending}",
                PRIORITY_PREVIOUS_ENDING,
            ))
        if rolling_summary:
            items.append(ContextItem(
                "rolling_summary", f"**Story So Far:**\n{rolling_summary}", PRIORITY_ROLLING_SUMMARY
            ))
        if memory_context:
            items.append(ContextItem("memory_context", memory_context, PRIORITY_MEMORY))
        return self.pack(items, self.max_input_tokens - system_prompt_tokens)
