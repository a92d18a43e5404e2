"""
Optional long-term memory collaborator.

The engine only asks two things of a memory backend: give me context
relevant to this chapter, and remember this finished chapter.  Both are
best effort; a failing backend is logged and ignored by the pipeline.
"""

from __future__ import annotations

from typing import Any, Dict, Protocol

from longform.models import RelevantContext


class MemoryProvider(Protocol):
    async def relevant_context(self, query: str, chapter: int) -> RelevantContext: ...

    async def store_chapter(
        self, chapter: int, content: str, summary: str, metadata: Dict[str, Any]
    ) -> None: ...


class NoOpMemoryProvider:
    async def relevant_context(self, query: str, chapter: int) -> RelevantContext:
        return RelevantContext()

    async def store_chapter(
        self, chapter: int, content: str, summary: str, metadata: Dict[str, Any]
    ) -> None:
        return None


def format_context(ctx: RelevantContext) -> str:
    """Render retrieved memory as a prompt block; "" when there is nothing."""
    blocks = []
    if ctx.character_states:
        lines = []
        for c in ctx.character_states:
            bits = [f"last seen ch. {c.last_seen_chapter}"]
            if not c.alive:
                bits.append("DECEASED")
            if c.location:
                bits.append(f"at {c.location}")
            if c.emotional_state:
                bits.append(c.emotional_state)
            lines.append(f"- {c.name}: " + ", ".join(bits))
        blocks.append("**Character States:**\n" + "\n".join(lines))
    if ctx.recent_events:
        blocks.append("**Recent Events:**\n" + "\n".join(
            f"- Ch. {e.chapter}: {e.event}" for e in ctx.recent_events
        ))
    if ctx.passages:
        blocks.append("**Relevant Passages:**\n" + "\n\n".join(
            f"(Ch. {p.chapter}) {p.text}" for p in ctx.passages
        ))
    return "\n\n".join(blocks)
