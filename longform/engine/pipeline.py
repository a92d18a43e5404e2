#!/usr/bin/env python3
"""
pipeline.py – one chapter, start to finish.

    PLANNING ─► WRITING ─► EDITING ─┬─► CONTINUITY ─► PLANNING (more chapters)
                   ▲                │                └► COMPLETE
                   └── rejected ────┘

* WRITING   refusal-retry protocol, rewrite guard, expand loop, final scrub
* EDITING   structured review; forced approval once the cycle budget is spent
* CONTINUITY chapter summary, rolling summary, memory store, word-count check

The pipeline never touches session maps; `run_chapter` returns a
ChapterOutcome and the caller commits it.  Model-call failures propagate.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List

from longform.config import SessionConfig
from longform.engine.continuity import ChapterMeta, ContinuityTracker
from longform.engine.events import EventBus
from longform.engine.formatter import count_words, strip_expand_preamble
from longform.engine.token_budget import TokenBudget, estimate_tokens
from longform.generators import prompt_builders as pb
from longform.llm.client import LLMClient
from longform.memory import MemoryProvider, format_context
from longform.models import (
    ChapterContent,
    ChapterPlan,
    ChapterResult,
    DetailedChapterPlan,
    EditCycleRecord,
    EditResult,
    EventType,
    Outline,
)
from longform.utils.refusal import RefusalClassifier

logger = logging.getLogger(__name__)

# ─── limits ──────────────────────────────────────────────────────────────
MAX_REFUSAL_RETRIES = 3
MAX_EXPAND_ATTEMPTS = 3
MIN_SALVAGE_WORDS = 100      # smaller salvaged text is not worth keeping
FRESH_WRITE_BELOW = 50       # drafts this short are regenerated, not expanded
MIN_EXPAND_TOKENS = 4096


class Phase(Enum):
    PLANNING = "planning"
    WRITING = "writing"
    EDITING = "editing"
    CONTINUITY = "continuity"
    COMPLETE = "complete"


@dataclass(frozen=True)
class ChapterContext:
    """Read-only inputs for one chapter run."""

    outline: Outline
    plan: ChapterPlan
    rolling_summary: str = ""
    previous_chapter_ending: str = ""
    has_more: bool = False
    rewrite_feedback: str = ""
    previous_content: str = ""

    @property
    def number(self) -> int:
        return self.plan.number

    @property
    def target_words(self) -> int:
        return self.plan.target_words


@dataclass
class PipelineState:
    phase: Phase = Phase.PLANNING
    detailed_plan: DetailedChapterPlan | None = None
    memory_text: str = ""
    draft: str = ""
    rewrite_instructions: str = ""
    edit_count: int = 0
    history: List[EditCycleRecord] = field(default_factory=list)
    outcome: ChapterOutcome | None = None
    cost_mark: int = 0
    started: float = field(default_factory=time.monotonic)


@dataclass
class ChapterOutcome:
    result: ChapterResult
    rolling_summary: str
    previous_chapter_ending: str
    next_phase: Phase


def acceptable_minimum(target: int, tolerance: float, min_words: int = 0) -> int:
    return max(math.floor(target * (1 - tolerance)), min_words)


class ChapterPipeline:
    def __init__(
        self,
        config: SessionConfig,
        llm: LLMClient,
        events: EventBus,
        memory: MemoryProvider | None = None,
        classifier: RefusalClassifier | None = None,
    ) -> None:
        self.config = config
        self.llm = llm
        self.events = events
        self.memory = memory
        self.classifier = classifier or RefusalClassifier()
        self.budget = TokenBudget(config.max_input_tokens)
        self.tracker = ContinuityTracker(llm)

    # ------------------------------------------------------------------
    async def run_chapter(self, ctx: ChapterContext) -> ChapterOutcome:
        state = PipelineState(cost_mark=self.llm.ledger.mark())
        if ctx.rewrite_feedback:
            state.rewrite_instructions = ctx.rewrite_feedback
            state.draft = ctx.previous_content
        logger.info("=== Chapter %02d: %s ===", ctx.number, ctx.plan.title)

        while state.outcome is None:
            state.phase = await self.step(ctx, state)
        return state.outcome

    async def step(self, ctx: ChapterContext, state: PipelineState) -> Phase:
        """Run the current phase and return the next one."""
        match state.phase:
            case Phase.PLANNING:
                await self._plan(ctx, state)
                return Phase.WRITING
            case Phase.WRITING:
                await self._write(ctx, state)
                return Phase.EDITING if self.config.max_edit_cycles > 0 else Phase.CONTINUITY
            case Phase.EDITING:
                approved = await self._edit(ctx, state)
                return Phase.CONTINUITY if approved else Phase.WRITING
            case Phase.CONTINUITY:
                await self._continuity(ctx, state)
                return state.outcome.next_phase
            case Phase.COMPLETE:
                return Phase.COMPLETE

    # ─── planning ────────────────────────────────────────────────────
    async def _plan(self, ctx: ChapterContext, state: PipelineState) -> None:
        self.events.emit(EventType.CHAPTER_STARTED, ctx.number,
                         title=ctx.plan.title, target_words=ctx.target_words)
        state.memory_text = await self._memory_text(ctx)
        state.detailed_plan = await self.llm.structured(
            "planning",
            pb.chapter_plan_prompt(self.config, ctx.outline, ctx.plan, ctx.rolling_summary, state.memory_text),
            DetailedChapterPlan,
            step="planning",
        )
        self.events.emit(EventType.CHAPTER_PLAN_GENERATED, ctx.number,
                         scenes=len(state.detailed_plan.scenes))

    async def _memory_text(self, ctx: ChapterContext) -> str:
        if self.memory is None:
            return ""
        try:
            found = await self.memory.relevant_context(f"{ctx.plan.title}: {ctx.plan.summary}", ctx.number)
        except Exception as exc:
            logger.warning("Memory lookup for chapter %d failed: %s", ctx.number, exc)
            return ""
        return format_context(found)

    # ─── writing ─────────────────────────────────────────────────────
    async def _write(self, ctx: ChapterContext, state: PipelineState) -> None:
        system = pb.writer_system(self.config)
        assembled = self.budget.assemble_writer_context(
            pb.format_detailed_plan(state.detailed_plan),
            rolling_summary=ctx.rolling_summary,
            previous_chapter_ending=ctx.previous_chapter_ending,
            memory_context=state.memory_text,
            system_prompt_tokens=estimate_tokens(system),
        )
        if assembled.dropped:
            self.events.emit(EventType.CONTEXT_TRIMMED, ctx.number,
                             dropped=assembled.dropped, total_tokens=assembled.total_tokens)
        writer_prompt = pb.writer_prompt(
            self.config, assembled.text, ctx.number, ctx.plan.title, ctx.target_words
        )

        previous = state.draft
        prompt = writer_prompt
        if state.rewrite_instructions:
            reference = previous if count_words(previous) > MIN_SALVAGE_WORDS else ""
            prompt += pb.rewrite_block(state.rewrite_instructions, reference)

        draft = await self.generate_with_refusal_retry(ctx.number, prompt, system)
        if previous and state.rewrite_instructions and count_words(draft) < count_words(previous) / 2:
            logger.warning("Chapter %d rewrite shrank to %d words (was %d); keeping previous draft",
                           ctx.number, count_words(draft), count_words(previous))
            draft = previous
        self.events.emit(EventType.CHAPTER_WRITTEN, ctx.number,
                         word_count=count_words(draft), cycle=state.edit_count + 1)

        draft = await self.expand_loop(ctx.number, draft, ctx.target_words, writer_prompt, system)
        state.draft = self.classifier.scrub(draft)

    async def generate_with_refusal_retry(self, number: int, prompt: str, system: str) -> str:
        """
        Attempt 0 plus up to MAX_REFUSAL_RETRIES escalating retries.

        Returns the first non-refusal text.  When every attempt refuses, the
        longest clean salvage of at least MIN_SALVAGE_WORDS words is used,
        otherwise "" (the expand loop then regenerates from scratch).
        """
        best = ""
        for attempt in range(MAX_REFUSAL_RETRIES + 1):
            p = prompt if attempt == 0 else prompt + pb.ANTI_REFUSAL_SUFFIXES[attempt - 1]
            raw = await self.llm.text("writing", p, step="writing", system=system)
            verdict = self.classifier.classify(raw)
            if not verdict.is_refusal:
                return verdict.salvaged

            salvaged_words = count_words(verdict.salvaged)
            self.events.emit(EventType.REFUSAL_DETECTED, number,
                             attempt=attempt + 1, salvaged_words=salvaged_words)
            logger.warning("Chapter %d: refusal on attempt %d (salvageable %d words)",
                           number, attempt + 1, salvaged_words)
            if (salvaged_words > count_words(best)
                    and not self.classifier.classify(verdict.salvaged).is_refusal):
                best = verdict.salvaged

        if count_words(best) >= MIN_SALVAGE_WORDS:
            logger.info("Chapter %d: using best salvaged text (%d words)", number, count_words(best))
            return best
        logger.error("Chapter %d: every attempt refused and nothing usable was salvaged", number)
        return ""

    async def expand_loop(
        self, number: int, draft: str, target: int, writer_prompt: str, system: str
    ) -> str:
        """Grow *draft* toward *target*; never returns fewer words than it was given."""
        minimum = math.floor(target * (1 - self.config.tolerance))
        attempts = 0
        while count_words(draft) < minimum and attempts < MAX_EXPAND_ATTEMPTS:
            attempts += 1
            current = count_words(draft)
            self.events.emit(EventType.EXPAND_ATTEMPT, number,
                             attempt=attempts, current_words=current, target_words=target)

            if current < FRESH_WRITE_BELOW:
                raw = await self.llm.text("writing", writer_prompt, step="writing", system=system)
            else:
                raw = await self.llm.text(
                    "writing",
                    pb.expand_prompt(self.config, draft, current, target),
                    step="writing",
                    system=system,
                    max_tokens=max(2 * (target - current), MIN_EXPAND_TOKENS),
                )

            verdict = self.classifier.classify(raw)
            candidate = verdict.salvaged
            if verdict.is_refusal and (
                count_words(candidate) < MIN_SALVAGE_WORDS
                or self.classifier.classify(candidate).is_refusal
            ):
                logger.warning("Chapter %d: expand attempt %d refused", number, attempts)
                continue

            candidate = strip_expand_preamble(candidate)
            if count_words(candidate) <= current:
                logger.info("Chapter %d: expansion did not grow the text (%d → %d); stopping",
                            number, current, count_words(candidate))
                break
            draft = candidate
            logger.info("Chapter %d expanded %d → %d words", number, current, count_words(draft))
        return draft

    # ─── editing ─────────────────────────────────────────────────────
    async def _edit(self, ctx: ChapterContext, state: PipelineState) -> bool:
        review = await self.llm.structured(
            "editing",
            pb.editor_prompt(self.config, state.detailed_plan, state.draft, ctx.target_words),
            EditResult,
            step="editing",
            system=pb.editor_system(self.config),
        )
        state.edit_count += 1
        passed = review.scores.overall >= self.config.approval_score
        forced = not passed and state.edit_count >= self.config.max_edit_cycles
        feedback = None
        if not passed:
            feedback = review.rewrite_instructions or "\n".join(review.edit_notes)

        state.history.append(EditCycleRecord(
            cycle=state.edit_count,
            scores=review.scores,
            approved=passed or forced,
            forced=forced,
            feedback=feedback,
        ))
        self.events.emit(EventType.EDIT_CYCLE, ctx.number,
                         cycle=state.edit_count, scores=review.scores.model_dump(),
                         approved=passed or forced, forced=forced)

        if forced:
            logger.warning("Chapter %d force-approved at %d/10 after %d edit cycles",
                           ctx.number, review.scores.overall, state.edit_count)
        elif not passed:
            state.rewrite_instructions = feedback or ""
        return passed or forced

    # ─── continuity ──────────────────────────────────────────────────
    async def _continuity(self, ctx: ChapterContext, state: PipelineState) -> None:
        text = state.draft
        words = count_words(text)
        summary = await self.tracker.summarize_chapter(text, ctx.number)
        chapter = ChapterContent(
            number=ctx.number,
            title=ctx.plan.title,
            content=text,
            word_count=words,
            summary=summary,
            edit_count=state.edit_count,
            approved=True,
        )
        update = await self.tracker.update(
            ctx.rolling_summary, text, ChapterMeta(ctx.number, ctx.plan.title)
        )
        await self._store_memory(chapter)

        minimum = acceptable_minimum(ctx.target_words, self.config.tolerance, self.config.min_words)
        if words < minimum:
            logger.warning("Chapter %d has %d words (minimum %d, target %d)",
                           ctx.number, words, minimum, ctx.target_words)
            self.events.emit(EventType.WORD_COUNT_WARNING, ctx.number,
                             word_count=words, minimum=minimum, target_words=ctx.target_words)

        cost = self.llm.ledger.total_since(state.cost_mark)
        elapsed_ms = int((time.monotonic() - state.started) * 1000)
        result = ChapterResult(
            chapter=chapter,
            target_words=ctx.target_words,
            meets_target=words >= minimum,
            edit_history=list(state.history),
            cost_for_chapter=cost,
            generation_time_ms=elapsed_ms,
        )
        self.events.emit(EventType.CHAPTER_COMPLETE, ctx.number,
                         word_count=words, edit_cycles=state.edit_count, cost=cost)
        logger.info("Chapter %d complete: %d words, %d edit cycles, $%.4f",
                    ctx.number, words, state.edit_count, cost)

        state.outcome = ChapterOutcome(
            result=result,
            rolling_summary=update.summary,
            previous_chapter_ending=update.previous_chapter_ending,
            next_phase=Phase.PLANNING if ctx.has_more else Phase.COMPLETE,
        )

    async def _store_memory(self, chapter: ChapterContent) -> None:
        if self.memory is None:
            return
        try:
            await self.memory.store_chapter(
                chapter.number, chapter.content, chapter.summary,
                {"title": chapter.title, "word_count": chapter.word_count},
            )
        except Exception as exc:
            logger.warning("Memory store for chapter %d failed: %s", chapter.number, exc)

    # ─── standalone expansion (BookSession.expand_chapter) ───────────
    async def expand_existing(self, chapter: ChapterContent, target: int) -> str:
        system = pb.writer_system(self.config)
        writer_prompt = pb.writer_prompt(
            self.config, chapter.summary or chapter.title, chapter.number, chapter.title, target
        )
        text = await self.expand_loop(chapter.number, chapter.content, target, writer_prompt, system)
        return self.classifier.scrub(text)
