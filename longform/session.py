"""
Interactive book session.

    session = BookSession(config, OpenAIGenerator())
    await session.generate_outline()
    await session.update_outline(OutlineChanges(remove_chapters=[2]))
    session.approve_outline()
    async for result in session.generate_all_remaining():
        ...
    book = session.export()

The session is the single writer of its state maps; every getter hands
out copies.  Chapter work goes through the one ChapterPipeline.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Awaitable, Callable, Dict, List

from longform.config import SessionConfig
from longform.engine.costs import CostLedger, estimate_cost
from longform.engine.events import EventBus, Handler
from longform.engine.formatter import count_words
from longform.engine.pipeline import ChapterContext, ChapterPipeline, acceptable_minimum
from longform.errors import (
    ChapterGenerationError,
    ChapterNotFoundError,
    ConfigurationError,
    OutlineEditError,
    OutlineMissingError,
    OutlineNotApprovedError,
    SessionNotFoundError,
    SessionStateError,
)
from longform.generators import prompt_builders as pb
from longform.llm.base import TextGenerator
from longform.llm.client import LLMClient
from longform.llm.registry import ModelRegistry
from longform.memory import MemoryProvider
from longform.models import (
    Book,
    BookMetadata,
    ChapterContent,
    ChapterPlan,
    ChapterResult,
    ChapterStatus,
    CharacterProfile,
    CostEstimate,
    EditCycleRecord,
    EventType,
    Outline,
    OutlineChanges,
    SessionPhase,
    SessionProgress,
    SessionState,
)
from longform.storage import MemorySessionStorage, SessionStorage

logger = logging.getLogger(__name__)

ChapterCallback = Callable[[ChapterResult], Awaitable[None] | None]


# ─── structural outline edits ────────────────────────────────────────────
@dataclass
class _Slot:
    plan: ChapterPlan
    origin: int | None        # pre-edit number; None for added chapters
    fresh: bool = False       # content must be regenerated (added or merged)


def apply_outline_changes(
    outline: Outline, changes: OutlineChanges, default_words: int
) -> tuple[Outline, List[_Slot]]:
    """
    Apply *changes* to a copy of *outline*.

    All chapter numbers in *changes* refer to the numbering before the edit.
    Order: remove → update → merge → reorder → add → renumber 1..N.
    Returns the new outline and, per new position, the slot it came from.
    """
    slots = [_Slot(ch.model_copy(deep=True), ch.number) for ch in outline.chapters]
    known = {s.origin for s in slots}

    def find(number: int, action: str) -> _Slot:
        for s in slots:
            if s.origin == number:
                return s
        if number in known:
            raise OutlineEditError(f"Cannot {action} chapter {number}: it was removed or merged")
        raise OutlineEditError(f"Cannot {action} chapter {number}: not in the outline")

    for number in changes.remove_chapters:
        if number not in known:
            raise OutlineEditError(f"Cannot remove chapter {number}: not in the outline")
    slots = [s for s in slots if s.origin not in set(changes.remove_chapters)]

    for upd in changes.update_chapter:
        slot = find(upd.number, "update")
        fields = upd.model_dump(exclude={"number"}, exclude_none=True)
        slot.plan = slot.plan.model_copy(update=fields)

    for merge in changes.merge_chapters:
        a, b = merge.chapters
        if a == b:
            raise OutlineEditError(f"Cannot merge chapter {a} with itself")
        first, second = find(a, "merge"), find(b, "merge")
        first.plan = first.plan.model_copy(update={
            "title": merge.new_title,
            "summary": f"{first.plan.summary} {second.plan.summary}".strip(),
            "target_words": first.plan.target_words + second.plan.target_words,
            "key_events": first.plan.key_events + second.plan.key_events,
            "characters": list(dict.fromkeys(first.plan.characters + second.plan.characters)),
        })
        first.fresh = True
        slots.remove(second)

    if changes.reorder_chapters is not None:
        surviving = sorted(s.origin for s in slots)
        if sorted(changes.reorder_chapters) != surviving:
            raise OutlineEditError(
                f"reorder_chapters must list each remaining chapter exactly once: {surviving}"
            )
        by_origin = {s.origin: s for s in slots}
        slots = [by_origin[n] for n in changes.reorder_chapters]

    inserted_after: Dict[int, int] = {}
    for add in changes.add_chapter:
        new = _Slot(
            ChapterPlan(
                number=1,
                title=add.title,
                summary=add.summary,
                target_words=add.target_words or default_words,
            ),
            origin=None,
            fresh=True,
        )
        if add.after_chapter == 0:
            anchor = -1
        else:
            anchor = next((i for i, s in enumerate(slots) if s.origin == add.after_chapter), None)
        if anchor is None:
            slots.append(new)
            continue
        offset = inserted_after.get(add.after_chapter, 0)
        slots.insert(anchor + 1 + offset, new)
        inserted_after[add.after_chapter] = offset + 1

    if not slots:
        raise OutlineEditError("An outline must keep at least one chapter")

    for i, s in enumerate(slots, 1):
        s.plan = s.plan.model_copy(update={"number": i})

    updated = outline.model_copy(deep=True, update={"chapters": [s.plan for s in slots]})
    updated = _apply_character_changes(updated, changes)
    if changes.synopsis is not None:
        updated.synopsis = changes.synopsis
    if changes.themes is not None:
        updated.themes = list(changes.themes)
    if changes.target_audience is not None:
        updated.target_audience = changes.target_audience
    return updated, slots


def _apply_character_changes(outline: Outline, changes: OutlineChanges) -> Outline:
    chars = [c for c in outline.characters if c.name not in set(changes.remove_characters)]
    for upd in changes.update_character:
        idx = next((i for i, c in enumerate(chars) if c.name == upd.name), None)
        if idx is None:
            raise OutlineEditError(f'Cannot update character "{upd.name}": not in the outline')
        chars[idx] = CharacterProfile.model_validate({**chars[idx].model_dump(), **upd.changes})
    chars.extend(c.model_copy() for c in changes.add_character)
    outline.characters = chars
    return outline


# ─── session ─────────────────────────────────────────────────────────────
class BookSession:
    def __init__(
        self,
        config: SessionConfig,
        generator: TextGenerator,
        memory: MemoryProvider | None = None,
        storage: SessionStorage | None = None,
        session_id: str | None = None,
    ) -> None:
        self.config = config
        self.storage = storage or MemorySessionStorage()
        self.events = EventBus()
        self.ledger = CostLedger()
        self.registry = ModelRegistry(config.resolved_models())
        self.llm = LLMClient(generator, self.registry, self.ledger)
        self.pipeline = ChapterPipeline(config, self.llm, self.events, memory)
        self._state = SessionState(id=session_id or uuid.uuid4().hex)

    @property
    def id(self) -> str:
        return self._state.id

    def on(self, event: EventType | str, handler: Handler) -> None:
        self.events.on(event, handler)

    def on_any(self, handler: Handler) -> None:
        self.events.on_any(handler)

    # ─── outline ─────────────────────────────────────────────────────
    def _default_chapter_words(self) -> int:
        if self.config.word_config:
            return self.config.word_config.default_words
        return self.config.target_words // self.config.chapters

    def _apply_word_config(self, outline: Outline) -> Outline:
        wc = self.config.word_config
        if wc is None:
            return outline
        chapters = [ch.model_copy(update={"target_words": wc.target_for(ch.number)}) for ch in outline.chapters]
        return outline.model_copy(update={"chapters": chapters})

    def _set_outline(self, outline: Outline) -> Outline:
        s = self._state
        s.outline = self._apply_word_config(outline)
        s.outline_approved = False
        s.chapters = {}
        s.edit_histories = {}
        s.rolling_summary = ""
        s.previous_chapter_ending = ""
        s.chapter_statuses = {ch.number: ChapterStatus.PENDING for ch in s.outline.chapters}
        s.phase = SessionPhase.OUTLINE
        self.events.emit(EventType.OUTLINE_GENERATED,
                         title=s.outline.title, chapters=len(s.outline.chapters))
        return self.get_outline()

    async def generate_outline(self) -> Outline:
        outline = await self.llm.structured(
            "outline",
            pb.outline_prompt(self.config),
            Outline,
            step="outline",
            system=pb.outline_system(self.config),
        )
        return self._set_outline(outline)

    async def regenerate_outline(self, feedback: str = "") -> Outline:
        """New outline from scratch; previous chapters and approval are discarded."""
        current = self._require_outline("regenerate")
        prompt = (pb.regenerate_outline_prompt(self.config, current, feedback)
                  if feedback else pb.outline_prompt(self.config))
        outline = await self.llm.structured(
            "outline", prompt, Outline, step="outline_regenerate", system=pb.outline_system(self.config)
        )
        return self._set_outline(outline)

    async def update_outline(self, changes: OutlineChanges) -> Outline:
        s = self._state
        outline = self._require_outline("update")
        updated, slots = apply_outline_changes(outline, changes, self._default_chapter_words())

        chapters: Dict[int, ChapterContent] = {}
        statuses: Dict[int, ChapterStatus] = {}
        histories: Dict[int, List[EditCycleRecord]] = {}
        for number, slot in enumerate(slots, 1):
            statuses[number] = ChapterStatus.PENDING
            if slot.fresh or slot.origin is None:
                continue
            statuses[number] = s.chapter_statuses.get(slot.origin, ChapterStatus.PENDING)
            if slot.origin in s.chapters:
                chapters[number] = s.chapters[slot.origin].model_copy(update={"number": number})
            if slot.origin in s.edit_histories:
                histories[number] = s.edit_histories[slot.origin]

        s.outline, s.chapters, s.chapter_statuses, s.edit_histories = updated, chapters, statuses, histories
        self._refresh_phase()
        logger.info("Outline updated: %d chapters", len(updated.chapters))
        return self.get_outline()

    def approve_outline(self) -> None:
        self._require_outline("approve")
        self._state.outline_approved = True
        self._state.phase = SessionPhase.WRITING
        self._refresh_phase()
        self.events.emit(EventType.OUTLINE_APPROVED)

    # ─── chapters ────────────────────────────────────────────────────
    def _require_outline(self, action: str) -> Outline:
        if self._state.outline is None:
            raise OutlineMissingError(action)
        return self._state.outline

    def _require_approved(self) -> Outline:
        outline = self._require_outline("continue")
        if not self._state.outline_approved:
            raise OutlineNotApprovedError()
        return outline

    def _plan_for(self, number: int) -> ChapterPlan:
        for ch in self._require_outline("continue").chapters:
            if ch.number == number:
                return ch
        raise ChapterNotFoundError(f"Chapter {number} not found in outline.")

    def _next_pending(self) -> int | None:
        """First chapter in outline order that is pending or failed."""
        retryable = (ChapterStatus.PENDING, ChapterStatus.FAILED)
        for ch in self._state.outline.chapters:
            if self._state.chapter_statuses.get(ch.number, ChapterStatus.PENDING) in retryable:
                return ch.number
        return None

    def _has_more(self, number: int) -> bool:
        return any(
            self._state.chapter_statuses.get(ch.number) != ChapterStatus.APPROVED
            for ch in self._state.outline.chapters
            if ch.number != number
        )

    def _refresh_phase(self) -> None:
        s = self._state
        if not s.outline_approved:
            s.phase = SessionPhase.OUTLINE
        elif s.outline and all(
            s.chapter_statuses.get(ch.number) == ChapterStatus.APPROVED for ch in s.outline.chapters
        ):
            s.phase = SessionPhase.COMPLETE
        else:
            s.phase = SessionPhase.WRITING

    def _fail(self, number: int, exc: Exception, status: ChapterStatus) -> None:
        self._state.chapter_statuses[number] = status
        self.events.emit(EventType.CHAPTER_FAILED, number, error=str(exc), can_retry=True)
        logger.error("Chapter %d failed: %s", number, exc)

    async def _run(self, plan: ChapterPlan, feedback: str = "") -> ChapterResult:
        s = self._state
        existing = s.chapters.get(plan.number)
        ctx = ChapterContext(
            outline=s.outline,
            plan=plan,
            rolling_summary=s.rolling_summary,
            previous_chapter_ending=s.previous_chapter_ending,
            has_more=self._has_more(plan.number),
            rewrite_feedback=feedback,
            previous_content=existing.content if existing else "",
        )
        previous = s.chapter_statuses.get(plan.number, ChapterStatus.PENDING)
        s.chapter_statuses[plan.number] = ChapterStatus.GENERATING
        try:
            outcome = await self.pipeline.run_chapter(ctx)
        except asyncio.CancelledError:
            s.chapter_statuses[plan.number] = previous
            logger.warning("Chapter %d cancelled", plan.number)
            raise
        except ConfigurationError as exc:
            self._fail(plan.number, exc, ChapterStatus.FAILED)
            raise
        except Exception as exc:
            self._fail(plan.number, exc, ChapterStatus.FAILED)
            raise ChapterGenerationError(plan.number, str(exc)) from exc

        result = outcome.result
        s.chapters[plan.number] = result.chapter
        s.chapter_statuses[plan.number] = ChapterStatus.APPROVED
        s.edit_histories[plan.number] = list(result.edit_history)
        s.rolling_summary = outcome.rolling_summary
        s.previous_chapter_ending = outcome.previous_chapter_ending
        self._refresh_phase()
        return result

    async def generate_chapter(self, number: int | None = None) -> ChapterResult:
        self._require_approved()
        if number is None:
            number = self._next_pending()
            if number is None:
                raise SessionStateError("No pending chapters to generate.")
        return await self._run(self._plan_for(number))

    async def generate_all_remaining(
        self, on_chapter: ChapterCallback | None = None
    ) -> AsyncIterator[ChapterResult]:
        """
        Generate every pending chapter in outline order.

        A failed chapter is recorded (status ``failed`` + ``chapter_failed``)
        and iteration moves on; stop consuming to stop between chapters.
        """
        outline = self._require_approved()
        for ch in list(outline.chapters):
            if self._state.chapter_statuses.get(ch.number) in (ChapterStatus.APPROVED, ChapterStatus.FAILED):
                continue
            try:
                result = await self._run(ch)
            except ChapterGenerationError:
                continue
            if on_chapter is not None:
                maybe = on_chapter(result)
                if maybe is not None:
                    await maybe
            yield result

    async def rewrite_chapter(self, number: int, feedback: str) -> ChapterResult:
        self._require_approved()
        return await self._run(self._plan_for(number), feedback=feedback or "Rewrite this chapter.")

    async def expand_chapter(self, number: int, target_words: int | None = None) -> ChapterResult:
        self._require_approved()
        plan = self._plan_for(number)
        existing = self._state.chapters.get(number)
        if existing is None:
            raise ChapterNotFoundError(f"Chapter {number} has not been generated yet.")

        target = target_words or plan.target_words
        mark, started = self.ledger.mark(), time.monotonic()
        previous = self._state.chapter_statuses.get(number, ChapterStatus.APPROVED)
        self._state.chapter_statuses[number] = ChapterStatus.GENERATING
        try:
            text = await self.pipeline.expand_existing(existing, target)
            summary = await self.pipeline.tracker.summarize_chapter(text, number)
        except asyncio.CancelledError:
            self._state.chapter_statuses[number] = previous
            raise
        except Exception as exc:
            self._fail(number, exc, previous)
            raise ChapterGenerationError(number, str(exc)) from exc

        words = count_words(text)
        chapter = existing.model_copy(update={"content": text, "word_count": words, "summary": summary})
        self._state.chapters[number] = chapter
        self._state.chapter_statuses[number] = previous
        minimum = acceptable_minimum(target, self.config.tolerance, self.config.min_words)
        return ChapterResult(
            chapter=chapter,
            target_words=target,
            meets_target=words >= minimum,
            edit_history=[],
            cost_for_chapter=self.ledger.total_since(mark),
            generation_time_ms=int((time.monotonic() - started) * 1000),
        )

    # ─── inspection ──────────────────────────────────────────────────
    def get_outline(self) -> Outline | None:
        o = self._state.outline
        return o.model_copy(deep=True) if o else None

    def get_chapter(self, number: int) -> ChapterContent | None:
        return self._state.chapters.get(number)

    def get_chapter_status(self, number: int) -> ChapterStatus:
        return self._state.chapter_statuses.get(number, ChapterStatus.PENDING)

    def get_edit_history(self, number: int) -> List[EditCycleRecord]:
        return list(self._state.edit_histories.get(number, []))

    def get_progress(self) -> SessionProgress:
        s = self._state
        total = len(s.outline.chapters) if s.outline else 0
        done = [c for c in s.chapters.values() if s.chapter_statuses.get(c.number) == ChapterStatus.APPROVED]
        total_cost = self.ledger.total
        avg = total_cost / len(done) if done else 0.0
        return SessionProgress(
            phase=s.phase,
            outline_approved=s.outline_approved,
            total_chapters=total,
            chapters_completed=len(done),
            chapter_statuses=dict(s.chapter_statuses),
            total_words=sum(c.word_count for c in done),
            total_cost=total_cost,
            estimated_remaining_cost=round(avg * max(total - len(done), 0), 6),
        )

    def estimate_cost(self) -> CostEstimate:
        return estimate_cost(self.config)

    # ─── persistence ─────────────────────────────────────────────────
    def snapshot(self) -> SessionState:
        return self._state.model_copy(deep=True, update={"costs": self.ledger.entries})

    async def save(self, storage: SessionStorage | None = None) -> str:
        store = storage or self.storage
        await store.save(self.id, self.snapshot().model_dump_json())
        self.events.emit(EventType.SESSION_SAVED, session_id=self.id)
        return self.id

    @classmethod
    async def restore(
        cls,
        session_id: str,
        config: SessionConfig,
        generator: TextGenerator,
        storage: SessionStorage,
        memory: MemoryProvider | None = None,
    ) -> "BookSession":
        blob = await storage.load(session_id)
        if blob is None:
            raise SessionNotFoundError(f"Session {session_id} not found.")
        state = SessionState.model_validate_json(blob)
        session = cls(config, generator, memory=memory, storage=storage, session_id=state.id)
        session._state = state
        session.ledger = CostLedger(state.costs)
        session.llm.ledger = session.ledger
        return session

    # ─── export ──────────────────────────────────────────────────────
    def export(self) -> Book:
        s = self._state
        outline = self._require_outline("export")
        chapters = [
            s.chapters[ch.number]
            for ch in outline.chapters
            if ch.number in s.chapters and s.chapter_statuses.get(ch.number) == ChapterStatus.APPROVED
        ]
        return Book(
            title=outline.title,
            outline=outline.model_copy(deep=True),
            chapters=chapters,
            total_words=sum(c.word_count for c in chapters),
            total_cost=self.ledger.total,
            metadata=BookMetadata(
                content_type=self.config.content_type,
                generated_at=datetime.now(timezone.utc),
                models=self.registry.model_ids(),
                session_id=self.id,
            ),
        )
