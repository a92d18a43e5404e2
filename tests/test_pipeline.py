# tests/test_pipeline.py
import asyncio

import pytest

from longform.engine.formatter import count_words
from longform.engine.pipeline import ChapterContext, ChapterPipeline, Phase, PipelineState
from longform.errors import GenerationError
from longform.generators.prompt_builders import ANTI_REFUSAL_SUFFIXES
from longform.models import EventType, RelevantContext

from fakes import edit, make_config, make_detailed_plan, make_outline, prose, refusal


def ctx_for(target=1000, **kw):
    outline = make_outline(target_words=target)
    return ChapterContext(outline=outline, plan=outline.chapters[0], **kw)


def types(events):
    return [e.type for e in events]


# ─── refusal retry ───────────────────────────────────────────────────────
def test_all_refusals_use_longest_clean_salvage(gen, pipeline, events):
    gen.queue_text("m-writing", refusal(40), refusal(80), refusal(150), refusal(60))
    text = asyncio.run(pipeline.generate_with_refusal_retry(1, "PROMPT", "SYS"))

    assert count_words(text) == 150
    assert types(events).count(EventType.REFUSAL_DETECTED) == 4
    calls = gen.calls_to("m-writing")
    assert calls[0].prompt == "PROMPT"
    assert [c.prompt[len("PROMPT"):] for c in calls[1:]] == list(ANTI_REFUSAL_SUFFIXES)


def test_all_refusals_without_usable_salvage_give_empty_draft(gen, pipeline):
    gen.queue_text("m-writing", *[refusal(40)] * 4)
    assert asyncio.run(pipeline.generate_with_refusal_retry(1, "PROMPT", "SYS")) == ""


def test_retry_returns_first_clean_answer(gen, pipeline, events):
    gen.queue_text("m-writing", refusal(), prose(500))
    text = asyncio.run(pipeline.generate_with_refusal_retry(1, "PROMPT", "SYS"))
    assert count_words(text) == 500
    assert types(events).count(EventType.REFUSAL_DETECTED) == 1


# ─── expand loop ─────────────────────────────────────────────────────────
def test_expand_stops_once_within_tolerance(gen, pipeline, events):
    gen.queue_text("m-writing", prose(900))
    text = asyncio.run(pipeline.expand_loop(1, prose(400), 1000, "WRITER", "SYS"))

    assert count_words(text) == 900
    calls = gen.calls_to("m-writing")
    assert len(calls) == 1
    assert calls[0].max_tokens == 4096
    assert types(events) == [EventType.EXPAND_ATTEMPT]
    assert events[0].data["current_words"] == 400


def test_expand_max_tokens_scale_with_deficit(gen, pipeline):
    gen.queue_text("m-writing", prose(9000))
    asyncio.run(pipeline.expand_loop(1, prose(1000), 5000, "WRITER", "SYS"))
    assert gen.calls_to("m-writing")[0].max_tokens == 8000


def test_expand_never_regresses(gen, pipeline):
    gen.queue_text("m-writing", prose(200))
    text = asyncio.run(pipeline.expand_loop(1, prose(300), 1000, "WRITER", "SYS"))
    assert count_words(text) == 300
    assert len(gen.calls_to("m-writing")) == 1


def test_expand_refusal_burns_an_attempt(gen, pipeline, events):
    gen.queue_text("m-writing", refusal(20), refusal(20), refusal(20))
    text = asyncio.run(pipeline.expand_loop(1, prose(300), 1000, "WRITER", "SYS"))
    assert count_words(text) == 300
    assert types(events).count(EventType.EXPAND_ATTEMPT) == 3


def test_expand_strips_meta_preamble(gen, pipeline):
    gen.queue_text("m-writing", "Here is the expanded chapter:\n\n---\n\n" + prose(900))
    text = asyncio.run(pipeline.expand_loop(1, prose(400), 1000, "WRITER", "SYS"))
    assert text == prose(900)


def test_near_empty_draft_is_regenerated_from_writer_prompt(gen, pipeline):
    gen.queue_text("m-writing", prose(900))
    text = asyncio.run(pipeline.expand_loop(1, "", 1000, "WRITER PROMPT", "SYS"))
    assert count_words(text) == 900
    assert gen.calls_to("m-writing")[0].prompt == "WRITER PROMPT"


# ─── whole chapter ───────────────────────────────────────────────────────
def test_short_draft_expanded_into_tolerance_has_no_warning(gen, pipeline, events):
    gen.queue_text("m-writing", prose(400), prose(900))
    outcome = asyncio.run(pipeline.run_chapter(ctx_for(1000)))

    result = outcome.result
    assert result.chapter.word_count == 900
    assert result.chapter.approved
    assert result.chapter.edit_count == 1
    assert result.meets_target
    assert EventType.WORD_COUNT_WARNING not in types(events)
    assert types(events) == [
        EventType.CHAPTER_STARTED,
        EventType.CHAPTER_PLAN_GENERATED,
        EventType.CHAPTER_WRITTEN,
        EventType.EXPAND_ATTEMPT,
        EventType.EDIT_CYCLE,
        EventType.CHAPTER_COMPLETE,
    ]
    assert outcome.rolling_summary == "A short summary of the chapter."
    assert outcome.next_phase is Phase.COMPLETE


def test_three_rejections_force_approval(gen, pipeline, events):
    gen.queue_object("EditResult", edit(5), edit(5), edit(5))
    outcome = asyncio.run(pipeline.run_chapter(ctx_for(1000, has_more=True)))

    history = outcome.result.edit_history
    assert [h.cycle for h in history] == [1, 2, 3]
    assert [h.approved for h in history] == [False, False, True]
    assert [h.forced for h in history] == [False, False, True]
    assert outcome.result.chapter.approved
    assert outcome.next_phase is Phase.PLANNING

    writes = gen.calls_to("m-writing")
    assert len(writes) == 3
    assert "Tighten the middle section." in writes[1].prompt
    assert "PREVIOUS DRAFT" in writes[1].prompt
    cycles = [e for e in events if e.type == EventType.EDIT_CYCLE]
    assert cycles[-1].data["forced"] is True


def test_rewrite_shorter_than_half_keeps_previous_draft(gen, pipeline):
    gen.queue_object("EditResult", edit(4), edit(9))
    gen.queue_text("m-writing", prose(1000), prose(300))
    outcome = asyncio.run(pipeline.run_chapter(ctx_for(1000)))
    assert outcome.result.chapter.content == prose(1000)
    assert len(outcome.result.edit_history) == 2


def test_zero_edit_cycles_skip_editing(gen, llm, bus):
    pipeline = ChapterPipeline(make_config(max_edit_cycles=0), llm, bus)
    outcome = asyncio.run(pipeline.run_chapter(ctx_for(1000)))
    assert outcome.result.edit_history == []
    assert outcome.result.chapter.edit_count == 0
    assert gen.calls_to("m-editing") == []


def test_chapter_still_short_after_expansion_warns(gen, pipeline, events):
    gen.queue_text("m-writing", prose(100), prose(200), prose(300), prose(400))
    outcome = asyncio.run(pipeline.run_chapter(ctx_for(1000)))

    assert outcome.result.chapter.word_count == 400
    assert not outcome.result.meets_target
    warning = next(e for e in events if e.type == EventType.WORD_COUNT_WARNING)
    assert warning.data == {"word_count": 400, "minimum": 850, "target_words": 1000}


def test_context_trimmed_is_reported(gen, llm, bus, events):
    pipeline = ChapterPipeline(make_config(max_input_tokens=400), llm, bus)
    asyncio.run(pipeline.run_chapter(ctx_for(1000, rolling_summary="s" * 4000)))
    trimmed = next(e for e in events if e.type == EventType.CONTEXT_TRIMMED)
    assert trimmed.data["dropped"] == ["rolling_summary"]


def test_planning_failure_propagates(gen, pipeline):
    gen.queue_object("DetailedChapterPlan", GenerationError("provider down"))
    with pytest.raises(GenerationError):
        asyncio.run(pipeline.run_chapter(ctx_for(1000)))


class BrokenMemory:
    async def relevant_context(self, query, chapter):
        raise ConnectionError("vector store offline")

    async def store_chapter(self, chapter, content, summary, metadata):
        raise ConnectionError("vector store offline")


class RecordingMemory:
    def __init__(self):
        self.stored = []

    async def relevant_context(self, query, chapter):
        return RelevantContext(passages=[{"text": "The lamp was cracked.", "chapter": 1}])

    async def store_chapter(self, chapter, content, summary, metadata):
        self.stored.append((chapter, metadata["title"]))


def test_memory_failures_are_not_fatal(gen, config, llm, bus):
    pipeline = ChapterPipeline(config, llm, bus, memory=BrokenMemory())
    outcome = asyncio.run(pipeline.run_chapter(ctx_for(1000)))
    assert outcome.result.chapter.approved


def test_memory_context_reaches_prompts(gen, config, llm, bus):
    memory = RecordingMemory()
    pipeline = ChapterPipeline(config, llm, bus, memory=memory)
    asyncio.run(pipeline.run_chapter(ctx_for(1000)))
    assert "The lamp was cracked." in gen.calls_to("m-writing")[0].prompt
    assert memory.stored == [(1, "Chapter 1")]


# ─── phase machine ───────────────────────────────────────────────────────
def test_rejected_edit_returns_to_writing(gen, pipeline):
    gen.queue_object("EditResult", edit(3))
    state = PipelineState(phase=Phase.EDITING, detailed_plan=make_detailed_plan(), draft=prose(1000))
    assert asyncio.run(pipeline.step(ctx_for(1000), state)) is Phase.WRITING
    assert state.rewrite_instructions == "Tighten the middle section."


def test_complete_is_terminal(pipeline):
    state = PipelineState(phase=Phase.COMPLETE)
    assert asyncio.run(pipeline.step(ctx_for(1000), state)) is Phase.COMPLETE


def test_continuity_outage_keeps_chapter_and_prior_summary(gen, pipeline):
    gen.queue_text("m-continuity", ConnectionError("socket reset"), ConnectionError("socket reset"))
    outcome = asyncio.run(pipeline.run_chapter(ctx_for(1000, rolling_summary="Prior story.")))
    assert outcome.result.chapter.approved
    assert outcome.rolling_summary == "Prior story."
    assert outcome.result.chapter.summary == prose(1000)[:500] + "..."
