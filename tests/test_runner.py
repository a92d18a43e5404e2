# tests/test_runner.py
import asyncio

from longform.errors import GenerationError
from longform.models import EventType
from longform.runner import stream_book
from longform.storage import MemorySessionStorage

from fakes import make_detailed_plan


def collect(agen):
    async def go():
        return [ev async for ev in agen]
    return asyncio.run(go())


def test_stream_book_runs_every_chapter(gen, config):
    storage = MemorySessionStorage()
    events = collect(stream_book(config, gen, storage=storage))
    kinds = [e.type for e in events]

    assert kinds[0] == EventType.OUTLINE_GENERATED
    assert kinds[1] == EventType.OUTLINE_APPROVED
    assert kinds.count(EventType.CHAPTER_COMPLETE) == 3
    assert EventType.SESSION_SAVED in kinds
    final = events[-1]
    assert final.type == EventType.GENERATION_COMPLETE
    assert final.data["chapters_completed"] == 3
    assert final.data["total_words"] == 3000
    assert asyncio.run(storage.list()) == [final.data["session_id"]]


def test_stream_book_reports_failed_chapters(gen, config):
    gen.queue_object("DetailedChapterPlan",
                     make_detailed_plan(1), GenerationError("boom"), make_detailed_plan(3))
    events = collect(stream_book(config, gen))
    failed = [e for e in events if e.type == EventType.CHAPTER_FAILED]
    assert [e.chapter for e in failed] == [2]
    assert events[-1].data["chapters_completed"] == 2
    assert events[-1].data["total_chapters"] == 3
