"""
Whole-book streaming entry point (no human approval step).

    async for event in stream_book(config, generator):
        print(event.type, event.chapter)

Events are buffered from the session's listeners and released after each
awaited stage, so consumers see them at chapter granularity.  The last
event is always ``generation_complete``.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, List

from longform.config import SessionConfig
from longform.llm.base import TextGenerator
from longform.memory import MemoryProvider
from longform.models import EventType, ProgressEvent
from longform.session import BookSession
from longform.storage import SessionStorage

logger = logging.getLogger(__name__)


async def stream_book(
    config: SessionConfig,
    generator: TextGenerator,
    memory: MemoryProvider | None = None,
    storage: SessionStorage | None = None,
    session: BookSession | None = None,
) -> AsyncIterator[ProgressEvent]:
    session = session or BookSession(config, generator, memory=memory, storage=storage)
    buffer: List[ProgressEvent] = []
    session.on_any(buffer.append)

    def drain() -> List[ProgressEvent]:
        out = list(buffer)
        buffer.clear()
        return out

    if session.get_outline() is None:
        await session.generate_outline()
        for ev in drain():
            yield ev
    session.approve_outline()
    for ev in drain():
        yield ev

    async for _ in session.generate_all_remaining():
        for ev in drain():
            yield ev
    # failed chapters produce events without a yielded result
    for ev in drain():
        yield ev

    if storage is not None:
        await session.save(storage)
        for ev in drain():
            yield ev

    progress = session.get_progress()
    logger.info("Book finished: %d/%d chapters, %d words, $%.4f",
                progress.chapters_completed, progress.total_chapters,
                progress.total_words, progress.total_cost)
    yield ProgressEvent(
        type=EventType.GENERATION_COMPLETE,
        data={
            "session_id": session.id,
            "chapters_completed": progress.chapters_completed,
            "total_chapters": progress.total_chapters,
            "total_words": progress.total_words,
            "total_cost": progress.total_cost,
        },
    )
