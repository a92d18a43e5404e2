"""
continuity.py – rolling "story so far" summary + previous-chapter ending.

    update = await tracker.update(prior_summary, chapter_text, meta)
    update.summary                  # ≤ MAX_SUMMARY_WORDS words, always
    update.previous_chapter_ending  # last ENDING_CHARS characters
    update.status                   # "ok" | "condensed" | "truncated" | "failed"

A failed summarization never fails the chapter: the prior summary is kept
and the failure is logged.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Literal

from longform.engine.formatter import count_words
from longform.generators import prompt_builders as pb
from longform.llm.client import LLMClient

logger = logging.getLogger(__name__)

MAX_SUMMARY_WORDS = 2000
ENDING_CHARS = 2000
FALLBACK_SUMMARY_CHARS = 500

_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")

Status = Literal["ok", "condensed", "truncated", "failed"]


@dataclass
class ChapterMeta:
    number: int
    title: str


@dataclass
class ContinuityUpdate:
    summary: str
    previous_chapter_ending: str
    status: Status


def truncate_to_sentences(text: str, max_words: int = MAX_SUMMARY_WORDS) -> str:
    """Keep whole sentences from the start while the word count stays ≤ *max_words*."""
    if count_words(text) <= max_words:
        return text
    kept, used = [], 0
    for sentence in _SENTENCE_RE.split(text.strip()):
        n = count_words(sentence)
        if used + n > max_words:
            break
        kept.append(sentence)
        used += n
    return " ".join(kept)


def chapter_ending(text: str, chars: int = ENDING_CHARS) -> str:
    return text[-chars:] if len(text) > chars else text


class ContinuityTracker:
    def __init__(self, llm: LLMClient, max_words: int = MAX_SUMMARY_WORDS) -> None:
        self.llm = llm
        self.max_words = max_words

    @property
    def role(self) -> str:
        return "continuity" if self.llm.has_role("continuity") else "writing"

    async def update(self, prior_summary: str, chapter_text: str, meta: ChapterMeta) -> ContinuityUpdate:
        ending = chapter_ending(chapter_text)
        try:
            summary = await self.llm.text(
                self.role,
                pb.continuity_prompt(prior_summary, chapter_text, meta.number, meta.title),
                step="continuity",
            )
        except Exception as exc:
            logger.warning("Continuity update for chapter %d failed, keeping prior summary: %s",
                           meta.number, exc)
            return ContinuityUpdate(prior_summary, ending, "failed")

        summary = summary.strip()
        status: Status = "ok"
        if count_words(summary) > self.max_words:
            summary, status = await self._condense(summary, meta.number)

        logger.info("Rolling summary after chapter %d: %d words (%s)",
                    meta.number, count_words(summary), status)
        return ContinuityUpdate(summary, ending, status)

    async def _condense(self, summary: str, number: int) -> tuple[str, Status]:
        try:
            condensed = (await self.llm.text(
                self.role, pb.condense_prompt(summary, self.max_words), step="continuity"
            )).strip()
        except Exception as exc:
            logger.warning("Condensing summary after chapter %d failed: %s", number, exc)
            return truncate_to_sentences(summary, self.max_words), "truncated"

        if condensed and count_words(condensed) <= self.max_words:
            return condensed, "condensed"
        return truncate_to_sentences(condensed or summary, self.max_words), "truncated"

    async def summarize_chapter(self, text: str, number: int) -> str:
        """Short per-chapter summary; falls back to the opening of the chapter."""
        try:
            summary = (await self.llm.text(
                self.role, pb.chapter_summary_prompt(text, number), step="continuity"
            )).strip()
        except Exception as exc:
            logger.warning("Chapter %d summary failed: %s", number, exc)
            summary = ""
        return summary or text[:FALLBACK_SUMMARY_CHARS] + "..."
