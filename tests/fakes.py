# tests/fakes.py
"""Scripted TextGenerator + small builders shared by the test modules."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, List

from longform.config import ROLES, ModelConfig, SessionConfig
from longform.llm.base import StructuredResult, TextResult
from longform.models import (
    ChapterPlan,
    CharacterProfile,
    DetailedChapterPlan,
    EditResult,
    EditScores,
    Outline,
    ScenePlan,
    Usage,
)

MODELS = {role: ModelConfig(model=f"m-{role}") for role in ROLES}
REFUSAL_HEAD = (
    "I'm sorry, but I can't produce a full chapter in one response "
    "due to output limits."
)


def prose(n: int) -> str:
    """Exactly *n* words, sentence punctuated, refusal-free."""
    words = [f"tide{i % 9}" for i in range(n)]
    for i in range(7, n, 8):
        words[i] += "."
    return " ".join(words)


def refusal(salvage_words: int = 0) -> str:
    text = REFUSAL_HEAD + "\n\nIf you'd like, I can write it in multiple parts."
    if salvage_words:
        text += "\n\n" + prose(salvage_words)
    return text


def make_config(**kw: Any) -> SessionConfig:
    kw.setdefault("title", "The Tide Keeper")
    kw.setdefault("description", "A lighthouse keeper hides a stranger during a storm.")
    kw.setdefault("chapters", 3)
    kw.setdefault("models", dict(MODELS))
    return SessionConfig(**kw)


def make_outline(n: int = 3, target_words: int = 1000) -> Outline:
    return Outline(
        title="The Tide Keeper",
        synopsis="A keeper, a stranger, a storm.",
        themes=["duty"],
        chapters=[
            ChapterPlan(number=i, title=f"Chapter {i}", summary=f"Events of chapter {i}.",
                        target_words=target_words, key_events=[f"event {i}"], characters=["Mira"])
            for i in range(1, n + 1)
        ],
        characters=[CharacterProfile(name="Mira", role="protagonist"),
                    CharacterProfile(name="Oren", role="supporting")],
    )


def make_detailed_plan(number: int = 1, target_words: int = 1000) -> DetailedChapterPlan:
    return DetailedChapterPlan(
        chapter_number=number,
        title=f"Chapter {number}",
        scenes=[ScenePlan(number=1, setting="the lamp room", objective="keep the light",
                          target_words=target_words)],
        target_words=target_words,
    )


def edit(overall: int, instructions: str = "Tighten the middle section.") -> EditResult:
    scores = EditScores(prose=overall, plot=overall, character=overall,
                        pacing=overall, dialogue=overall, overall=overall)
    return EditResult(scores=scores, edit_notes=["note"], approved=overall >= 7,
                      rewrite_instructions="" if overall >= 7 else instructions)


@dataclass
class Call:
    kind: str
    model: str
    system: str | None
    prompt: str
    max_tokens: int | None


class FakeGenerator:
    """
    Replays queued responses per model id (text) or per schema name (structured).
    Queued exceptions are raised.  Empty queues fall back to sane defaults.
    """

    def __init__(self) -> None:
        self.texts: Dict[str, List[Any]] = defaultdict(list)
        self.objects: Dict[str, List[Any]] = defaultdict(list)
        self.default_text: Dict[str, str] = {"m-writing": prose(1000)}
        self.calls: List[Call] = []

    def queue_text(self, model: str, *items: Any) -> "FakeGenerator":
        self.texts[model].extend(items)
        return self

    def queue_object(self, schema: str, *items: Any) -> "FakeGenerator":
        self.objects[schema].extend(items)
        return self

    def calls_to(self, model: str) -> List[Call]:
        return [c for c in self.calls if c.model == model]

    @staticmethod
    def _next(queue: List[Any], default: Any) -> Any:
        item = queue.pop(0) if queue else default
        if isinstance(item, BaseException):
            raise item
        return item

    async def generate_text(self, *, model, system, prompt, temperature=None, max_tokens=None):
        self.calls.append(Call("text", model, system, prompt, max_tokens))
        text = self._next(self.texts[model], self.default_text.get(model, "A short summary of the chapter."))
        return TextResult(text=text, usage=Usage(input_tokens=len(prompt) // 4,
                                                 output_tokens=len(text.split())))

    async def generate_structured(self, *, model, system, prompt, schema, temperature=None, max_tokens=None):
        self.calls.append(Call("structured", model, system, prompt, max_tokens))
        defaults = {
            "Outline": make_outline(),
            "DetailedChapterPlan": make_detailed_plan(),
            "EditResult": edit(8),
        }
        obj = self._next(self.objects[schema.__name__], defaults.get(schema.__name__))
        return StructuredResult(object=obj, usage=Usage(input_tokens=100, output_tokens=50))
