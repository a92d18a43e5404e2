"""
Session configuration, model presets and the JSON answers-file loader.

    cfg = load_config(Path("book.json"))     # same shape as SessionConfig
    models = cfg.resolved_models()           # preset + explicit overrides
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Literal

import dotenv
from pydantic import BaseModel, Field

from longform.errors import UnknownPresetError

ModelRole = Literal["outline", "planning", "writing", "editing", "continuity"]
ROLES: tuple[str, ...] = ("outline", "planning", "writing", "editing", "continuity")

ContentType = Literal[
    "novel", "technical-docs", "course", "screenplay",
    "research-paper", "marketing", "legal", "sop",
]


class ModelConfig(BaseModel):
    provider: str = "openai"
    model: str
    temperature: float = Field(0.7, ge=0, le=2)
    max_tokens: int = Field(4096, gt=0)


class ChapterWordConfig(BaseModel):
    default_words: int = Field(2500, gt=0)
    chapter_overrides: Dict[int, int] = {}
    tolerance: float = Field(0.15, ge=0, lt=1)
    min_words: int = Field(500, ge=0)

    def target_for(self, chapter: int) -> int:
        return self.chapter_overrides.get(chapter, self.default_words)


class SessionConfig(BaseModel):
    title: str
    description: str
    content_type: ContentType = "novel"
    chapters: int = Field(20, ge=1, le=100)
    preset: str | None = None
    models: Dict[str, ModelConfig] = {}
    word_config: ChapterWordConfig | None = None
    max_edit_cycles: int = Field(3, ge=0, le=10)
    approval_score: int = Field(7, ge=1, le=10)
    max_input_tokens: int = Field(128_000, gt=0)
    style_guide: str | None = None

    @property
    def tolerance(self) -> float:
        return self.word_config.tolerance if self.word_config else 0.15

    @property
    def min_words(self) -> int:
        return self.word_config.min_words if self.word_config else 500

    @property
    def target_words(self) -> int:
        """Whole-book word target used by outline prompts and cost estimates."""
        if self.word_config:
            return self.word_config.default_words * self.chapters
        return 50_000

    def resolved_models(self) -> Dict[str, ModelConfig]:
        if self.preset:
            return resolve_preset(self.preset, self.models)
        return dict(self.models)


# ─── presets (role → model) ──────────────────────────────────────────────
def _m(model: str, temperature: float, max_tokens: int, provider: str = "openai") -> ModelConfig:
    return ModelConfig(provider=provider, model=model, temperature=temperature, max_tokens=max_tokens)


PRESETS: Dict[str, Dict[str, ModelConfig]] = {
    "budget": {
        "outline":    _m("gpt-4o-mini", 0.7, 8192),
        "planning":   _m("gpt-4o-mini", 0.7, 4096),
        "writing":    _m("gpt-4o-mini", 0.8, 8192),
        "editing":    _m("gpt-4o-mini", 0.3, 4096),
        "continuity": _m("gpt-4o-mini", 0.3, 4096),
    },
    "balanced": {
        "outline":    _m("gpt-4.1", 0.7, 8192),
        "planning":   _m("gpt-4.1-mini", 0.7, 4096),
        "writing":    _m("gpt-4.1", 0.8, 8192),
        "editing":    _m("gpt-4.1-mini", 0.3, 4096),
        "continuity": _m("gpt-4.1-mini", 0.3, 4096),
    },
    "premium": {
        "outline":    _m("gpt-4.1", 0.7, 8192),
        "planning":   _m("gpt-4.1", 0.7, 4096),
        "writing":    _m("gpt-4o", 0.8, 16384),
        "editing":    _m("gpt-4.1", 0.3, 4096),
        "continuity": _m("gpt-4.1", 0.3, 4096),
    },
}


def resolve_preset(name: str, overrides: Dict[str, ModelConfig] | None = None) -> Dict[str, ModelConfig]:
    """Return the preset's role map with *overrides* taking precedence."""
    try:
        base = PRESETS[name]
    except KeyError as exc:
        raise UnknownPresetError(
            f'Unknown preset "{name}". Available: {", ".join(PRESETS)}'
        ) from exc
    return {**base, **(overrides or {})}


def load_config(path: Path) -> SessionConfig:
    """Read a JSON answers file; `.env` is loaded so adapters see API keys."""
    dotenv.load_dotenv()
    return SessionConfig.model_validate(json.loads(path.read_text(encoding="utf-8")))
