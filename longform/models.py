# longform/models.py
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field

# ─── outline ─────────────────────────────────────────────────────────────
class CharacterProfile(BaseModel):
    name: str = Field(..., min_length=1)
    role: Literal["protagonist", "antagonist", "supporting", "minor"] = "supporting"
    description: str = ""
    traits: List[str] = []
    arc: str = ""


class ChapterPlan(BaseModel):
    number: int = Field(..., ge=1)
    title: str = Field(..., min_length=1)
    summary: str
    target_words: int = Field(..., gt=0)
    key_events: List[str] = []
    characters: List[str] = []


class Outline(BaseModel):
    title: str = Field(..., min_length=1)
    synopsis: str
    themes: List[str] = []
    target_audience: str = "general"
    chapters: List[ChapterPlan] = Field(..., min_length=1)
    characters: List[CharacterProfile] = []


class ScenePlan(BaseModel):
    number: int = Field(..., ge=1)
    setting: str
    characters: List[str] = []
    objective: str
    conflict: str = ""
    resolution: str = ""
    target_words: int = Field(..., gt=0)


class DetailedChapterPlan(BaseModel):
    chapter_number: int = Field(..., ge=1)
    title: str
    scenes: List[ScenePlan] = Field(..., min_length=1)
    pov: str = ""
    tone: str = ""
    target_words: int = Field(..., gt=0)
    bridge_from_previous: str = ""
    bridge_to_next: str = ""


# ─── chapter content & editing ───────────────────────────────────────────
class ChapterContent(BaseModel):
    model_config = ConfigDict(frozen=True)

    number: int = Field(..., ge=1)
    title: str
    content: str
    word_count: int = Field(..., ge=0)
    summary: str = ""
    edit_count: int = Field(0, ge=0)
    approved: bool = False


class EditScores(BaseModel):
    prose: int = Field(..., ge=1, le=10)
    plot: int = Field(..., ge=1, le=10)
    character: int = Field(..., ge=1, le=10)
    pacing: int = Field(..., ge=1, le=10)
    dialogue: int = Field(..., ge=1, le=10)
    overall: int = Field(..., ge=1, le=10)


class EditResult(BaseModel):
    scores: EditScores
    edit_notes: List[str] = []
    approved: bool
    rewrite_instructions: str = ""


class EditCycleRecord(BaseModel):
    cycle: int = Field(..., ge=1)
    scores: EditScores
    approved: bool
    forced: bool = False
    feedback: str | None = None


class ChapterStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    APPROVED = "approved"
    FAILED = "failed"


class SessionPhase(str, Enum):
    IDLE = "idle"
    OUTLINE = "outline"
    WRITING = "writing"
    COMPLETE = "complete"


# ─── costs ───────────────────────────────────────────────────────────────
class Usage(BaseModel):
    input_tokens: int = Field(0, ge=0)
    output_tokens: int = Field(0, ge=0)


class CostEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    step: str
    model: str
    input_tokens: int = Field(..., ge=0)
    output_tokens: int = Field(..., ge=0)
    cost: float = Field(..., ge=0)


class StepEstimate(BaseModel):
    step: str
    model: str
    estimated_cost: float


class CostEstimate(BaseModel):
    estimated_input_tokens: int
    estimated_output_tokens: int
    estimated_cost: float
    breakdown: List[StepEstimate] = []
    warnings: List[str] = []


# ─── outline edits ───────────────────────────────────────────────────────
class ChapterUpdate(BaseModel):
    number: int
    title: str | None = None
    summary: str | None = None
    target_words: int | None = Field(None, gt=0)
    key_events: List[str] | None = None


class ChapterAddition(BaseModel):
    after_chapter: int = Field(..., ge=0)
    title: str
    summary: str
    target_words: int | None = Field(None, gt=0)


class ChapterMerge(BaseModel):
    chapters: tuple[int, int]
    new_title: str


class CharacterUpdate(BaseModel):
    name: str
    changes: Dict[str, Any]


class OutlineChanges(BaseModel):
    """Structural outline edit; every chapter number refers to the numbering before the edit."""

    update_chapter: List[ChapterUpdate] = []
    add_chapter: List[ChapterAddition] = []
    remove_chapters: List[int] = []
    reorder_chapters: List[int] | None = None
    merge_chapters: List[ChapterMerge] = []
    add_character: List[CharacterProfile] = []
    remove_characters: List[str] = []
    update_character: List[CharacterUpdate] = []
    synopsis: str | None = None
    themes: List[str] | None = None
    target_audience: str | None = None


# ─── memory retrieval ────────────────────────────────────────────────────
class Passage(BaseModel):
    text: str
    chapter: int
    score: float = 0.0


class CharacterState(BaseModel):
    name: str
    last_seen_chapter: int = 0
    alive: bool = True
    location: str = ""
    emotional_state: str = ""


class TimelineEvent(BaseModel):
    chapter: int
    event: str
    characters: List[str] = []


class RelevantContext(BaseModel):
    passages: List[Passage] = []
    character_states: List[CharacterState] = []
    recent_events: List[TimelineEvent] = []


# ─── results & session snapshots ─────────────────────────────────────────
class ChapterResult(BaseModel):
    chapter: ChapterContent
    target_words: int
    meets_target: bool
    edit_history: List[EditCycleRecord] = []
    cost_for_chapter: float = 0.0
    generation_time_ms: int = 0


class SessionProgress(BaseModel):
    phase: SessionPhase
    outline_approved: bool
    total_chapters: int
    chapters_completed: int
    chapter_statuses: Dict[int, ChapterStatus]
    total_words: int
    total_cost: float
    estimated_remaining_cost: float


class SessionState(BaseModel):
    id: str
    outline: Outline | None = None
    outline_approved: bool = False
    chapters: Dict[int, ChapterContent] = {}
    chapter_statuses: Dict[int, ChapterStatus] = {}
    edit_histories: Dict[int, List[EditCycleRecord]] = {}
    rolling_summary: str = ""
    previous_chapter_ending: str = ""
    costs: List[CostEntry] = []
    phase: SessionPhase = SessionPhase.IDLE


class BookMetadata(BaseModel):
    content_type: str
    generated_at: datetime
    models: Dict[str, str] = {}
    session_id: str


class Book(BaseModel):
    title: str
    outline: Outline
    chapters: List[ChapterContent]
    total_words: int
    total_cost: float
    metadata: BookMetadata


# ─── progress events ─────────────────────────────────────────────────────
class EventType(str, Enum):
    OUTLINE_GENERATED = "outline_generated"
    OUTLINE_APPROVED = "outline_approved"
    CHAPTER_STARTED = "chapter_started"
    CHAPTER_PLAN_GENERATED = "chapter_plan_generated"
    CHAPTER_WRITTEN = "chapter_written"
    CONTEXT_TRIMMED = "context_trimmed"
    EXPAND_ATTEMPT = "expand_attempt"
    WORD_COUNT_WARNING = "word_count_warning"
    EDIT_CYCLE = "edit_cycle"
    CHAPTER_COMPLETE = "chapter_complete"
    CHAPTER_FAILED = "chapter_failed"
    REFUSAL_DETECTED = "refusal_detected"
    SESSION_SAVED = "session_saved"
    GENERATION_COMPLETE = "generation_complete"


class ProgressEvent(BaseModel):
    type: EventType
    chapter: int | None = None
    data: Dict[str, Any] = {}
