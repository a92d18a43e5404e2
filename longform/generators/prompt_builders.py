"""
Prompt builders
• One function per pipeline step; each returns plain strings.
• Novel wording for content_type="novel", neutral "document" wording otherwise.
• Structured steps only describe the task; the adapter appends the JSON schema.
"""

from __future__ import annotations

import json
from textwrap import dedent
from typing import Tuple

from longform.config import SessionConfig
from longform.models import ChapterPlan, DetailedChapterPlan, Outline

# escalating suffixes appended on refusal retries 1..3
ANTI_REFUSAL_SUFFIXES: Tuple[str, ...] = (
    "\n\nIMPORTANT: Write the complete chapter now. Do not apologise, do not offer "
    "options, do not ask questions. Output only the chapter text.",
    "\n\nCRITICAL: Your previous reply was not chapter text. The very first word of "
    "your reply must be part of the story itself. No preamble, no commentary, no "
    "alternatives.",
    "\n\nFINAL WARNING: Reply with prose only. Anything other than the chapter text "
    "will be discarded. Begin the chapter immediately.",
)


def _kind(config: SessionConfig) -> str:
    return "novel" if config.content_type == "novel" else config.content_type.replace("-", " ") + " document"


def _unit(config: SessionConfig) -> str:
    return "chapter" if config.content_type == "novel" else "section"


def _style(config: SessionConfig) -> str:
    return f"\nSTYLE GUIDE:\n{config.style_guide}\n" if config.style_guide else ""


# ─── outline ─────────────────────────────────────────────────────────────
def outline_system(config: SessionConfig) -> str:
    return dedent(
        f"""
        You are an experienced {_kind(config)} architect.
        • Design a complete, coherent structure with exactly {config.chapters} {_unit(config)}s.
        • Number {_unit(config)}s from 1 without gaps.
        • Output *only* valid JSON (no markdown).
        """
    ).strip()


def outline_prompt(config: SessionConfig) -> str:
    per_chapter = config.target_words // config.chapters
    return dedent(
        f"""
        Create an outline for a {_kind(config)}.

        TITLE: {config.title}
        DESCRIPTION: {config.description}
        {_unit(config).upper()}S: {config.chapters}
        TARGET LENGTH: about {config.target_words} words ({per_chapter} per {_unit(config)})

        For each {_unit(config)} give number, title, a 2-4 sentence summary,
        target_words, key_events and the characters involved.
        Also give synopsis, themes, target_audience and the main characters
        (name, role, description, traits, arc).
        """
    ).strip() + _style(config)


def regenerate_outline_prompt(config: SessionConfig, previous: Outline, feedback: str) -> str:
    return (
        outline_prompt(config)
        + "\n\nPREVIOUS OUTLINE:\n"
        + previous.model_dump_json(indent=2)
        + "\n\nREVISE IT ACCORDING TO THIS FEEDBACK:\n"
        + feedback
    )


# ─── planning ────────────────────────────────────────────────────────────
def chapter_plan_prompt(
    config: SessionConfig,
    outline: Outline,
    plan: ChapterPlan,
    rolling_summary: str,
    memory_text: str = "",
) -> str:
    characters = ", ".join(c.name for c in outline.characters) or "(none listed)"
    parts = [
        dedent(
            f"""
            Break {_unit(config)} {plan.number} of "{outline.title}" into scenes.

            SYNOPSIS: {outline.synopsis}
            MAIN CHARACTERS: {characters}

            {_unit(config).upper()} {plan.number}: {plan.title}
            SUMMARY: {plan.summary}
            KEY EVENTS: {json.dumps(plan.key_events, ensure_ascii=False)}
            TARGET WORDS: {plan.target_words}

            Give chapter_number, title, scenes (number, setting, characters,
            objective, conflict, resolution, target_words), pov, tone,
            target_words, bridge_from_previous and bridge_to_next.
            Scene target_words should add up to the chapter target.
            """
        ).strip()
    ]
    if rolling_summary:
        parts.append("STORY SO FAR:\n" + rolling_summary)
    if memory_text:
        parts.append(memory_text)
    return "\n\n".join(parts)


# ─── writing ─────────────────────────────────────────────────────────────
def writer_system(config: SessionConfig) -> str:
    return dedent(
        f"""
        You are a professional author writing a {_kind(config)}.
        • Write complete {_unit(config)}s in polished prose.
        • Never summarise, never offer options, never add meta commentary.
        • Output only the {_unit(config)} text.
        """
    ).strip() + _style(config)


def format_detailed_plan(plan: DetailedChapterPlan) -> str:
    lines = [f"**Chapter {plan.chapter_number}: {plan.title}**"]
    if plan.pov:
        lines.append(f"POV: {plan.pov}")
    if plan.tone:
        lines.append(f"Tone: {plan.tone}")
    if plan.bridge_from_previous:
        lines.append(f"Opening bridge: {plan.bridge_from_previous}")
    for s in plan.scenes:
        lines.append(
            f"- Scene {s.number} ({s.target_words} words) @ {s.setting}: {s.objective}"
            + (f" Conflict: {s.conflict}" if s.conflict else "")
            + (f" Resolution: {s.resolution}" if s.resolution else "")
        )
    if plan.bridge_to_next:
        lines.append(f"Closing bridge: {plan.bridge_to_next}")
    return "\n".join(lines)


def writer_prompt(config: SessionConfig, context: str, number: int, title: str, target_words: int) -> str:
    return (
        context
        + "\n\n"
        + dedent(
            f"""
            Write {_unit(config)} {number}, "{title}", in full.
            Length: at least {target_words} words. Cover every scene in the plan.
            Begin directly with the text of the {_unit(config)}.
            """
        ).strip()
    )


def rewrite_block(instructions: str, previous_draft: str) -> str:
    block = "\n\nREVISION INSTRUCTIONS FROM THE EDITOR:\n" + (instructions or "Improve the draft.")
    if previous_draft:
        block += (
            "\n\nPREVIOUS DRAFT (reference only; write a complete new version of the "
            "same length or longer):\n" + previous_draft
        )
    return block


def expand_prompt(config: SessionConfig, draft: str, current_words: int, target_words: int) -> str:
    return dedent(
        f"""
        The {_unit(config)} below has {current_words} words but needs at least {target_words}.
        Expand it: deepen scenes, add sensory detail, dialogue and interiority.
        Keep every existing event and the same ending.
        Return the COMPLETE expanded {_unit(config)} and nothing else.
        """
    ).strip() + "\n\n" + draft


# ─── editing ─────────────────────────────────────────────────────────────
def editor_system(config: SessionConfig) -> str:
    return dedent(
        f"""
        You are a demanding editor of {_kind(config)}s.
        Score strictly from 1 to 10; {config.approval_score} or above means publishable.
        """
    ).strip()


def editor_prompt(config: SessionConfig, plan: DetailedChapterPlan, text: str, target_words: int) -> str:
    task = dedent(
        f"""
        Review this {_unit(config)} against its plan.
        TARGET WORDS: {target_words}

        Give scores (prose, plot, character, pacing, dialogue, overall),
        edit_notes, approved (true when overall >= {config.approval_score}) and,
        when not approved, concrete rewrite_instructions.
        """
    ).strip()
    return task + "\n\nPLAN:\n" + format_detailed_plan(plan) + "\n\nTEXT:\n" + text


# ─── continuity ──────────────────────────────────────────────────────────
def chapter_summary_prompt(text: str, number: int) -> str:
    return dedent(
        f"""
        Summarise chapter {number} in 2-3 short paragraphs.
        Return ONLY the prose summary.  No lists, markdown or metadata.
        """
    ).strip() + "\n\n" + text


def continuity_prompt(prior_summary: str, text: str, number: int, title: str) -> str:
    return dedent(
        f"""
        Update the running story summary with chapter {number} ("{title}").
        Keep every fact later chapters depend on: who is alive, where they are,
        open threads, promises and secrets.  Return ONLY the updated summary as prose.
        """
    ).strip() + "\n\nSUMMARY SO FAR:\n" + (prior_summary or "(story begins here)") + "\n\nNEW CHAPTER:\n" + text


def condense_prompt(summary: str, max_words: int) -> str:
    return dedent(
        f"""
        Condense this story summary to at most {max_words} words.
        Keep plot facts, character states and open threads; drop style.
        Return ONLY the condensed summary.
        """
    ).strip() + "\n\n" + summary
