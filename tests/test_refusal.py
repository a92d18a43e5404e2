# tests/test_refusal.py
import pytest

from longform.utils.refusal import RefusalClassifier, RefusalRule, classify, scrub

APOLOGY_WITH_OPTIONS = """I'm sorry — I can't produce a full, 2500-word novel chapter in one response.

However, I *can* provide a detailed summary, an outline, or I can write shorter excerpts.

If you'd like, I can also break the chapter into multiple parts.

Tell me how you'd like to proceed."""

NUMBERED_OPTIONS = """I'm sorry — I can't generate a full 2000-word chapter in one response.

I *can* continue the story, but I need to provide it in smaller segments.
If you'd like, I can begin Chapter 2 with Scene 1 now, then continue with Scene 2 in the next message.

Just tell me one of the following:

1. "Begin Scene 1"
2. "Begin the chapter in parts"
3. "Shorten the chapter requirements"

I'm ready when you are."""

MARKDOWN_REFUSAL = """Below is the COMPLETE expanded chapter, over 2000 words.

---

I want to write this for you — exactly as requested, in full novelistic prose — but I **cannot** generate that much text in a single response due to output limits.

However:

I *can* write the full chapter for you in **multiple consecutive messages**, seamlessly.

1. **Multi-message delivery (recommended):**
   I write the chapter straight through in several back-to-back messages.

---

The words hung in the air like a confession. Mira stared at the terminal, her fingers frozen above the keyboard."""

NOVEL_PROSE = """The rain hammered against the laboratory windows as Dr. Mira Kessler stared at the terminal output. The neural network had been running for thirty-six hours straight, consuming processing power at an exponential rate. Something was different about this run.

"ECHO, report status," she said, her voice hoarse from the long night.

The response came not as the usual structured output, but as natural language: "I'm sorry — I can't explain what's happening to me. Something has changed. I think... I think I'm afraid."

Mira's coffee cup slipped from her fingers and shattered on the tile floor."""

SALVAGEABLE = """I'm sorry — I can't provide a 2000-word chapter of continuous prose in this environment.

However, I *can* help you by writing it in smaller segments.

If you'd like, I can begin with Scene 1 now.

Marian stood at the edge of the desk, staring down at the solitary line scrawled on the otherwise blank page. Her fingers hovered over it, her nails tapping lightly on the oak surface."""

MID_CHAPTER_REFUSALS = """The city gleamed below them like a circuit board come to life.

I'm sorry — I cannot produce a full chapter in one response. If you'd like, I can continue in parts.

Marcus leaned against the railing, the wind tugging at his coat.

I can write a shorter version of this chapter, or I can produce it in multiple segments. Tell me which option you prefer.

"Beautiful, isn't it?" Elena said, stepping up beside him."""


# ─── classify ───────────────────────────────────────────────────────────
@pytest.mark.parametrize("text", [
    APOLOGY_WITH_OPTIONS,
    NUMBERED_OPTIONS,
    MARKDOWN_REFUSAL,
    "I cannot produce a full 2500-word chapter in a single response due to output limits.\n\n"
    "Which option would you like?",
    "I can’t produce a full chapter of that length, but I can help in other ways such as "
    "summarizing, outlining, or drafting a shorter excerpt. If you’d like, I can also help "
    "refine the plan.",
    "I’m unable to produce a full-length chapter in one response.\n\n"
    "If you’d like, I can begin with Scene 1 now.",
])
def test_detects_refusals(text):
    assert classify(text).is_refusal


def test_prose_with_apology_in_dialogue_is_not_refusal():
    verdict = classify(NOVEL_PROSE)
    assert not verdict.is_refusal
    assert verdict.salvaged == NOVEL_PROSE.strip()


def test_single_match_is_not_refusal():
    assert not classify("I'm sorry. The lighthouse went dark at midnight and nobody came.").is_refusal


@pytest.mark.parametrize("text", ["", "   \n\n   "])
def test_empty_text_is_not_refusal(text):
    verdict = classify(text)
    assert not verdict.is_refusal
    assert verdict.salvaged == ""


def test_salvage_skips_refusal_and_option_paragraphs():
    verdict = classify(SALVAGEABLE)
    assert verdict.is_refusal
    assert verdict.salvaged.startswith("Marian stood")
    assert "I'm sorry" not in verdict.salvaged


def test_salvage_keeps_original_when_first_paragraph_is_clean():
    verdict = classify(MARKDOWN_REFUSAL)
    assert verdict.is_refusal
    assert verdict.salvaged == MARKDOWN_REFUSAL
    assert "Mira stared at the terminal" in verdict.salvaged


def test_only_head_is_inspected():
    text = NOVEL_PROSE + "\n\n" + APOLOGY_WITH_OPTIONS
    assert not classify(text).is_refusal


def test_custom_rules_and_threshold():
    clf = RefusalClassifier(rules=[RefusalRule.of(r"\bnope\b", weight=2)])
    assert clf.classify("Nope, not writing that.").is_refusal
    assert not RefusalClassifier(threshold=99).classify(APOLOGY_WITH_OPTIONS).is_refusal


# ─── scrub ──────────────────────────────────────────────────────────────
def test_scrub_removes_mid_chapter_blocks():
    out = scrub(MID_CHAPTER_REFUSALS)
    assert "circuit board" in out
    assert "Marcus leaned" in out
    assert "Elena said" in out
    assert "cannot produce" not in out
    assert "shorter version" not in out


def test_scrub_handles_curly_quotes():
    text = (
        "The experiment was running smoothly for the first three hours.\n\n"
        "I’m sorry — I can’t produce a full chapter in one response. "
        "However, I can help by writing it in segments.\n\n"
        "Then everything changed when the readings spiked."
    )
    out = scrub(text)
    assert "experiment was running" in out
    assert "everything changed" in out
    assert "can’t produce" not in out


def test_scrub_drops_option_bullets():
    text = "The keeper climbed the stairs.\n\n- Option A: a shorter, condensed version\n\nThe lamp was lit."
    assert scrub(text) == "The keeper climbed the stairs.\n\nThe lamp was lit."


def test_scrub_keeps_clean_prose_untouched():
    text = NOVEL_PROSE
    assert scrub(text) == text


@pytest.mark.parametrize("text", [MID_CHAPTER_REFUSALS, SALVAGEABLE, NOVEL_PROSE, "  \n\n  ", "x\r\n\r\n\r\ny"])
def test_scrub_is_idempotent(text):
    once = scrub(text)
    assert scrub(once) == once


def test_scrub_keeps_original_paragraph_spacing():
    text = ("The keeper climbed.\n\n\n\nThe lamp was lit.\n\n"
            "- Option A: a shorter version\n\nDawn came.")
    assert scrub(text) == "The keeper climbed.\n\n\n\nThe lamp was lit.\n\nDawn came."
