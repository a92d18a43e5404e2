"""
formatter.py: small text helpers shared by the engine

* ``smart_quotes``          curly / angle quotes → ASCII
* ``count_words``           whitespace word count used for every length target
* ``split_paragraphs``      blank-line paragraph split
* ``strip_expand_preamble`` drop "Below is the expanded chapter…" lead-ins
"""

from __future__ import annotations

import re
from typing import List

__all__ = ["smart_quotes", "count_words", "split_paragraphs", "strip_expand_preamble"]

_SINGLE_QUOTES = re.compile("[‘’‚‹›]")
_DOUBLE_QUOTES = re.compile("[“”„«»]")
_PARA_SPLIT = re.compile(r"\n\s*\n")

_PREAMBLE_RE = re.compile(
    r"^(?:Below is|Here is|Here's|The following is|I've expanded|This is the|The expanded)", re.I
)
_RULE_RE = re.compile(r"^-{3,}$")
_PREAMBLE_SCAN = 5


# ----------------------------------------------------------------------
def smart_quotes(t: str) -> str:
    return _DOUBLE_QUOTES.sub('"', _SINGLE_QUOTES.sub("'", t))


def count_words(t: str) -> int:
    return len(t.split())


def split_paragraphs(t: str) -> List[str]:
    return _PARA_SPLIT.split(t.replace("\r\n", "\n").replace("\r", "\n"))


def strip_expand_preamble(t: str) -> str:
    """
    Remove meta-commentary lines an expansion model sometimes prepends.

    Only the first few lines are inspected; blank lines, "Below is…" style
    lines and horizontal rules are skipped.  Prose is returned untouched.
    """
    lines = t.split("\n")
    start = 0
    for i, line in enumerate(lines[:_PREAMBLE_SCAN]):
        line = line.strip()
        if not line or _PREAMBLE_RE.match(line) or _RULE_RE.match(line):
            start = i + 1
            continue
        break
    if start == 0:
        return t
    return "\n".join(lines[start:]).strip()
