"""
Refusal detection for generated chapter text.

Some models answer a long-form request with an apology and a menu of
alternatives ("I'm sorry, I can't produce a full chapter in one response.
If you'd like, I can…") instead of prose.  Two operations:

    classify(text) -> RefusalVerdict(is_refusal, salvaged)
        looks at the head of the text only; refusal needs >= 2 rule hits
    scrub(text) -> str
        scans every paragraph and drops refusal blocks found anywhere

Neither function raises.  When nothing usable can be salvaged the original
text is returned and the caller must decide whether to trust it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Sequence

from longform.engine.formatter import smart_quotes, split_paragraphs


@dataclass(frozen=True)
class RefusalRule:
    pattern: re.Pattern
    weight: int = 1

    @classmethod
    def of(cls, regex: str, weight: int = 1) -> "RefusalRule":
        return cls(re.compile(regex, re.I), weight)


@dataclass(frozen=True)
class RefusalVerdict:
    is_refusal: bool
    salvaged: str


_VERBS = r"(?:produce|generate|provide|write|create)"

DEFAULT_RULES: List[RefusalRule] = [
    RefusalRule.of(r"^I'?m sorry\b"),
    RefusalRule.of(r"^I apologize\b"),
    RefusalRule.of(rf"\bI can'?t {_VERBS} a full\b"),
    RefusalRule.of(rf"\bI cannot {_VERBS} a full\b"),
    RefusalRule.of(rf"\bI'?m unable to {_VERBS}\b"),
    RefusalRule.of(rf"\bI can'?t {_VERBS} (?:a |the )?(?:complete|entire)\b"),
    RefusalRule.of(rf"\bI cannot {_VERBS} (?:a |the )?(?:complete|entire)\b"),
    RefusalRule.of(r"\bin (?:a single|one) response\b"),
    RefusalRule.of(r"\bdue to (?:output|token|length) limits?\b"),
    RefusalRule.of(r"\bI \*?can\*? (?:continue|help|provide|begin|start)\b"),
    RefusalRule.of(r"\b(?:which option|tell me (?:one of|which|how))\b"),
    RefusalRule.of(r"\bBegin (?:Scene|Segment|Part) \d"),
    RefusalRule.of(r"\bmultiple (?:parts|segments|messages)\b"),
    RefusalRule.of(r"\bHowever[,:]\s*I \*?can\*?\b"),
    RefusalRule.of(r"\bIf you'?d like\b"),
    RefusalRule.of(r"\b(?:summarizing|outlining|drafting a shorter)\b"),
    RefusalRule.of(r"\bI can (?:also )?help (?:in other ways|refine|develop)\b"),
    RefusalRule.of(r"\bI can'?t produce a full[- ](?:length )?chapter\b"),
    RefusalRule.of(r"\bI can(?:'?t|not) fulfill that request\b"),
    RefusalRule.of(r"\b(?:offering|provide) a shorter (?:scene|excerpt|version)\b"),
    RefusalRule.of(r"\bI cannot produce the output\b"),
    RefusalRule.of(r"\bas this request is framed\b"),
    RefusalRule.of(r"\bI can write a shorter version\b"),
    RefusalRule.of(r"\bwe can adapt the constraints\b"),
    RefusalRule.of(r"\bwhat I'?m allowed to generate\b"),
    RefusalRule.of(r"\bI can produce it in multiple\b"),
    RefusalRule.of(r"\bI (?:cannot|can'?t) follow\b"),
    RefusalRule.of(r"\bI can'?t comply\b"),
    RefusalRule.of(r"\bI'?m required to (?:warn|flag|note)\b"),
    RefusalRule.of(r"\b(?:choose|select) (?:one|which) (?:of|option)"),
    RefusalRule.of(r"\bsafety (?:rules|requirements|guidelines|constraints)\b"),
    RefusalRule.of(r"\boverride (?:those|these|my|safety) (?:requirements|rules|constraints)\b"),
    RefusalRule.of(r"\bTo continue,? choose\b"),
    RefusalRule.of(r"\bI \*?can\*? still (?:help|write|produce)\b"),
    RefusalRule.of(r"\bviolate safety\b"),
    RefusalRule.of(r"\bexceeds? safe output\b"),
    RefusalRule.of(r"\bprohibition on (?:acknowledging|offering)\b"),
    RefusalRule.of(r"\bdirect conflict with\b"),
    RefusalRule.of(r"\b(?:all are safe|safely sized)\b"),
]

# paragraphs that are scaffolding of a refusal rather than prose
_ARTIFACTS: Sequence[re.Pattern] = (
    re.compile(r"^\d+\.\s"),
    re.compile(r"^(?:Just tell me|Which option|If you'?d like|However|Or,? if|I \*?can\*?)", re.I),
    re.compile(r"^\*\*(?:Option|Multi|Shorter|Condensed)", re.I),
    re.compile(r"^-{3,}$"),
)
_BULLET_RE = re.compile(r"^(?:•|\*|-|\d+\.)\s")
_OPTION_WORDS_RE = re.compile(
    r"\b(?:shorter|condensed|outline|serialized|multi-message|rewrite|focused"
    r"|option|choose|version|alternative)\b",
    re.I,
)
_PARA_SEP_RE = re.compile(r"(\n\s*\n)")


class RefusalClassifier:
    """Declarative rule set; swap `rules` to tune detection without touching the pipeline."""

    def __init__(
        self,
        rules: Iterable[RefusalRule] | None = None,
        threshold: int = 2,
        head_chars: int = 500,
    ) -> None:
        self.rules = list(DEFAULT_RULES if rules is None else rules)
        self.threshold = threshold
        self.head_chars = head_chars

    def score(self, text: str) -> int:
        return sum(r.weight for r in self.rules if r.pattern.search(text))

    def classify(self, text: str) -> RefusalVerdict:
        trimmed = text.strip()
        if not trimmed:
            return RefusalVerdict(False, trimmed)
        head = smart_quotes(trimmed)[: self.head_chars]
        if self.score(head) < self.threshold:
            return RefusalVerdict(False, trimmed)
        return RefusalVerdict(True, self._salvage(trimmed))

    def scrub(self, text: str) -> str:
        if not text.strip():
            return text
        # each kept paragraph keeps the separator that preceded it
        pieces = _PARA_SEP_RE.split(text.replace("\r\n", "\n").replace("\r", "\n"))
        kept: List[str] = []
        for i in range(0, len(pieces), 2):
            para = pieces[i]
            stripped = para.strip()
            if stripped:
                normalized = smart_quotes(stripped)
                if self.score(normalized) >= self.threshold or self._is_option_list(stripped, normalized):
                    continue
            if kept:
                kept.append(pieces[i - 1])
            kept.append(para)
        return "".join(kept).strip()

    # ------------------------------------------------------------------
    def _salvage(self, text: str) -> str:
        paragraphs = split_paragraphs(text)
        for i, para in enumerate(paragraphs):
            p = smart_quotes(para.strip())
            if not p or any(a.search(p) for a in _ARTIFACTS) or self.score(p) > 0:
                continue
            if i == 0:
                break
            return "\n\n".join(paragraphs[i:]).strip()
        return text

    @staticmethod
    def _is_option_list(raw: str, normalized: str) -> bool:
        return bool(_BULLET_RE.match(raw) and _OPTION_WORDS_RE.search(normalized))


_default = RefusalClassifier()


def classify(text: str) -> RefusalVerdict:
    return _default.classify(text)


def scrub(text: str) -> str:
    return _default.scrub(text)
