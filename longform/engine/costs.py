"""
Cost ledger + price table + pre-run estimate.

Prices are USD per 1M tokens (input, output).  Unknown models cost 0 so an
unlisted deployment never breaks a run; `estimate_cost` warns about them.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Tuple

from longform.config import SessionConfig
from longform.models import CostEntry, CostEstimate, StepEstimate, Usage

logger = logging.getLogger(__name__)

# ─── token price table (USD / 1M tokens: input, output) ──────────────────
_COST: Dict[str, Tuple[float, float]] = {
    "gpt-4.1":        (2.0, 8.0),
    "gpt-4.1-mini":   (0.4, 1.6),
    "gpt-4.1-nano":   (0.1, 0.4),
    "gpt-4o":         (2.5, 10.0),
    "gpt-4o-mini":    (0.15, 0.6),
    "gpt-4-turbo":    (10.0, 30.0),
    "o3":             (2.0, 8.0),
    "o3-mini":        (1.1, 4.4),
    "o4-mini":        (1.1, 4.4),
    "deepseek-chat":  (0.28, 0.42),
    "mistral-large-latest": (0.5, 1.5),
    "mistral-small-latest": (0.06, 0.18),
}

# rough tokens per step relative to one chapter's text (input, output)
_STEP_MULTIPLIERS: Dict[str, Tuple[float, float]] = {
    "outline":    (0.5, 2.0),
    "planning":   (2.0, 1.5),
    "writing":    (3.0, 4.0),
    "editing":    (5.0, 1.0),
    "continuity": (4.0, 2.0),
}
TOKENS_PER_WORD = 1.3


def pricing_for(model: str) -> Tuple[float, float] | None:
    return _COST.get(model)


def calculate_cost(model: str, usage: Usage) -> float:
    price = _COST.get(model)
    if price is None:
        return 0.0
    cost = usage.input_tokens / 1_000_000 * price[0] + usage.output_tokens / 1_000_000 * price[1]
    return round(cost, 6)


class CostLedger:
    """Append-only record of every model call."""

    def __init__(self, entries: List[CostEntry] | None = None) -> None:
        self._entries: List[CostEntry] = list(entries or [])

    def record(self, step: str, model: str, usage: Usage) -> CostEntry:
        entry = CostEntry(
            step=step,
            model=model,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            cost=calculate_cost(model, usage),
        )
        self._entries.append(entry)
        logger.info("[LLM] %s  step=%s  p=%d  c=%d  ->  $%.4f",
                    model, step, entry.input_tokens, entry.output_tokens, entry.cost)
        return entry

    @property
    def entries(self) -> List[CostEntry]:
        return list(self._entries)

    @property
    def total(self) -> float:
        return round(sum(e.cost for e in self._entries), 6)

    def mark(self) -> int:
        """Position to pass to `since()` later."""
        return len(self._entries)

    def since(self, mark: int) -> List[CostEntry]:
        return self._entries[mark:]

    def total_since(self, mark: int) -> float:
        return round(sum(e.cost for e in self._entries[mark:]), 6)

    def by_step(self) -> Dict[str, Dict[str, float]]:
        out: Dict[str, Dict[str, float]] = {}
        for e in self._entries:
            row = out.setdefault(e.step, {"cost": 0.0, "input_tokens": 0, "output_tokens": 0})
            row["cost"] += e.cost
            row["input_tokens"] += e.input_tokens
            row["output_tokens"] += e.output_tokens
        return out

    def __len__(self) -> int:
        return len(self._entries)


def estimate_cost(config: SessionConfig) -> CostEstimate:
    """Estimate a whole run before spending anything."""
    models = config.resolved_models()
    per_chapter = config.target_words / config.chapters * TOKENS_PER_WORD

    breakdown: List[StepEstimate] = []
    warnings: List[str] = []
    tot_in = tot_out = 0
    tot_cost = 0.0

    for step, (mul_in, mul_out) in _STEP_MULTIPLIERS.items():
        cfg = models.get(step)
        if cfg is None:
            warnings.append(f'No model configured for "{step}"; step skipped in the estimate')
            continue
        if pricing_for(cfg.model) is None:
            warnings.append(f'No pricing data for model "{cfg.model}"; cost may be inaccurate')
            continue

        iterations = 1 if step == "outline" else config.chapters
        # assume ~30% of chapters go through each extra edit cycle
        rework = 1 + config.max_edit_cycles * 0.3 if step in ("writing", "editing") else 1
        n_in = round(per_chapter * mul_in * iterations * rework)
        n_out = round(per_chapter * mul_out * iterations * rework)
        cost = calculate_cost(cfg.model, Usage(input_tokens=n_in, output_tokens=n_out))

        tot_in += n_in
        tot_out += n_out
        tot_cost += cost
        breakdown.append(StepEstimate(step=step, model=cfg.model, estimated_cost=round(cost, 4)))

    return CostEstimate(
        estimated_input_tokens=tot_in,
        estimated_output_tokens=tot_out,
        estimated_cost=round(tot_cost, 4),
        breakdown=breakdown,
        warnings=warnings,
    )
