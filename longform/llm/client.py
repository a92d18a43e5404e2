"""
Role-aware call helper shared by every pipeline step.

Each call resolves the role's model, applies its temperature / max-tokens,
awaits the generator and books a CostEntry in the ledger.
"""

from __future__ import annotations

from typing import Type, TypeVar

from pydantic import BaseModel

from longform.engine.costs import CostLedger
from longform.llm.base import TextGenerator
from longform.llm.registry import ModelRegistry

T = TypeVar("T", bound=BaseModel)


class LLMClient:
    def __init__(self, generator: TextGenerator, registry: ModelRegistry, ledger: CostLedger) -> None:
        self.generator = generator
        self.registry = registry
        self.ledger = ledger

    def has_role(self, role: str) -> bool:
        return self.registry.has(role)

    def max_tokens_for(self, role: str) -> int:
        return self.registry.resolve(role).max_tokens

    async def text(
        self,
        role: str,
        prompt: str,
        *,
        step: str,
        system: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        cfg = self.registry.resolve(role)
        result = await self.generator.generate_text(
            model=cfg.model,
            system=system,
            prompt=prompt,
            temperature=cfg.temperature if temperature is None else temperature,
            max_tokens=max_tokens or cfg.max_tokens,
        )
        self.ledger.record(step, cfg.model, result.usage)
        return result.text

    async def structured(
        self,
        role: str,
        prompt: str,
        schema: Type[T],
        *,
        step: str,
        system: str | None = None,
        max_tokens: int | None = None,
    ) -> T:
        cfg = self.registry.resolve(role)
        result = await self.generator.generate_structured(
            model=cfg.model,
            system=system,
            prompt=prompt,
            schema=schema,
            temperature=cfg.temperature,
            max_tokens=max_tokens or cfg.max_tokens,
        )
        self.ledger.record(step, cfg.model, result.usage)
        return result.object
