"""
Generation collaborator interface.

Anything that can turn (system, prompt) into text, or into a validated
pydantic object, can drive the engine.  Implementations must let provider
errors propagate; the engine decides what is fatal.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Type, TypeVar

from pydantic import BaseModel

from longform.models import Usage

T = TypeVar("T", bound=BaseModel)


@dataclass
class TextResult:
    text: str
    usage: Usage


@dataclass
class StructuredResult:
    object: BaseModel
    usage: Usage


class TextGenerator(Protocol):
    async def generate_text(
        self,
        *,
        model: str,
        system: str | None,
        prompt: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> TextResult: ...

    async def generate_structured(
        self,
        *,
        model: str,
        system: str | None,
        prompt: str,
        schema: Type[T],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> StructuredResult: ...
