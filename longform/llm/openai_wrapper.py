"""
openai-python ≥1.0 compatible TextGenerator
"""

from __future__ import annotations

import json
import logging
import os
from typing import Dict, List, Type

import dotenv
from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel

from longform.errors import GenerationError
from longform.llm.base import StructuredResult, TextResult
from longform.models import Usage
from longform.utils.validate import parse_structured, schema_for

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 600.0


class OpenAIGenerator:
    """Chat-completions adapter; reads OPENAI_API_KEY / OPENAI_BASE_URL from the env (.env ok)."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        client: AsyncOpenAI | None = None,
    ) -> None:
        dotenv.load_dotenv()
        self.client = client or AsyncOpenAI(
            api_key=api_key or os.getenv("OPENAI_API_KEY"),
            base_url=base_url or os.getenv("OPENAI_BASE_URL") or None,
            timeout=timeout,
        )

    @staticmethod
    def _messages(system: str | None, prompt: str) -> List[Dict[str, str]]:
        msgs = []
        if system:
            msgs.append({"role": "system", "content": system})
        msgs.append({"role": "user", "content": prompt})
        return msgs

    async def _complete(self, model: str, messages: List[Dict[str, str]], **kwargs) -> TextResult:
        try:
            response = await self.client.chat.completions.create(
                model=model, messages=messages, **kwargs
            )
        except OpenAIError as exc:
            raise GenerationError(f"{model}: {exc}") from exc

        usage = response.usage  # prompt_tokens, completion_tokens
        return TextResult(
            text=response.choices[0].message.content or "",
            usage=Usage(
                input_tokens=usage.prompt_tokens if usage else 0,
                output_tokens=usage.completion_tokens if usage else 0,
            ),
        )

    async def generate_text(
        self,
        *,
        model: str,
        system: str | None,
        prompt: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> TextResult:
        return await self._complete(
            model,
            self._messages(system, prompt),
            temperature=temperature,
            max_tokens=max_tokens,
        )

    async def generate_structured(
        self,
        *,
        model: str,
        system: str | None,
        prompt: str,
        schema: Type[BaseModel],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> StructuredResult:
        prompt = (
            prompt
            + "\n\nOutput *only* valid JSON (no markdown) matching this JSON schema:\n"
            + json.dumps(schema_for(schema), ensure_ascii=False)
        )
        result = await self._complete(
            model,
            self._messages(system, prompt),
            temperature=temperature,
            max_tokens=max_tokens,
            response_format={"type": "json_object"},
        )
        obj = parse_structured(result.text, schema)
        logger.debug("Parsed %s from %s", schema.__name__, model)
        return StructuredResult(object=obj, usage=result.usage)
