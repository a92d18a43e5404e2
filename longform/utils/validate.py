"""
Schema-validation helpers + light post-processing of model JSON.

Usage (inside other modules):
    from longform.utils.validate import parse_structured
    plan = parse_structured(raw_text, DetailedChapterPlan)   # raises StructuredOutputError
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Type, TypeVar

import jsonschema
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from longform.errors import StructuredOutputError

T = TypeVar("T", bound=BaseModel)

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$", re.S)


# ─── internal helpers ────────────────────────────────────────────────────
def _maybe_unwrap(obj: Any, schema: Dict[str, Any]) -> Any:
    """
    LLMs sometimes wrap the real payload:

        {"outline": { ... }}

    Accept a single-key wrapper whose key is not itself a schema property.
    Otherwise return the object as-is.
    """
    if isinstance(obj, dict) and len(obj) == 1:
        key, value = next(iter(obj.items()))
        if key not in schema.get("properties", {}) and isinstance(value, dict):
            return value
    return obj


def _sanitise(raw: str) -> str:
    raw = raw.strip()
    if raw.startswith("```"):
        raw = _FENCE_RE.sub("", raw).strip()
    if raw and not raw.startswith("{"):
        brace = raw.find("{")
        raw = raw[brace:] if brace != -1 else ""
    end = raw.rfind("}")
    return raw[: end + 1] if end != -1 else raw


# ─── public API ──────────────────────────────────────────────────────────
def schema_for(model_cls: Type[BaseModel]) -> Dict[str, Any]:
    return model_cls.model_json_schema()


def parse_structured(raw: str, model_cls: Type[T]) -> T:
    """Parse *raw* model output into *model_cls*; jsonschema first, then pydantic."""
    text = _sanitise(raw)
    if not text:
        raise StructuredOutputError(f"Empty JSON response for {model_cls.__name__}")

    schema = schema_for(model_cls)
    try:
        data = _maybe_unwrap(json.loads(text), schema)
    except json.JSONDecodeError as exc:
        raise StructuredOutputError(f"Invalid JSON for {model_cls.__name__}: {exc}") from exc

    try:
        jsonschema.validate(data, schema)
    except jsonschema.ValidationError as exc:
        raise StructuredOutputError(
            f"Schema error for {model_cls.__name__}: {exc.message}"
        ) from exc

    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as exc:
        raise StructuredOutputError(f"Invalid {model_cls.__name__}: {exc}") from exc
