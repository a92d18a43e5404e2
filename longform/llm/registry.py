from __future__ import annotations

from typing import Dict, List

from longform.config import ModelConfig
from longform.errors import ModelNotConfiguredError


class ModelRegistry:
    """Role name → concrete model config."""

    def __init__(self, models: Dict[str, ModelConfig]) -> None:
        self._models = dict(models)

    def resolve(self, role: str) -> ModelConfig:
        try:
            return self._models[role]
        except KeyError:
            raise ModelNotConfiguredError(role) from None

    def has(self, role: str) -> bool:
        return role in self._models

    def roles(self) -> List[str]:
        return list(self._models)

    def model_ids(self) -> Dict[str, str]:
        return {role: cfg.model for role, cfg in self._models.items()}
