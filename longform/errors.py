"""
Exception taxonomy for the longform engine.

    LongformError
     ├─ ConfigurationError        fail fast, never retried
     │   ├─ ModelNotConfiguredError
     │   └─ UnknownPresetError
     ├─ GenerationError           provider / network failure of a model call
     │   └─ StructuredOutputError model JSON could not be parsed or validated
     ├─ ChapterGenerationError    a chapter run failed (chained to the cause)
     └─ SessionStateError         invariant violations, user-actionable
         ├─ OutlineMissingError
         ├─ OutlineNotApprovedError
         ├─ OutlineEditError
         ├─ ChapterNotFoundError
         └─ SessionNotFoundError

Refusals are not errors; see ``longform.utils.refusal``.
"""

from __future__ import annotations


class LongformError(RuntimeError):
    """Base class for every error raised by the package."""


class ConfigurationError(LongformError):
    """Raised when models, presets or credentials are missing or invalid."""


class ModelNotConfiguredError(ConfigurationError):
    """Raised when no model is mapped to a pipeline role."""

    def __init__(self, role: str) -> None:
        super().__init__(
            f'No model configured for role "{role}". '
            f'Configure it via models.{role} in the session config or choose a preset.'
        )
        self.role = role


class UnknownPresetError(ConfigurationError):
    """Raised when a preset name does not exist."""


class GenerationError(LongformError):
    """Raised when a model call fails at the provider or network level."""


class StructuredOutputError(GenerationError):
    """Raised when a structured model response is not valid JSON for its schema."""


class ChapterGenerationError(LongformError):
    """Raised when a chapter could not be generated; the chapter is marked failed."""

    def __init__(self, chapter: int, message: str) -> None:
        super().__init__(f"Chapter {chapter} failed: {message}")
        self.chapter = chapter


class SessionStateError(LongformError):
    """Raised when an operation is not valid for the current session state."""


class OutlineMissingError(SessionStateError):
    """Raised when an outline operation runs before an outline exists."""

    def __init__(self, action: str = "continue") -> None:
        super().__init__(f"No outline to {action}. Call generate_outline() first.")


class OutlineNotApprovedError(SessionStateError):
    """Raised when chapter work is requested before the outline is approved."""

    def __init__(self) -> None:
        super().__init__(
            "Outline must be approved before generating chapters. Call approve_outline() first."
        )


class OutlineEditError(SessionStateError):
    """Raised when a structural outline edit cannot be applied."""


class ChapterNotFoundError(SessionStateError):
    """Raised when a chapter number is not part of the outline or not written yet."""


class SessionNotFoundError(SessionStateError):
    """Raised when a saved session id is unknown to the storage backend."""
