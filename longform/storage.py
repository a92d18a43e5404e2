"""
Session persistence collaborators.

Blobs are opaque JSON strings produced by ``BookSession.save``; a backend
only has to keep them by id.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Dict, List, Protocol

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"[^A-Za-z0-9_.-]")


class SessionStorage(Protocol):
    async def save(self, session_id: str, blob: str) -> None: ...

    async def load(self, session_id: str) -> str | None: ...

    async def delete(self, session_id: str) -> None: ...

    async def list(self) -> List[str]: ...


class MemorySessionStorage:
    def __init__(self) -> None:
        self._blobs: Dict[str, str] = {}

    async def save(self, session_id: str, blob: str) -> None:
        self._blobs[session_id] = blob

    async def load(self, session_id: str) -> str | None:
        return self._blobs.get(session_id)

    async def delete(self, session_id: str) -> None:
        self._blobs.pop(session_id, None)

    async def list(self) -> List[str]:
        return sorted(self._blobs)


class JsonFileSessionStorage:
    """One ``<id>.json`` file per session under *directory*."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, session_id: str) -> Path:
        return self.directory / f"{_SAFE_ID.sub('_', session_id)}.json"

    async def save(self, session_id: str, blob: str) -> None:
        path = self._path(session_id)
        path.write_text(blob, encoding="utf-8")
        logger.info("Session %s saved → %s", session_id, path)

    async def load(self, session_id: str) -> str | None:
        path = self._path(session_id)
        return path.read_text(encoding="utf-8") if path.exists() else None

    async def delete(self, session_id: str) -> None:
        self._path(session_id).unlink(missing_ok=True)

    async def list(self) -> List[str]:
        return sorted(p.stem for p in self.directory.glob("*.json"))
