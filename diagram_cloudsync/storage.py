"""Local persistence used by the session manager."""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
from pathlib import Path
from typing import Any, Protocol

_LOGGER = logging.getLogger(__name__)


class SessionStorage(Protocol):
    """Key/value storage for serialized session records."""

    async def async_get(self, key: str) -> str | None: ...

    async def async_set(self, key: str, value: str) -> None: ...

    async def async_remove(self, key: str) -> None: ...


class DocumentCache(Protocol):
    """Local copy of the diagram store that must be dropped when the user changes."""

    async def async_invalidate(self) -> None: ...


class MemorySessionStorage:
    """In-process storage, mostly useful for tests and one-shot tools."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.data: dict[str, str] = dict(initial or {})

    async def async_get(self, key: str) -> str | None:
        return self.data.get(key)

    async def async_set(self, key: str, value: str) -> None:
        self.data[key] = value

    async def async_remove(self, key: str) -> None:
        self.data.pop(key, None)


def _load_json(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    return data if isinstance(data, dict) else {}


def _save_json(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as handle:
        json.dump(data, handle, indent=2)
    tmp.replace(path)


class JsonFileSessionStorage:
    """Store records as string values of a single JSON object on disk."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def async_get(self, key: str) -> str | None:
        async with self._lock:
            try:
                data = await asyncio.to_thread(_load_json, self.path)
            except ValueError:
                _LOGGER.warning("Ignoring unreadable session file %s", self.path)
                return None
        value = data.get(key)
        return value if isinstance(value, str) else None

    async def async_set(self, key: str, value: str) -> None:
        async with self._lock:
            try:
                data = await asyncio.to_thread(_load_json, self.path)
            except ValueError:
                data = {}
            data[key] = value
            await asyncio.to_thread(_save_json, self.path, data)

    async def async_remove(self, key: str) -> None:
        async with self._lock:
            try:
                data = await asyncio.to_thread(_load_json, self.path)
            except ValueError:
                data = {}
            if key not in data:
                return
            del data[key]
            await asyncio.to_thread(_save_json, self.path, data)


def _remove_path(path: Path) -> bool:
    if path.is_dir():
        shutil.rmtree(path)
        return True
    if path.exists():
        path.unlink()
        return True
    return False


class PathDocumentCache:
    """Diagram cache kept in a file or directory; invalidation deletes it."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    async def async_invalidate(self) -> None:
        removed = await asyncio.to_thread(_remove_path, self.path)
        if removed:
            _LOGGER.info("Local diagram cache %s deleted", self.path)


__all__ = [
    "DocumentCache",
    "JsonFileSessionStorage",
    "MemorySessionStorage",
    "PathDocumentCache",
    "SessionStorage",
]
