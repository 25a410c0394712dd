"""Async key-value stores for small pieces of persistent state."""

import tomllib
from pathlib import Path
from typing import Any, Protocol

import tomli_w

from backlog_sync.config import get_config_dir


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Any: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def remove(self, key: str) -> None: ...


class MemoryStore:
    """Process-local store; state is lost on exit."""

    def __init__(self) -> None:
        self._items: dict[str, Any] = {}

    async def get(self, key: str) -> Any:
        return self._items.get(key)

    async def set(self, key: str, value: Any) -> None:
        self._items[key] = value

    async def remove(self, key: str) -> None:
        self._items.pop(key, None)


def get_state_path() -> Path:
    """Get the persistent state file path."""
    return get_config_dir() / "state.toml"


class TomlFileStore:
    """Store backed by a TOML file, rewritten on every change."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or get_state_path()

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        with open(self.path, "rb") as f:
            return tomllib.load(f)

    def _dump(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "wb") as f:
            tomli_w.dump(data, f)

    async def get(self, key: str) -> Any:
        return self._load().get(key)

    async def set(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        self._dump(data)

    async def remove(self, key: str) -> None:
        data = self._load()
        if data.pop(key, None) is not None:
            self._dump(data)
