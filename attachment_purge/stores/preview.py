"""
In-memory preview store.

Holds the confirm dialog's data for exactly as long as the dialog is open.
"""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType
from typing import Any


class InMemoryPreviewStore:
    """Process-local key -> preview mapping."""

    def __init__(self) -> None:
        self._entries: dict[str, Mapping[str, Any]] = {}

    async def put(self, key: str, value: Mapping[str, Any]) -> None:
        if key in self._entries:
            raise KeyError(f'Preview key already in use: {key}')
        self._entries[key] = MappingProxyType(dict(value))

    async def get(self, key: str) -> Mapping[str, Any] | None:
        return self._entries.get(key)

    async def remove(self, key: str) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)
