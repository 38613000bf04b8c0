"""Persistence port — where the engine's serialized state lives."""

from __future__ import annotations

from typing import Protocol


class PersistenceStore(Protocol):
    """Stores one serialized state blob. Durability is the store's problem."""

    def save(self, serialized_state: str) -> None: ...

    def load(self) -> str | None: ...
