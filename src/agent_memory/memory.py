"""Memory search service — the source of a working context's memory results."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass
class MemoryEntry:
    """A single long-term memory record."""

    key: str
    content: str
    timestamp: float = field(default_factory=time.time)
    session_id: str | None = None

    def render(self) -> str:
        return f"[{self.key}] {self.content}"


class MemoryService(ABC):
    """Abstract interface for memory backends."""

    @abstractmethod
    def store(self, key: str, content: str, session_id: str | None = None) -> None:
        """Persist a memory entry."""

    @abstractmethod
    def recall(
        self,
        query: str,
        limit: int = 5,
        session_id: str | None = None,
    ) -> list[MemoryEntry]:
        """Retrieve memories matching the query, most relevant first."""

    @abstractmethod
    def forget(self, key: str) -> bool:
        """Remove a memory entry by key. Returns True if found and removed."""


class InMemoryBackend(MemoryService):
    """Dict-based in-memory implementation (for testing and development)."""

    def __init__(self) -> None:
        self._store: dict[str, MemoryEntry] = {}

    def store(self, key: str, content: str, session_id: str | None = None) -> None:
        self._store[key] = MemoryEntry(key=key, content=content, session_id=session_id)

    def recall(
        self,
        query: str,
        limit: int = 5,
        session_id: str | None = None,
    ) -> list[MemoryEntry]:
        """Word-overlap matching; entries sharing more query words rank first."""
        query_words = {w for w in query.lower().split() if len(w) >= 3}
        if not query_words or limit <= 0:
            return []

        scored: list[tuple[int, MemoryEntry]] = []
        for entry in self._store.values():
            if session_id is not None and entry.session_id != session_id:
                continue
            entry_text = f"{entry.key} {entry.content}".lower()
            score = sum(1 for word in query_words if word in entry_text)
            if score:
                scored.append((score, entry))
        # Ties go to the most recent entry
        scored.sort(key=lambda pair: (pair[0], pair[1].timestamp), reverse=True)
        return [entry for _, entry in scored[:limit]]

    def forget(self, key: str) -> bool:
        return self._store.pop(key, None) is not None
