"""ArtifactStore — externalized storage for payloads referenced from a working context.

Only :class:`~agent_memory.working_context.ArtifactReference` handles (id,
name, type, summary) ever enter a context; the payload stays in the store.
"""

from __future__ import annotations

import hashlib
import sqlite3
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from .working_context import ArtifactReference


@dataclass
class _StoredArtifact:
    reference: ArtifactReference
    session_id: str
    content: bytes
    created_at: float


def _make_summary(content: bytes, max_len: int = 200) -> str:
    """Generate summary: first ~max_len chars, truncated at word boundary."""
    text = content.decode("utf-8", errors="replace")
    if len(text) <= max_len:
        return text
    truncated = text[:max_len]
    last_space = truncated.rfind(" ")
    if last_space > max_len // 2:
        truncated = truncated[:last_space]
    return truncated + "..."


def _artifact_id(session_id: str, name: str, content: bytes) -> str:
    digest = hashlib.sha256()
    for part in (session_id.encode(), name.encode(), content):
        digest.update(len(part).to_bytes(8, "big"))
        digest.update(part)
    return digest.hexdigest()[:32]


def _to_bytes(content: bytes | str) -> bytes:
    return content.encode("utf-8") if isinstance(content, str) else content


class ArtifactStore(ABC):
    """Abstract per-session artifact store."""

    @abstractmethod
    def put(
        self,
        session_id: str,
        name: str,
        artifact_type: str,
        content: bytes | str,
        summary: str | None = None,
    ) -> ArtifactReference:
        """Store *content* and return its reference. Storing the same payload twice is idempotent."""

    @abstractmethod
    def get(self, artifact_id: str) -> bytes | None:
        ...

    @abstractmethod
    def list_references(self, session_id: str) -> list[ArtifactReference]:
        """References stored for *session_id*, oldest first."""

    @abstractmethod
    def delete(self, artifact_id: str) -> bool:
        ...


class InMemoryArtifactStore(ArtifactStore):
    """Dict-backed store (for testing and development)."""

    def __init__(self) -> None:
        self._artifacts: dict[str, _StoredArtifact] = {}

    def put(
        self,
        session_id: str,
        name: str,
        artifact_type: str,
        content: bytes | str,
        summary: str | None = None,
    ) -> ArtifactReference:
        data = _to_bytes(content)
        aid = _artifact_id(session_id, name, data)
        existing = self._artifacts.get(aid)
        if existing is not None:
            return existing.reference
        ref = ArtifactReference(
            id=aid,
            name=name,
            type=artifact_type,
            summary=summary if summary is not None else _make_summary(data),
        )
        self._artifacts[aid] = _StoredArtifact(
            reference=ref, session_id=session_id, content=data, created_at=time.time()
        )
        return ref

    def get(self, artifact_id: str) -> bytes | None:
        stored = self._artifacts.get(artifact_id)
        return stored.content if stored else None

    def list_references(self, session_id: str) -> list[ArtifactReference]:
        return [a.reference for a in self._artifacts.values() if a.session_id == session_id]

    def delete(self, artifact_id: str) -> bool:
        return self._artifacts.pop(artifact_id, None) is not None


class SqliteArtifactStore(ArtifactStore):
    """SQLite-backed artifact storage."""

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = str(db_path)
        self._conn = sqlite3.connect(self._db_path)
        self._conn.execute(
            """CREATE TABLE IF NOT EXISTS artifacts (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL,
                name TEXT NOT NULL,
                type TEXT NOT NULL,
                summary TEXT NOT NULL,
                content BLOB NOT NULL,
                created_at REAL NOT NULL
            )"""
        )
        self._conn.commit()

    def put(
        self,
        session_id: str,
        name: str,
        artifact_type: str,
        content: bytes | str,
        summary: str | None = None,
    ) -> ArtifactReference:
        data = _to_bytes(content)
        aid = _artifact_id(session_id, name, data)

        row = self._conn.execute(
            "SELECT name, type, summary FROM artifacts WHERE id = ?", (aid,)
        ).fetchone()
        if row:
            return ArtifactReference(id=aid, name=row[0], type=row[1], summary=row[2])

        ref = ArtifactReference(
            id=aid,
            name=name,
            type=artifact_type,
            summary=summary if summary is not None else _make_summary(data),
        )
        self._conn.execute(
            "INSERT INTO artifacts"
            " (id, session_id, name, type, summary, content, created_at)"
            " VALUES (?, ?, ?, ?, ?, ?, ?)",
            (aid, session_id, ref.name, ref.type, ref.summary, data, time.time()),
        )
        self._conn.commit()
        return ref

    def get(self, artifact_id: str) -> bytes | None:
        row = self._conn.execute(
            "SELECT content FROM artifacts WHERE id = ?", (artifact_id,)
        ).fetchone()
        return row[0] if row else None

    def list_references(self, session_id: str) -> list[ArtifactReference]:
        rows = self._conn.execute(
            "SELECT id, name, type, summary FROM artifacts"
            " WHERE session_id = ? ORDER BY created_at, rowid",
            (session_id,),
        ).fetchall()
        return [ArtifactReference(id=r[0], name=r[1], type=r[2], summary=r[3]) for r in rows]

    def delete(self, artifact_id: str) -> bool:
        cur = self._conn.execute("DELETE FROM artifacts WHERE id = ?", (artifact_id,))
        self._conn.commit()
        return cur.rowcount > 0

    def close(self) -> None:
        """Close the underlying database connection."""
        self._conn.close()
