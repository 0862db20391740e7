from __future__ import annotations

import time
from dataclasses import dataclass

from mergemaster.memory.store import MemoryStore


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class SessionMetadata:
    session_id: str
    created_at: int
    last_activity: int
    name: str | None = None


def touch_session(store: MemoryStore, session_id: str, name: str | None = None, now: int | None = None) -> None:
    """Upsert the metadata row. Does not commit."""
    timestamp = now_ms() if now is None else now
    store.execute(
        """
        INSERT INTO session_metadata (session_id, created_at, last_activity, name)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(session_id) DO UPDATE SET
            name = COALESCE(excluded.name, session_metadata.name),
            last_activity = excluded.last_activity
        """,
        (session_id, timestamp, timestamp, name),
    )


class SessionMetadataStore:
    def __init__(self, store: MemoryStore):
        self._store = store

    def record_start(self, session_id: str, name: str | None = None) -> None:
        with self._store.lock:
            touch_session(self._store, session_id, name)
            self._store.commit()

    def record_activity(self, session_id: str) -> None:
        with self._store.lock:
            touch_session(self._store, session_id)
            self._store.commit()

    def get(self, session_id: str) -> SessionMetadata | None:
        with self._store.lock:
            row = self._store.execute(
                "SELECT * FROM session_metadata WHERE session_id = ? LIMIT 1",
                (session_id,),
            ).fetchone()
        if row is None:
            return None
        return _from_row(row)

    def list(self, *, limit: int = 50) -> list[SessionMetadata]:
        with self._store.lock:
            rows = self._store.execute(
                """
                SELECT session_id, created_at, last_activity, name
                FROM session_metadata
                ORDER BY last_activity DESC, created_at DESC
                LIMIT ?
                """,
                (max(1, limit),),
            ).fetchall()
        return [_from_row(row) for row in rows]

    def rename(self, session_id: str, name: str) -> bool:
        with self._store.lock:
            cursor = self._store.execute(
                "UPDATE session_metadata SET name = ?, last_activity = ? WHERE session_id = ?",
                (name.strip(), now_ms(), session_id),
            )
            self._store.commit()
        return cursor.rowcount > 0

    def delete(self, session_id: str) -> bool:
        """Remove the session and every checkpoint of its thread."""
        with self._store.lock:
            self._store.execute("DELETE FROM checkpoints WHERE thread_id = ?", (session_id,))
            cursor = self._store.execute("DELETE FROM session_metadata WHERE session_id = ?", (session_id,))
            self._store.commit()
        return cursor.rowcount > 0


def _from_row(row) -> SessionMetadata:
    return SessionMetadata(
        session_id=str(row["session_id"]),
        created_at=int(row["created_at"]),
        last_activity=int(row["last_activity"]),
        name=row["name"],
    )
