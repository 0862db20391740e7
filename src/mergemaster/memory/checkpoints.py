from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from loguru import logger

from mergemaster.errors import PersistenceError
from mergemaster.memory.session_manager import now_ms, touch_session
from mergemaster.memory.store import MemoryStore
from mergemaster.session_state import SessionState


@dataclass(frozen=True)
class Checkpoint:
    thread_id: str
    checkpoint_id: str
    state: SessionState
    created_at: int
    parent_checkpoint_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class CheckpointStore:
    """Durable SessionState snapshots keyed by (thread_id, checkpoint_id).

    Open file contents are not stored, only their paths; the cache is
    rebuilt by later reads after a resume.
    """

    def __init__(self, store: MemoryStore):
        self._store = store

    def put(
        self,
        thread_id: str,
        state: SessionState,
        *,
        checkpoint_id: str | None = None,
        parent_checkpoint_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        cid = checkpoint_id or str(uuid4())
        payload = json.dumps({"state": state.to_dict(), "metadata": metadata or {}}, ensure_ascii=True)
        now = now_ms()
        try:
            with self._store.lock:
                self._store.execute(
                    """
                    INSERT INTO checkpoints (thread_id, checkpoint_id, checkpoint_data, parent_checkpoint_id, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(thread_id, checkpoint_id) DO UPDATE SET
                        checkpoint_data = excluded.checkpoint_data,
                        parent_checkpoint_id = excluded.parent_checkpoint_id,
                        created_at = excluded.created_at
                    """,
                    (thread_id, cid, payload, parent_checkpoint_id, now),
                )
                touch_session(self._store, thread_id, now=now)
                self._store.commit()
        except sqlite3.Error as ex:
            with self._store.lock:
                self._store.rollback()
            raise PersistenceError(f"Failed to write checkpoint for {thread_id}: {ex}") from ex
        logger.debug(f"Checkpoint {cid} written for thread {thread_id} ({len(payload):,} bytes)")
        return cid

    def get_tuple(self, thread_id: str, checkpoint_id: str | None = None) -> Checkpoint | None:
        """Return the requested checkpoint, or the most recent one of the thread."""
        with self._store.lock:
            if checkpoint_id:
                row = self._store.execute(
                    "SELECT * FROM checkpoints WHERE thread_id = ? AND checkpoint_id = ?",
                    (thread_id, checkpoint_id),
                ).fetchone()
            else:
                row = self._store.execute(
                    """
                    SELECT * FROM checkpoints
                    WHERE thread_id = ?
                    ORDER BY created_at DESC, rowid DESC
                    LIMIT 1
                    """,
                    (thread_id,),
                ).fetchone()
        if row is None:
            return None
        return self._from_row(row)

    def get(self, thread_id: str, checkpoint_id: str | None = None) -> SessionState | None:
        checkpoint = self.get_tuple(thread_id, checkpoint_id)
        return checkpoint.state if checkpoint is not None else None

    def list(self, thread_id: str, *, limit: int | None = None) -> list[Checkpoint]:
        with self._store.lock:
            rows = self._store.execute(
                """
                SELECT * FROM checkpoints
                WHERE thread_id = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
                """,
                (thread_id, limit if limit and limit > 0 else -1),
            ).fetchall()
        checkpoints = []
        for row in rows:
            checkpoint = self._from_row(row)
            if checkpoint is not None:
                checkpoints.append(checkpoint)
        return checkpoints

    def delete_thread(self, thread_id: str) -> None:
        with self._store.lock:
            self._store.execute("DELETE FROM checkpoints WHERE thread_id = ?", (thread_id,))
            self._store.commit()

    @staticmethod
    def _from_row(row: sqlite3.Row) -> Checkpoint | None:
        try:
            data = json.loads(row["checkpoint_data"])
            state = SessionState.from_dict(data.get("state") or {})
        except (ValueError, KeyError, TypeError) as ex:
            logger.warning(f"Unreadable checkpoint {row['checkpoint_id']} in thread {row['thread_id']}: {ex}")
            return None
        return Checkpoint(
            thread_id=str(row["thread_id"]),
            checkpoint_id=str(row["checkpoint_id"]),
            state=state,
            created_at=int(row["created_at"]),
            parent_checkpoint_id=row["parent_checkpoint_id"],
            metadata=data.get("metadata") or {},
        )
