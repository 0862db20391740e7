from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import Any

DEFAULT_DB_PATH = ".agent/checkpoints.db"


class MemoryStore:
    """Thin wrapper over the sqlite connection shared by the checkpoint tables.

    Writes may come from a worker thread (checkpoints are persisted through
    ``asyncio.to_thread``); callers hold ``lock`` around each unit of work.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._lock = threading.RLock()
        self._initialize_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def close(self) -> None:
        self._conn.close()

    def execute(self, query: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        return self._conn.execute(query, params)

    def executemany(self, query: str, seq_of_params: list[tuple[Any, ...]]) -> sqlite3.Cursor:
        return self._conn.executemany(query, seq_of_params)

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def _initialize_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS checkpoints (
                thread_id TEXT NOT NULL,
                checkpoint_id TEXT NOT NULL,
                checkpoint_data TEXT NOT NULL,
                parent_checkpoint_id TEXT,
                created_at INTEGER NOT NULL,
                PRIMARY KEY (thread_id, checkpoint_id)
            );

            CREATE TABLE IF NOT EXISTS session_metadata (
                session_id TEXT PRIMARY KEY,
                created_at INTEGER NOT NULL,
                last_activity INTEGER NOT NULL,
                name TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_checkpoints_thread_parent
                ON checkpoints(thread_id, parent_checkpoint_id);
            CREATE INDEX IF NOT EXISTS idx_checkpoints_thread_created
                ON checkpoints(thread_id, created_at);
            CREATE INDEX IF NOT EXISTS idx_session_metadata_activity
                ON session_metadata(last_activity);
            """
        )
        self._conn.commit()
