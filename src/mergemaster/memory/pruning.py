from __future__ import annotations

from datetime import UTC, datetime, timedelta

from loguru import logger

from mergemaster.memory.store import MemoryStore


def prune_sessions(
    store: MemoryStore,
    *,
    max_sessions: int,
    retention_days: int,
) -> int:
    """Delete stale sessions and their checkpoints. Returns the number removed."""
    now = datetime.now(UTC)
    cutoff = int((now - timedelta(days=max(1, retention_days))).timestamp() * 1000)

    with store.lock:
        expired = store.execute(
            "SELECT session_id FROM session_metadata WHERE last_activity < ?",
            (cutoff,),
        ).fetchall()
        doomed = [str(row["session_id"]) for row in expired]

        if max_sessions > 0:
            overflow = store.execute(
                """
                SELECT session_id
                FROM session_metadata
                WHERE last_activity >= ?
                ORDER BY last_activity DESC
                LIMIT -1 OFFSET ?
                """,
                (cutoff, max_sessions),
            ).fetchall()
            doomed.extend(str(row["session_id"]) for row in overflow)

        if doomed:
            params = [(session_id,) for session_id in doomed]
            store.executemany("DELETE FROM checkpoints WHERE thread_id = ?", params)
            store.executemany("DELETE FROM session_metadata WHERE session_id = ?", params)
        store.commit()

    if doomed:
        logger.info(f"Pruned {len(doomed)} stale session(s)")
    return len(doomed)
