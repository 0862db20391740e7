import unittest
from datetime import UTC, datetime, timedelta

from mergemaster.memory import prune_sessions
from mergemaster.session_state import SessionState
from tests.memory.base import MemoryStoreTestCase


def _ms(days_ago: float) -> int:
    return int((datetime.now(UTC) - timedelta(days=days_ago)).timestamp() * 1000)


class PruningTests(MemoryStoreTestCase):
    def _age(self, session_id: str, days_ago: float) -> None:
        self._store.execute(
            "UPDATE session_metadata SET last_activity = ? WHERE session_id = ?",
            (_ms(days_ago), session_id),
        )
        self._store.commit()

    def test_retention_days_prunes_old_sessions_and_checkpoints(self) -> None:
        self._checkpoints.put("old", SessionState())
        self._checkpoints.put("fresh", SessionState())
        self._age("old", 40)

        removed = prune_sessions(self._store, max_sessions=200, retention_days=30)

        self.assertEqual(1, removed)
        self.assertIsNone(self._sessions.get("old"))
        self.assertIsNone(self._checkpoints.get_tuple("old"))
        self.assertIsNotNone(self._checkpoints.get_tuple("fresh"))

    def test_max_sessions_keeps_most_recent(self) -> None:
        for i, sid in enumerate(["s1", "s2", "s3"]):
            self._sessions.record_start(sid)
            self._age(sid, 3 - i)

        removed = prune_sessions(self._store, max_sessions=2, retention_days=30)

        self.assertEqual(1, removed)
        self.assertEqual({"s2", "s3"}, {s.session_id for s in self._sessions.list()})

    def test_nothing_to_prune(self) -> None:
        self._sessions.record_start("s1")

        self.assertEqual(0, prune_sessions(self._store, max_sessions=10, retention_days=30))


if __name__ == "__main__":
    unittest.main()
