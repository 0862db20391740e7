import unittest
from unittest.mock import patch

from mergemaster.session_state import SessionState
from tests.memory.base import MemoryStoreTestCase


class SessionMetadataStoreTests(MemoryStoreTestCase):
    def test_record_start_creates_row_once(self) -> None:
        with patch("mergemaster.memory.session_manager.now_ms", return_value=100):
            self._sessions.record_start("s1", "first")
        with patch("mergemaster.memory.session_manager.now_ms", return_value=200):
            self._sessions.record_start("s1")

        session = self._sessions.get("s1")

        self.assertEqual(100, session.created_at)
        self.assertEqual(200, session.last_activity)
        self.assertEqual("first", session.name)

    def test_list_orders_by_last_activity(self) -> None:
        with patch("mergemaster.memory.session_manager.now_ms", side_effect=[1, 2, 3]):
            self._sessions.record_start("old")
            self._sessions.record_start("new")
            self._sessions.record_activity("old")

        self.assertEqual(["old", "new"], [s.session_id for s in self._sessions.list()])
        self.assertEqual(["old"], [s.session_id for s in self._sessions.list(limit=1)])

    def test_rename(self) -> None:
        self._sessions.record_start("s1")

        self.assertTrue(self._sessions.rename("s1", "  Fix login  "))
        self.assertEqual("Fix login", self._sessions.get("s1").name)
        self.assertFalse(self._sessions.rename("missing", "x"))

    def test_delete_removes_checkpoints(self) -> None:
        self._checkpoints.put("s1", SessionState())

        self.assertTrue(self._sessions.delete("s1"))
        self.assertIsNone(self._sessions.get("s1"))
        self.assertIsNone(self._checkpoints.get_tuple("s1"))
        self.assertFalse(self._sessions.delete("s1"))


if __name__ == "__main__":
    unittest.main()
