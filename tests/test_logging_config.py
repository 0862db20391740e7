import tempfile
import unittest
from pathlib import Path

from loguru import logger

from mergemaster.logging_config import setup_logging


class SetupLoggingTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.addCleanup(logger.remove)

    def _file_consumer(self) -> dict:
        return {"type": "file", "path": str(Path(self._tmp.name) / "logs" / "{session_id}.log")}

    def test_file_sink_is_named_after_the_session(self) -> None:
        descriptions = setup_logging(consumers=[self._file_consumer()], session_id="abc123")

        logger.info("checkpoint saved")
        logger.remove()

        log_file = Path(self._tmp.name) / "logs" / "abc123.log"
        self.assertTrue(log_file.exists())
        text = log_file.read_text(encoding="utf-8")
        self.assertIn("checkpoint saved", text)
        self.assertIn("| abc123 |", text)
        self.assertEqual([f"file ({log_file}, INFO)"], descriptions)

    def test_verbose_forces_debug(self) -> None:
        descriptions = setup_logging(level="WARNING", consumers=[self._file_consumer()], verbose=True, session_id="s")

        logger.debug("pruned history")
        logger.remove()

        self.assertTrue(descriptions[0].endswith("DEBUG)"))
        text = (Path(self._tmp.name) / "logs" / "s.log").read_text(encoding="utf-8")
        self.assertIn("pruned history", text)

    def test_unknown_consumer_is_skipped(self) -> None:
        descriptions = setup_logging(consumers=[{"type": "syslog"}, self._file_consumer()])

        self.assertEqual(1, len(descriptions))
        self.assertIn("no-session.log", descriptions[0])


if __name__ == "__main__":
    unittest.main()
