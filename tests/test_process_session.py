import asyncio
import os
import signal
import tempfile
import unittest
from unittest.mock import patch

from mergemaster.approval_types import ProcessExit
from mergemaster.errors import ProcessError
from mergemaster.process_session import PtyProcessSession, spawn_process_session


class _Capture:
    def __init__(self) -> None:
        self.chunks: list[str] = []
        self.exits: list[ProcessExit] = []

    @property
    def output(self) -> str:
        return "".join(self.chunks)


async def _spawn(command: str, capture: _Capture, *, timeout: float | None = 5.0, cwd: str | None = None):
    return await spawn_process_session(
        command,
        cwd,
        timeout_seconds=timeout,
        on_data=capture.chunks.append,
        on_exit=capture.exits.append,
    )


@unittest.skipUnless(os.name == "posix", "pty sessions are POSIX only")
@patch.dict(os.environ, {"SHELL": "/bin/sh"})
class PtyProcessSessionTests(unittest.TestCase):
    def test_output_and_exit_code_are_reported(self) -> None:
        async def scenario() -> None:
            capture = _Capture()
            session = await _spawn("echo hello; exit 3", capture)

            result = await asyncio.wait_for(session.wait(), 10)

            self.assertIsInstance(session, PtyProcessSession)
            self.assertEqual(ProcessExit(exit_code=3), result)
            self.assertIn("hello", capture.output)
            self.assertEqual([result], capture.exits)
            self.assertTrue(session.exited)

        asyncio.run(scenario())

    def test_timeout_kills_the_process_group(self) -> None:
        async def scenario() -> None:
            capture = _Capture()
            session = await _spawn("sleep 30", capture, timeout=0.3)

            result = await asyncio.wait_for(session.wait(), 10)

            self.assertTrue(result.timed_out)
            self.assertIsNone(result.exit_code)
            self.assertEqual(signal.SIGKILL, result.signal)
            self.assertEqual(1, len(capture.exits))

        asyncio.run(scenario())

    def test_natural_exit_cancels_the_timer(self) -> None:
        async def scenario() -> None:
            capture = _Capture()
            session = await _spawn("true", capture, timeout=0.5)

            result = await asyncio.wait_for(session.wait(), 10)
            self.assertIsNone(session._timer)
            await asyncio.sleep(0.8)

            self.assertEqual(ProcessExit(exit_code=0), result)
            self.assertEqual([result], capture.exits)

        asyncio.run(scenario())

    def test_split_utf8_sequence_is_decoded_whole(self) -> None:
        async def scenario() -> None:
            capture = _Capture()
            session = await _spawn(r"printf '\303'; sleep 0.2; printf '\251'", capture)

            await asyncio.wait_for(session.wait(), 10)

            self.assertIn("é", capture.output)
            self.assertNotIn("�", capture.output)

        asyncio.run(scenario())

    def test_input_reaches_the_process(self) -> None:
        async def scenario() -> None:
            capture = _Capture()
            session = await _spawn("read line; echo got:$line", capture)

            session.write("abc\n")
            result = await asyncio.wait_for(session.wait(), 10)

            self.assertEqual(0, result.exit_code)
            self.assertIn("got:abc", capture.output)

        asyncio.run(scenario())

    def test_write_and_resize_after_exit_raise(self) -> None:
        async def scenario() -> None:
            session = await _spawn("true", _Capture())
            await asyncio.wait_for(session.wait(), 10)

            with self.assertRaises(ProcessError):
                session.write("late\n")
            with self.assertRaises(ProcessError):
                session.resize(80, 24)

        asyncio.run(scenario())

    def test_resize_while_running(self) -> None:
        async def scenario() -> None:
            capture = _Capture()
            session = await _spawn("sleep 0.3; stty size", capture)

            session.resize(100, 40)
            await asyncio.wait_for(session.wait(), 10)

            self.assertIn("40 100", capture.output)

        asyncio.run(scenario())

    def test_dispose_kills_a_running_process(self) -> None:
        async def scenario() -> None:
            capture = _Capture()
            session = await _spawn("sleep 30", capture)

            session.dispose()
            result = await asyncio.wait_for(session.wait(), 10)

            self.assertFalse(result.timed_out)
            self.assertEqual(signal.SIGKILL, result.signal)

        asyncio.run(scenario())

    def test_missing_working_directory_is_a_process_error(self) -> None:
        async def scenario() -> None:
            with tempfile.TemporaryDirectory() as tmp:
                missing = os.path.join(tmp, "gone")
                with self.assertRaises(ProcessError):
                    await _spawn("true", _Capture(), cwd=missing)

        asyncio.run(scenario())


if __name__ == "__main__":
    unittest.main()
