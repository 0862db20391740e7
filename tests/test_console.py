import asyncio
import io
import unittest
from contextlib import redirect_stdout
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

from mergemaster.approval_types import ApprovalRequest, ProcessExit
from mergemaster.console import ConsoleFrontend


class _RecordingGateway:
    def __init__(self, live: bool = True) -> None:
        self.live = live
        self.sent: list[str] = []
        self.attached: list[str] = []
        self.approve = AsyncMock(return_value=True)
        self.denied: list[str] = []

    def send_input(self, data: str) -> bool:
        if not self.live:
            return False
        self.sent.append(data)
        return True

    def attach(self, tool_use_id: str) -> bool:
        self.attached.append(tool_use_id)
        return self.live

    def resize(self, cols: int, rows: int) -> bool:
        return self.live

    def deny(self, tool_use_id: str) -> bool:
        self.denied.append(tool_use_id)
        return True


def _frontend(stdin: str = "", live: bool = True) -> tuple[ConsoleFrontend, _RecordingGateway]:
    gateway = _RecordingGateway(live)
    frontend = ConsoleFrontend(stdin=io.StringIO(stdin))
    frontend.bind(SimpleNamespace(gateway=gateway))
    return frontend, gateway


class InputForwardingTests(unittest.TestCase):
    def test_typed_line_goes_to_the_attached_command(self) -> None:
        frontend, gateway = _frontend("yes please\n")
        frontend._forward_id = "u1"

        frontend._forward_input()

        self.assertEqual(["yes please\n"], gateway.sent)
        self.assertEqual("u1", frontend._forward_id)

    def test_end_of_input_stops_forwarding(self) -> None:
        frontend, gateway = _frontend("")
        frontend._forward_id = "u1"

        frontend._forward_input()

        self.assertEqual([], gateway.sent)
        self.assertIsNone(frontend._forward_id)

    def test_failed_send_stops_forwarding(self) -> None:
        frontend, _ = _frontend("late\n", live=False)
        frontend._forward_id = "u1"

        frontend._forward_input()

        self.assertIsNone(frontend._forward_id)

    def test_exit_of_the_forwarded_command_stops_forwarding(self) -> None:
        frontend, _ = _frontend()
        frontend._forward_id = "u1"

        with redirect_stdout(io.StringIO()):
            frontend._on_process_exit("other", ProcessExit(exit_code=0))
        self.assertEqual("u1", frontend._forward_id)

        with redirect_stdout(io.StringIO()):
            frontend._on_process_exit("u1", ProcessExit(exit_code=0))
        self.assertIsNone(frontend._forward_id)


class ApprovalPromptTests(unittest.TestCase):
    def test_approved_command_is_attached_for_input(self) -> None:
        async def scenario() -> tuple[ConsoleFrontend, _RecordingGateway]:
            frontend, gateway = _frontend()
            with patch("mergemaster.console.ask_yes_no", AsyncMock(return_value=True)):
                await frontend._prompt_approval("u1", ApprovalRequest("python manage.py migrate"))
            return frontend, gateway

        with redirect_stdout(io.StringIO()):
            frontend, gateway = asyncio.run(scenario())

        gateway.approve.assert_awaited_once()
        self.assertEqual(["u1"], gateway.attached)
        self.assertEqual("u1", frontend._forward_id)

    def test_denied_command_is_not_attached(self) -> None:
        async def scenario() -> tuple[ConsoleFrontend, _RecordingGateway]:
            frontend, gateway = _frontend()
            with patch("mergemaster.console.ask_yes_no", AsyncMock(return_value=False)):
                await frontend._prompt_approval("u1", ApprovalRequest("rm -rf build"))
            return frontend, gateway

        with redirect_stdout(io.StringIO()):
            frontend, gateway = asyncio.run(scenario())

        self.assertEqual(["u1"], gateway.denied)
        self.assertEqual([], gateway.attached)
        self.assertIsNone(frontend._forward_id)


if __name__ == "__main__":
    unittest.main()
