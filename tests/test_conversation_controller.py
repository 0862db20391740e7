import asyncio
import unittest
from typing import Any

from mergemaster.approval import ApprovalGateway
from mergemaster.context_manager import ContextManager
from mergemaster.conversation_controller import (
    SKIPPED_TOOL_MESSAGE,
    ControllerState,
    ConversationController,
)
from mergemaster.errors import IterationCeilingError, PersistenceError, ProviderError
from mergemaster.messages import Message, TextBlock, ToolUseBlock
from mergemaster.tool_dispatcher import ToolDispatcher
from tests.fakes import FakeSpawner, ScriptedProvider
from tests.memory.base import MemoryStoreTestCase


class _EchoTool:
    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    @property
    def name(self) -> str:
        return "echo"

    @property
    def description(self) -> str:
        return "echo"

    @property
    def input_schema(self) -> dict[str, Any]:
        return {"type": "object"}

    async def execute(self, tool_input: dict[str, Any]) -> str:
        self.calls.append(tool_input)
        return f"echo: {tool_input.get('text', '')}"


class _BrokenCheckpoints:
    def put(self, *args, **kwargs) -> str:
        raise PersistenceError("database is locked")


def _text(text: str) -> Message:
    return Message(role="assistant", content=[TextBlock(text)])


def _tool_call(tool_use_id: str, text: str = "hi") -> Message:
    return Message(role="assistant", content=[ToolUseBlock(tool_use_id, "echo", {"text": text})])


class ControllerHarness:
    def __init__(self, replies: list, *, checkpoints=None, **kwargs: Any) -> None:
        self.provider = ScriptedProvider(replies)
        self.tool = _EchoTool()
        self.context = ContextManager()
        self.gateway = ApprovalGateway(spawn=FakeSpawner())
        self.dispatcher = ToolDispatcher([self.tool], self.context, self.gateway)
        self.streamed: list[str] = []
        self.thinking: list[bool] = []
        self.limits: list[int] = []
        self.persist_errors: list[PersistenceError] = []
        self.continue_answer = True
        self.controller = ConversationController(
            provider=self.provider,
            context=self.context,
            dispatcher=self.dispatcher,
            gateway=self.gateway,
            system_prompt="system",
            tool_schemas=self.provider.convert_tools([self.tool]),
            thread_id="thread-1",
            checkpoints=checkpoints,
            on_text=self.streamed.append,
            on_thinking=self.thinking.append,
            on_iteration_limit=self._on_limit,
            on_persist_error=self.persist_errors.append,
            **kwargs,
        )

    def _on_limit(self, count: int) -> None:
        self.limits.append(count)
        self.gateway.resolve_continue(self.continue_answer)

    def run(self, text: str) -> None:
        asyncio.run(self.controller.run(text))


class ConversationControllerTests(unittest.TestCase):
    def test_text_reply_ends_the_run(self) -> None:
        harness = ControllerHarness([_text("All done.")])

        harness.run("hello")

        self.assertEqual(ControllerState.END, harness.controller.state)
        self.assertEqual(["user", "assistant"], [m.role for m in harness.context.messages])
        self.assertEqual(["All done."], harness.streamed)
        self.assertEqual([True, False], harness.thinking)

    def test_tool_calls_are_executed_and_answered(self) -> None:
        harness = ControllerHarness([_tool_call("t1", "ping"), _text("pong received")])

        harness.run("say ping")

        self.assertEqual([{"text": "ping"}], harness.tool.calls)
        roles = [m.role for m in harness.context.messages]
        self.assertEqual(["user", "assistant", "user", "assistant"], roles)
        results = harness.context.messages[2].tool_result_blocks
        self.assertEqual("t1", results[0].tool_use_id)
        self.assertEqual("echo: ping", results[0].content)
        self.assertEqual(1, harness.context.state.iteration_count)
        second_request = harness.provider.requests[1]
        self.assertTrue(second_request[-1].has_tool_results)

    def test_context_message_is_sent_first(self) -> None:
        harness = ControllerHarness([_text("ok")])
        harness.context.record_read("src/app.py", "x")

        harness.run("look")

        request = harness.provider.requests[0]
        self.assertTrue(request[0].text.startswith("[Context] "))
        self.assertEqual("look", request[1].text)
        self.assertFalse(any(m.text.startswith("[Context]") for m in harness.context.messages))

    def test_continue_at_limit_resets_the_counter(self) -> None:
        harness = ControllerHarness([_tool_call("t1"), _text("done")], iteration_prompt_limit=3)
        harness.context.state.iteration_count = 3

        harness.run("keep going")

        self.assertEqual([3], harness.limits)
        self.assertEqual(1, len(harness.tool.calls))
        self.assertEqual(1, harness.context.state.iteration_count)

    def test_stop_at_limit_leaves_calls_for_next_run(self) -> None:
        harness = ControllerHarness([_tool_call("t1"), _text("fine")], iteration_prompt_limit=1)
        harness.context.state.iteration_count = 1
        harness.continue_answer = False

        harness.run("work")

        self.assertEqual([], harness.tool.calls)
        self.assertEqual(ControllerState.END, harness.controller.state)

        harness.continue_answer = True
        harness.run("never mind")

        seeded = harness.context.messages[2]
        self.assertEqual("t1", seeded.tool_result_blocks[0].tool_use_id)
        self.assertEqual(SKIPPED_TOOL_MESSAGE, seeded.tool_result_blocks[0].content)
        self.assertTrue(seeded.tool_result_blocks[0].is_error)
        self.assertEqual("never mind", seeded.text)

    def test_hard_ceiling_is_independent_of_the_prompt_limit(self) -> None:
        replies = [_tool_call(f"t{i}") for i in range(10)]
        harness = ControllerHarness(replies, iteration_prompt_limit=100, hard_ceiling=5)

        with self.assertRaises(IterationCeilingError) as caught:
            harness.run("loop forever")

        self.assertEqual(5, caught.exception.ceiling)
        self.assertEqual([], harness.limits)
        self.assertEqual(ControllerState.END, harness.controller.state)

    def test_provider_failure_rolls_back_the_turn(self) -> None:
        harness = ControllerHarness([_text("first"), ProviderError("scripted", "overloaded")])
        harness.run("one")
        before = [m.to_dict() for m in harness.context.messages]

        with self.assertRaises(ProviderError):
            harness.run("two")

        self.assertEqual(before, [m.to_dict() for m in harness.context.messages])
        self.assertEqual(False, harness.thinking[-1])

    def test_unexpected_provider_exception_is_wrapped(self) -> None:
        harness = ControllerHarness([RuntimeError("socket closed")])

        with self.assertRaises(ProviderError) as caught:
            harness.run("hi")

        self.assertEqual("scripted", caught.exception.provider_name)
        self.assertEqual([], harness.context.messages)

    def test_persistence_failure_is_not_fatal(self) -> None:
        harness = ControllerHarness([_tool_call("t1"), _text("done")], checkpoints=_BrokenCheckpoints())

        harness.run("go")

        self.assertEqual(2, len(harness.persist_errors))
        self.assertEqual("done", harness.context.messages[-1].text)
        self.assertIsNone(harness.controller.last_checkpoint_id)


class ControllerPersistenceTests(MemoryStoreTestCase):
    def test_checkpoints_are_written_per_batch_and_at_end(self) -> None:
        harness = ControllerHarness([_tool_call("t1"), _text("done")], checkpoints=self._checkpoints)

        harness.run("go")

        checkpoints = self._checkpoints.list("thread-1")
        self.assertEqual(2, len(checkpoints))
        latest = checkpoints[0]
        self.assertEqual(harness.controller.last_checkpoint_id, latest.checkpoint_id)
        self.assertEqual(checkpoints[1].checkpoint_id, latest.parent_checkpoint_id)
        self.assertEqual(4, len(latest.state.messages))
        self.assertEqual(1, latest.metadata["iteration_count"])

    def test_state_survives_a_restart(self) -> None:
        harness = ControllerHarness([_text("remembered")], checkpoints=self._checkpoints)
        harness.run("remember this")

        restored = self._checkpoints.get("thread-1")

        self.assertEqual(["remember this", "remembered"], [m.text for m in restored.messages])


if __name__ == "__main__":
    unittest.main()
