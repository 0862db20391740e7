import asyncio
import io
import unittest
from contextlib import redirect_stdout

from mergemaster.agent import Agent
from mergemaster.agent_config import AgentConfig
from mergemaster.approval_types import ApprovalRequest
from mergemaster.messages import Message, TextBlock
from tests.fakes import FakeSpawner, ScriptedProvider
from tests.memory.base import MemoryStoreTestCase


class AgentCommandTests(MemoryStoreTestCase):
    def _agent(self, replies=None) -> Agent:
        self._sessions.record_start("s1")
        self._provider = ScriptedProvider(replies or [])
        return Agent(
            AgentConfig(
                llm=self._provider,
                session_id="s1",
                checkpoint_store=self._checkpoints,
                session_store=self._sessions,
            )
        )

    def _run(self, agent: Agent, text: str) -> str:
        buf = io.StringIO()
        with redirect_stdout(buf):
            asyncio.run(agent.run(text))
        return buf.getvalue()

    def test_help_lists_commands(self) -> None:
        output = self._run(self._agent(), "/help")

        self.assertIn("/undo [path]", output)
        self.assertIn("/sessions [limit]", output)
        self.assertIn("/stop [id]", output)

    def test_unknown_command_is_not_sent_to_the_model(self) -> None:
        agent = self._agent()

        output = self._run(agent, "/frobnicate")

        self.assertIn("Unknown local command: /frobnicate", output)
        self.assertEqual([], self._provider.requests)

    def test_session_name_and_listing(self) -> None:
        agent = self._agent()

        self._run(agent, "/session name Fix the login bug")
        current = self._run(agent, "/session")
        listing = self._run(agent, "/sessions 5")

        self.assertEqual("Fix the login bug", self._sessions.get("s1").name)
        self.assertIn("Current session: Fix the login bug (id=s1)", current)
        self.assertIn("* Fix the login bug [s1]", listing)

    def test_sessions_rejects_bad_limit(self) -> None:
        output = self._run(self._agent(), "/sessions many")

        self.assertIn("Usage: /sessions [limit]", output)

    def test_checkpoints_listing(self) -> None:
        agent = self._agent([Message(role="assistant", content=[TextBlock("hi")])])
        self._run(agent, "hello")

        output = self._run(agent, "/checkpoints")

        self.assertIn("Recent checkpoints:", output)
        self.assertIn("messages=2", output)

    def test_undo_without_changes(self) -> None:
        output = self._run(self._agent(), "/undo")

        self.assertIn("No file changes to undo", output)

    def test_provider_error_is_reported(self) -> None:
        agent = self._agent([RuntimeError("connection reset")])

        output = self._run(agent, "hello")

        self.assertIn("Error: connection reset", output)

    def test_servers_and_stop(self) -> None:
        agent = self._agent()
        spawner = FakeSpawner()
        agent.gateway._spawn = spawner

        async def start_server() -> None:
            future = agent.gateway.register("srv-12345678", ApprovalRequest("npm run dev", is_server=True))
            await agent.gateway.approve("srv-12345678")
            await future

        asyncio.run(start_server())
        listing = self._run(agent, "/servers")
        stopped = self._run(agent, "/stop srv")

        self.assertIn("npm run dev (running)", listing)
        self.assertIn("Server command stopped.", stopped)
        self.assertTrue(spawner.sessions[0].disposed)

    def test_stop_without_servers(self) -> None:
        output = self._run(self._agent(), "/stop")

        self.assertIn("No running server command to stop.", output)


if __name__ == "__main__":
    unittest.main()
