from __future__ import annotations

import asyncio

from loguru import logger

from mergemaster.agent_config import AgentConfig
from mergemaster.approval import ApprovalGateway
from mergemaster.commands.router import CommandRouter
from mergemaster.context_manager import ContextManager
from mergemaster.conversation_controller import ConversationController
from mergemaster.errors import IterationCeilingError, ProviderError
from mergemaster.provider import create_provider
from mergemaster.services.checkpoint_service import CheckpointService
from mergemaster.services.session_controller import SessionController
from mergemaster.tool_dispatcher import ToolDispatcher


class Agent:
    _LINE_PREFIX = "assistant> "

    def __init__(self, config: AgentConfig):
        self._provider = config.llm or create_provider(
            config.provider,
            config.api_key,
            model=config.model,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
        )
        callbacks = config.callbacks
        self._session_id = config.session_id
        self._checkpoint_store = config.checkpoint_store
        self._session_store = config.session_store
        self._run_lock = asyncio.Lock()

        self._context = ContextManager(
            config.initial_state,
            max_messages=config.max_conversation_messages,
            max_tokens=config.max_prompt_tokens,
        )
        self._gateway = ApprovalGateway(
            config.working_directory,
            on_exit=callbacks.on_process_exit,
            on_error=callbacks.on_process_error,
        )
        self._dispatcher = ToolDispatcher(
            config.tools,
            self._context,
            self._gateway,
            on_approval_request=callbacks.on_approval_request,
            default_timeout_seconds=config.command_timeout_seconds,
        )
        self._controller = ConversationController(
            provider=self._provider,
            context=self._context,
            dispatcher=self._dispatcher,
            gateway=self._gateway,
            system_prompt=config.system_prompt,
            tool_schemas=self._provider.convert_tools(config.tools),
            thread_id=self._session_id,
            checkpoints=self._checkpoint_store,
            iteration_prompt_limit=config.iteration_prompt_limit,
            hard_ceiling=config.hard_iteration_ceiling,
            on_text=callbacks.on_text,
            on_thinking=callbacks.on_thinking,
            on_iteration_limit=callbacks.on_iteration_limit,
            on_tool_started=callbacks.on_tool_started,
            on_tool_completed=callbacks.on_tool_completed,
            on_persist_error=callbacks.on_persist_error,
        )

        self._session_controller = SessionController(line_prefix=self._LINE_PREFIX)
        self._checkpoint_service = CheckpointService(line_prefix=self._LINE_PREFIX)
        self._command_router = CommandRouter(
            on_help=self._on_help,
            on_undo=self._handle_undo_command,
            on_sessions=self._handle_sessions_command,
            on_session=self._handle_session_command,
            on_checkpoints=self._handle_checkpoints_command,
            on_servers=self._handle_servers_command,
            on_stop=self._handle_stop_command,
            on_unknown=self._on_unknown_command,
        )

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def gateway(self) -> ApprovalGateway:
        return self._gateway

    @property
    def dispatcher(self) -> ToolDispatcher:
        return self._dispatcher

    @property
    def context(self) -> ContextManager:
        return self._context

    @property
    def controller(self) -> ConversationController:
        return self._controller

    async def run(self, user_message: str) -> None:
        async with self._run_lock:
            await self._run_inner(user_message)

    async def _run_inner(self, user_message: str) -> None:
        if await self._command_router.try_handle(user_message):
            return
        try:
            await self._controller.run(user_message)
        except ProviderError as ex:
            print(f"\n{self._LINE_PREFIX}Error: {ex}")
        except IterationCeilingError as ex:
            print(f"\n{self._LINE_PREFIX}Stopped: {ex}")

    async def shutdown(self) -> None:
        self._gateway.shutdown()

    # -- local commands --------------------------------------------------

    async def _on_help(self) -> None:
        print(f"{self._LINE_PREFIX}Available commands:")
        print(f"{self._LINE_PREFIX}- /help")
        print(f"{self._LINE_PREFIX}- /undo [path]")
        print(f"{self._LINE_PREFIX}- /servers")
        print(f"{self._LINE_PREFIX}- /stop [id]")
        if self._session_store is not None:
            print(f"{self._LINE_PREFIX}- /sessions [limit]")
            print(f"{self._LINE_PREFIX}- /session name <title>")
            print(f"{self._LINE_PREFIX}- /checkpoints [limit]")

    def _on_unknown_command(self, trimmed: str) -> None:
        print(f"{self._LINE_PREFIX}Unknown local command: {trimmed}")

    async def _handle_undo_command(self, command: str) -> None:
        path = command.partition(" ")[2].strip() or None
        result = await self._dispatcher.undo(path)
        print(self._checkpoint_service.format_undo_outcome(result.success, result.message))

    @staticmethod
    def _parse_limit(command: str, default: int = 20) -> int | None:
        parts = command.split()
        if len(parts) < 2:
            return default
        try:
            return int(parts[1])
        except ValueError:
            return None

    async def _handle_sessions_command(self, command: str) -> None:
        if self._session_store is None:
            print(f"{self._LINE_PREFIX}Session commands require a checkpoint database")
            return
        limit = self._parse_limit(command)
        if limit is None:
            print(f"{self._LINE_PREFIX}Usage: /sessions [limit]")
            return
        sessions = self._session_store.list(limit=limit)
        if not sessions:
            print(f"{self._LINE_PREFIX}No sessions found.")
            return
        print(f"{self._LINE_PREFIX}Recent sessions:")
        for session in sessions:
            print(self._session_controller.format_session_list_entry(session, active_session_id=self._session_id))

    async def _handle_session_command(self, command: str) -> None:
        if self._session_store is None:
            print(f"{self._LINE_PREFIX}Session commands require a checkpoint database")
            return
        parts = command.split()
        if len(parts) == 1:
            session = self._session_store.get(self._session_id)
            title = session.name if session is not None and session.name else "(unnamed)"
            print(f"{self._LINE_PREFIX}Current session: {title} (id={self._session_id})")
            return
        if len(parts) >= 3 and parts[1] == "name":
            title = command.partition("name")[2].strip()
            self._session_store.record_start(self._session_id)
            self._session_store.rename(self._session_id, title)
            print(f"{self._LINE_PREFIX}Session named: {title}")
            return
        print(f"{self._LINE_PREFIX}Usage: /session | /session name <title>")

    async def _handle_checkpoints_command(self, command: str) -> None:
        if self._checkpoint_store is None:
            print(f"{self._LINE_PREFIX}Checkpoint commands require a checkpoint database")
            return
        limit = self._parse_limit(command)
        if limit is None:
            print(f"{self._LINE_PREFIX}Usage: /checkpoints [limit]")
            return
        checkpoints = await asyncio.to_thread(self._checkpoint_store.list, self._session_id, limit=limit)
        if not checkpoints:
            print(f"{self._LINE_PREFIX}No checkpoints found for current session.")
            return
        print(f"{self._LINE_PREFIX}Recent checkpoints:")
        for checkpoint in checkpoints:
            print(self._checkpoint_service.format_checkpoint_list_entry(checkpoint))

    async def _handle_servers_command(self, command: str) -> None:
        servers = self._gateway.server_sessions()
        if not servers:
            print(f"{self._LINE_PREFIX}No server commands have been started.")
            return
        print(f"{self._LINE_PREFIX}Server commands:")
        for server in servers:
            print(self._session_controller.format_server_entry(server))

    async def _handle_stop_command(self, command: str) -> None:
        target = command.partition(" ")[2].strip() or None
        if target is not None:
            matches = [s.id for s in self._gateway.server_sessions() if s.id.startswith(target)]
            if len(matches) != 1:
                print(f"{self._LINE_PREFIX}No unique server command matches {target!r}")
                return
            target = matches[0]
        if self._gateway.stop_server(target):
            logger.info(f"Stopped server command {target or '(most recent)'}")
            print(f"{self._LINE_PREFIX}Server command stopped.")
        else:
            print(f"{self._LINE_PREFIX}No running server command to stop.")
