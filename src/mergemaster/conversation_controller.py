from __future__ import annotations

import asyncio
from collections.abc import Callable
from enum import Enum

from loguru import logger

from mergemaster.approval import ApprovalGateway
from mergemaster.context_manager import ContextManager
from mergemaster.errors import IterationCeilingError, PersistenceError, ProviderError
from mergemaster.memory.checkpoints import CheckpointStore
from mergemaster.messages import Message, TextBlock, ToolResultBlock
from mergemaster.provider import LLMProvider
from mergemaster.session_state import SessionState
from mergemaster.tool_dispatcher import ToolDispatcher

DEFAULT_ITERATION_PROMPT_LIMIT = 25
DEFAULT_HARD_CEILING = 200

SKIPPED_TOOL_MESSAGE = "Tool call skipped: the run was stopped before it executed."


class ControllerState(Enum):
    CALLING = "calling"
    DECIDING = "deciding"
    EXECUTING_TOOLS = "executing_tools"
    FORMATTING = "formatting"
    END = "end"


class ConversationController:
    """The call / decide / execute / format loop of a single conversation.

    ``run`` seeds one user message and drives the state machine until the
    model stops asking for tools, the user declines to continue at the
    iteration limit, or the hard step ceiling is hit. A checkpoint is
    written after every tool batch and at the end of the run.
    """

    def __init__(
        self,
        *,
        provider: LLMProvider,
        context: ContextManager,
        dispatcher: ToolDispatcher,
        gateway: ApprovalGateway,
        system_prompt: str,
        tool_schemas: list[dict],
        thread_id: str,
        checkpoints: CheckpointStore | None = None,
        iteration_prompt_limit: int = DEFAULT_ITERATION_PROMPT_LIMIT,
        hard_ceiling: int = DEFAULT_HARD_CEILING,
        on_text: Callable[[str], None] | None = None,
        on_thinking: Callable[[bool], None] | None = None,
        on_iteration_limit: Callable[[int], None] | None = None,
        on_tool_started: Callable[[str, str], None] | None = None,
        on_tool_completed: Callable[[str, str, bool], None] | None = None,
        on_persist_error: Callable[[PersistenceError], None] | None = None,
    ) -> None:
        self._provider = provider
        self._context = context
        self._dispatcher = dispatcher
        self._gateway = gateway
        self._system_prompt = system_prompt
        self._tool_schemas = tool_schemas
        self._thread_id = thread_id
        self._checkpoints = checkpoints
        self._iteration_prompt_limit = iteration_prompt_limit
        self._hard_ceiling = hard_ceiling
        self._on_text = on_text
        self._on_thinking = on_thinking
        self._on_iteration_limit = on_iteration_limit
        self._on_tool_started = on_tool_started
        self._on_tool_completed = on_tool_completed
        self._on_persist_error = on_persist_error
        self._state = ControllerState.END
        self._last_checkpoint_id: str | None = None
        self._snapshot: SessionState = context.state.snapshot()

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def thread_id(self) -> str:
        return self._thread_id

    @property
    def last_checkpoint_id(self) -> str | None:
        return self._last_checkpoint_id

    async def run(self, user_message: str) -> None:
        self._snapshot = self._context.state.snapshot()
        self._seed(user_message)

        self._state = ControllerState.CALLING
        assistant: Message | None = None
        results: list[ToolResultBlock] = []
        steps = 0

        while self._state is not ControllerState.END:
            steps += 1
            if steps > self._hard_ceiling:
                logger.error(f"Run exceeded {self._hard_ceiling} steps, stopping")
                self._state = ControllerState.END
                await self._persist()
                raise IterationCeilingError(self._hard_ceiling)

            if self._state is ControllerState.CALLING:
                assistant = await self._call()
                self._state = ControllerState.DECIDING
            elif self._state is ControllerState.DECIDING:
                assert assistant is not None
                self._state = await self._decide(assistant)
            elif self._state is ControllerState.EXECUTING_TOOLS:
                assert assistant is not None
                results = await self._execute(assistant)
                self._state = ControllerState.FORMATTING
            elif self._state is ControllerState.FORMATTING:
                self._context.append_tool_results(results)
                await self._persist()
                self._state = ControllerState.CALLING

        await self._persist()

    def _seed(self, user_message: str) -> None:
        # A previous run stopped at the iteration gate leaves tool calls
        # without results; answer them so the history stays well formed.
        messages = self._context.messages
        last = messages[-1] if messages else None
        if last is not None and last.role == "assistant" and last.has_tool_uses:
            skipped = [ToolResultBlock(t.id, SKIPPED_TOOL_MESSAGE, is_error=True) for t in last.tool_uses]
            messages.append(Message(role="user", content=[*skipped, TextBlock(user_message)]))
            return
        self._context.append_user(user_message)

    async def _call(self) -> Message:
        window = self._context.window()
        context_message = self._context.build_context_message()
        if context_message is not None:
            window = [context_message, *window]

        self._notify_thinking(True)
        try:
            message = await self._provider.stream_chat(
                self._system_prompt,
                window,
                self._tool_schemas,
                on_text=self._on_text,
            )
        except ProviderError as ex:
            logger.error(f"Provider {ex.provider_name} failed: {ex}")
            self._rollback()
            raise
        except Exception as ex:
            logger.error(f"Provider {self._provider.name} failed: {ex}")
            self._rollback()
            raise ProviderError(self._provider.name, str(ex)) from ex
        finally:
            self._notify_thinking(False)

        if message.content:
            self._context.append_assistant(message)
        return message

    async def _decide(self, assistant: Message) -> ControllerState:
        if not assistant.has_tool_uses:
            return ControllerState.END

        state = self._context.state
        if state.iteration_count >= self._iteration_prompt_limit:
            logger.info(f"Reached {state.iteration_count} tool iterations, asking whether to continue")
            gate = self._gateway.wait_for_continue()
            if self._on_iteration_limit is not None:
                self._on_iteration_limit(state.iteration_count)
            if not await gate:
                logger.info("User stopped the run at the iteration limit")
                return ControllerState.END
            self._context.state.iteration_count = 0

        return ControllerState.EXECUTING_TOOLS

    async def _execute(self, assistant: Message) -> list[ToolResultBlock]:
        results: list[ToolResultBlock] = []
        for tool_use in assistant.tool_uses:
            if self._on_tool_started is not None:
                self._on_tool_started(tool_use.id, tool_use.name)
            result = await self._dispatcher.execute(tool_use)
            if self._on_tool_completed is not None:
                self._on_tool_completed(tool_use.id, tool_use.name, result.is_error)
            results.append(result)
        self._context.state.iteration_count += 1
        return results

    async def _persist(self) -> None:
        snapshot = self._context.state.snapshot()
        if self._checkpoints is None:
            self._snapshot = snapshot
            return
        try:
            self._last_checkpoint_id = await asyncio.to_thread(
                self._checkpoints.put,
                self._thread_id,
                snapshot,
                parent_checkpoint_id=self._last_checkpoint_id,
                metadata={"iteration_count": snapshot.iteration_count, "state": self._state.value},
            )
        except PersistenceError as ex:
            logger.warning(f"Checkpoint not saved, will retry after the next iteration: {ex}")
            if self._on_persist_error is not None:
                self._on_persist_error(ex)
            return
        self._snapshot = snapshot

    def _rollback(self) -> None:
        self._context.restore(self._snapshot.snapshot())
        self._state = ControllerState.END
        logger.info("Session state rolled back to the last saved checkpoint")

    def _notify_thinking(self, active: bool) -> None:
        if self._on_thinking is not None:
            self._on_thinking(active)
