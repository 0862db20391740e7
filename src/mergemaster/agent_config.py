from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from uuid import uuid4

from mergemaster.app_config import DEFAULT_MODEL
from mergemaster.approval_types import ApprovalRequest, ProcessExit
from mergemaster.errors import PersistenceError
from mergemaster.memory.checkpoints import CheckpointStore
from mergemaster.memory.session_manager import SessionMetadataStore
from mergemaster.provider import LLMProvider
from mergemaster.session_state import SessionState
from mergemaster.tool import Tool


@dataclass
class AgentCallbacks:
    on_text: Callable[[str], None] | None = None
    on_thinking: Callable[[bool], None] | None = None
    on_iteration_limit: Callable[[int], None] | None = None
    on_approval_request: Callable[[str, ApprovalRequest], None] | None = None
    on_tool_started: Callable[[str, str], None] | None = None
    on_tool_completed: Callable[[str, str, bool], None] | None = None
    on_persist_error: Callable[[PersistenceError], None] | None = None
    on_process_exit: Callable[[str, ProcessExit], None] | None = None
    on_process_error: Callable[[str, Exception], None] | None = None


@dataclass
class AgentConfig:
    model: str = DEFAULT_MODEL
    max_tokens: int = 4096
    temperature: float = 1.0
    api_key: str = ""
    provider: str = "anthropic"
    llm: LLMProvider | None = None
    tools: list[Tool] = field(default_factory=list)
    system_prompt: str = ""
    working_directory: str | None = None
    max_conversation_messages: int = 50
    max_prompt_tokens: int = 180_000
    iteration_prompt_limit: int = 25
    hard_iteration_ceiling: int = 200
    command_timeout_seconds: float = 900
    session_id: str = field(default_factory=lambda: str(uuid4()))
    initial_state: SessionState | None = None
    checkpoint_store: CheckpointStore | None = None
    session_store: SessionMetadataStore | None = None
    callbacks: AgentCallbacks = field(default_factory=AgentCallbacks)
