from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from loguru import logger

from mergemaster.agent import Agent
from mergemaster.agent_config import AgentConfig
from mergemaster.app_config import AppConfig, RuntimeEnv
from mergemaster.console import ConsoleFrontend
from mergemaster.logging_config import setup_logging
from mergemaster.memory import CheckpointStore, MemoryStore, SessionMetadataStore, prune_sessions
from mergemaster.session_state import SessionState
from mergemaster.system_prompt import get_system_prompt
from mergemaster.tool import Tool
from mergemaster.tool_registry import get_all


@dataclass
class AppRuntime:
    agent: Agent
    frontend: ConsoleFrontend
    memory_store: MemoryStore
    tools: list[Tool]
    resumed: bool
    log_descriptions: list[str]


def bootstrap_runtime(
    app: AppConfig,
    env: RuntimeEnv,
    *,
    resume_id: str | None = None,
    verbose: bool = False,
) -> AppRuntime:
    session_id = resume_id or str(uuid4())
    log_descriptions = setup_logging(
        level=app.log_level,
        consumers=app.log_consumers,
        verbose=verbose,
        session_id=session_id,
    )

    tools = get_all(app.working_directory, enable_search=app.enable_directory_search)

    db_path = Path(app.checkpoint_db_path)
    if not db_path.is_absolute():
        db_path = Path.cwd() / db_path
    memory_store = MemoryStore(str(db_path))
    checkpoint_store = CheckpointStore(memory_store)
    session_store = SessionMetadataStore(memory_store)

    pruned = prune_sessions(
        memory_store,
        max_sessions=app.max_sessions,
        retention_days=app.session_retention_days,
    )
    if pruned:
        logger.info(f"Pruned {pruned} old sessions")

    initial_state: SessionState | None = None
    if resume_id:
        checkpoint = checkpoint_store.get_tuple(resume_id)
        if checkpoint is None:
            memory_store.close()
            raise ValueError(f"Resume session not found: {resume_id}")
        initial_state = checkpoint.state
        session_store.record_activity(session_id)
        logger.info(f"Resuming session {session_id} from checkpoint {checkpoint.checkpoint_id}")
    else:
        session_store.record_start(session_id)
        logger.info(f"Started session {session_id}")

    frontend = ConsoleFrontend()
    agent = Agent(
        AgentConfig(
            model=app.model,
            max_tokens=app.max_tokens,
            temperature=app.temperature,
            api_key=env.provider_api_key,
            provider=app.provider_name,
            tools=tools,
            system_prompt=get_system_prompt(app.working_directory),
            working_directory=app.working_directory,
            max_conversation_messages=app.max_conversation_messages,
            max_prompt_tokens=app.max_prompt_tokens,
            iteration_prompt_limit=app.iteration_prompt_limit,
            hard_iteration_ceiling=app.hard_iteration_ceiling,
            command_timeout_seconds=app.command_timeout_seconds,
            session_id=session_id,
            initial_state=initial_state,
            checkpoint_store=checkpoint_store,
            session_store=session_store,
            callbacks=frontend.callbacks(),
        )
    )
    frontend.bind(agent)

    return AppRuntime(
        agent=agent,
        frontend=frontend,
        memory_store=memory_store,
        tools=tools,
        resumed=initial_state is not None,
        log_descriptions=log_descriptions,
    )
