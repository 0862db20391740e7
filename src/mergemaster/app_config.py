from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

from mergemaster.provider import infer_provider_name

DEFAULT_MODEL = "claude-sonnet-4-20250514"

_API_KEY_ENV_VARS = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
}


@dataclass
class RuntimeEnv:
    provider_api_key: str
    provider_env_var: str
    anthropic_api_key: str | None
    openai_api_key: str | None


@dataclass
class AppConfig:
    provider_name: str
    model: str
    max_tokens: int
    temperature: float
    working_directory: str | None
    checkpoint_db_path: str
    max_conversation_messages: int
    max_prompt_tokens: int
    iteration_prompt_limit: int
    hard_iteration_ceiling: int
    command_timeout_seconds: float
    session_retention_days: int
    max_sessions: int
    enable_directory_search: bool
    log_level: str
    log_consumers: list | None


def load_json_config() -> dict:
    config_path = Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def parse_app_config(config: dict) -> AppConfig:
    model = str(config.get("Model", DEFAULT_MODEL))
    provider_name = str(config.get("Provider") or infer_provider_name(model)).strip().lower()
    if provider_name not in _API_KEY_ENV_VARS:
        raise ValueError(f"Unknown provider: {provider_name!r}. Supported: 'anthropic', 'openai'")
    return AppConfig(
        provider_name=provider_name,
        model=model,
        max_tokens=int(config.get("MaxTokens", 4096)),
        temperature=float(config.get("Temperature", 1.0)),
        working_directory=config.get("WorkingDirectory"),
        checkpoint_db_path=str(config.get("CheckpointDbPath", ".agent/checkpoints.db")),
        max_conversation_messages=int(config.get("MaxConversationMessages", 50)),
        max_prompt_tokens=int(config.get("MaxPromptTokens", 180_000)),
        iteration_prompt_limit=int(config.get("IterationPromptLimit", 25)),
        hard_iteration_ceiling=int(config.get("HardIterationCeiling", 200)),
        command_timeout_seconds=float(config.get("CommandTimeoutSeconds", 900)),
        session_retention_days=int(config.get("SessionRetentionDays", 30)),
        max_sessions=int(config.get("MaxSessions", 200)),
        enable_directory_search=_to_bool(config.get("EnableDirectorySearch"), default=True),
        log_level=str(config.get("LogLevel", "INFO")),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env(provider_name: str) -> RuntimeEnv:
    provider_env_var = _API_KEY_ENV_VARS[provider_name]
    anthropic_api_key = os.environ.get("ANTHROPIC_API_KEY") or None
    openai_api_key = os.environ.get("OPENAI_API_KEY") or None
    return RuntimeEnv(
        provider_api_key=os.environ.get(provider_env_var, ""),
        provider_env_var=provider_env_var,
        anthropic_api_key=anthropic_api_key,
        openai_api_key=openai_api_key,
    )
