import os
import unittest
from unittest.mock import patch

from mergemaster.app_config import DEFAULT_MODEL, parse_app_config, resolve_runtime_env
from mergemaster.provider import infer_provider_name


class AppConfigTests(unittest.TestCase):
    def test_defaults(self) -> None:
        app = parse_app_config({})

        self.assertEqual("anthropic", app.provider_name)
        self.assertEqual(DEFAULT_MODEL, app.model)
        self.assertEqual(50, app.max_conversation_messages)
        self.assertEqual(25, app.iteration_prompt_limit)
        self.assertEqual(200, app.hard_iteration_ceiling)
        self.assertEqual(900, app.command_timeout_seconds)
        self.assertTrue(app.enable_directory_search)
        self.assertEqual(".agent/checkpoints.db", app.checkpoint_db_path)

    def test_provider_inferred_from_model(self) -> None:
        self.assertEqual("openai", parse_app_config({"Model": "gpt-4o"}).provider_name)
        self.assertEqual("openai", infer_provider_name(" GPT-4.1 "))
        self.assertEqual("anthropic", infer_provider_name("claude-opus"))

    def test_explicit_values(self) -> None:
        app = parse_app_config(
            {
                "Provider": "OpenAI",
                "Model": "o3",
                "MaxTokens": "2048",
                "WorkingDirectory": "/work",
                "IterationPromptLimit": 5,
                "EnableDirectorySearch": "off",
                "LogConsumers": [{"type": "console"}],
            }
        )

        self.assertEqual("openai", app.provider_name)
        self.assertEqual(2048, app.max_tokens)
        self.assertEqual("/work", app.working_directory)
        self.assertEqual(5, app.iteration_prompt_limit)
        self.assertFalse(app.enable_directory_search)
        self.assertEqual([{"type": "console"}], app.log_consumers)

    def test_unknown_provider_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            parse_app_config({"Provider": "llama"})

    def test_runtime_env_picks_provider_key(self) -> None:
        with patch.dict(os.environ, {"OPENAI_API_KEY": "sk-test", "ANTHROPIC_API_KEY": ""}, clear=False):
            env = resolve_runtime_env("openai")

        self.assertEqual("sk-test", env.provider_api_key)
        self.assertEqual("OPENAI_API_KEY", env.provider_env_var)
        self.assertIsNone(env.anthropic_api_key)


if __name__ == "__main__":
    unittest.main()
