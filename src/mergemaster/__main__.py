import argparse
import asyncio
import sys

from dotenv import load_dotenv
from loguru import logger

from mergemaster.app_config import load_json_config, parse_app_config, resolve_runtime_env
from mergemaster.bootstrap import bootstrap_runtime
from mergemaster.services.session_controller import SessionController


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="mergemaster", description="Interactive coding agent")
    parser.add_argument("--resume", metavar="SESSION_ID", help="resume a saved session")
    parser.add_argument("--verbose", action="store_true", help="log at DEBUG level")
    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    load_dotenv()

    try:
        app = parse_app_config(load_json_config())
    except ValueError as ex:
        print(f"Configuration error: {ex}", file=sys.stderr)
        return 1

    env = resolve_runtime_env(app.provider_name)
    if not env.provider_api_key:
        print(f"{env.provider_env_var} environment variable is required.", file=sys.stderr)
        return 1

    try:
        runtime = bootstrap_runtime(app, env, resume_id=args.resume, verbose=args.verbose)
    except ValueError as ex:
        logger.error(str(ex))
        return 1

    agent = runtime.agent
    print("mergemaster (type 'exit' to quit, '/help' for commands)")
    print("Tools:")
    for t in runtime.tools:
        print(f"  - {t.name}")
    if app.working_directory:
        print(f"Working directory: {app.working_directory}")
    state = "resumed" if runtime.resumed else "new"
    print(f"Session: {agent.session_id} ({state})")
    if runtime.log_descriptions:
        print(f"Logging: {', '.join(runtime.log_descriptions)}")
    print()

    try:
        while True:
            try:
                user_input = await asyncio.to_thread(input, "you> ")
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()
            if trimmed in ("exit", "quit"):
                break
            if not trimmed:
                continue

            try:
                print()
                await agent.run(trimmed)
                print("\n")
            except Exception as ex:
                logger.exception(f"Unhandled error: {ex}")
    finally:
        await agent.shutdown()
        runtime.memory_store.close()
        print(SessionController(line_prefix="").format_resume_hint(agent.session_id))

    return 0


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
