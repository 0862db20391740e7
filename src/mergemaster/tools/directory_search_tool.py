import asyncio
import json
import re
from typing import Any

from loguru import logger

from mergemaster.errors import ToolExecutionError
from mergemaster.tools.read_file_tool import resolve_path

DEFAULT_MAX_RESULTS = 1000

_CPP = ["*.cpp", "*.cc", "*.cxx", "*.hpp", "*.hxx", "*.hh", "*.ipp", "*.tpp"]
_OBJC = ["*.m", "*.mm", "*.h"]

FILE_TYPE_PRESETS: dict[str, list[str]] = {
    "c++": _CPP,
    "cpp": _CPP,
    "cxx": _CPP,
    "cc": ["*.cc", "*.cpp", "*.cxx"],
    "hpp": ["*.hpp", "*.hxx", "*.hh"],
    "c": ["*.c", "*.h"],
    "objc": _OBJC,
    "objective-c": _OBJC,
    "objectivec": _OBJC,
    "typescript": ["*.ts", "*.tsx"],
    "javascript": ["*.js", "*.jsx"],
    "jsx": ["*.jsx"],
    "tsx": ["*.tsx"],
    "ts": ["*.ts"],
    "js": ["*.js"],
    "json": ["*.json"],
    "python": ["*.py"],
    "py": ["*.py"],
    "go": ["*.go"],
    "rust": ["*.rs"],
    "rs": ["*.rs"],
    "java": ["*.java"],
    "kotlin": ["*.kt", "*.kts"],
    "kt": ["*.kt", "*.kts"],
    "swift": ["*.swift"],
    "scala": ["*.scala"],
    "ruby": ["*.rb"],
    "rb": ["*.rb"],
    "php": ["*.php"],
}


def file_type_globs(raw_type: str) -> tuple[str, list[str]] | None:
    """Map a language name or extension to a ripgrep type alias and its globs."""
    key = raw_type.strip().lower().removeprefix(".")
    if not key:
        return None
    globs = FILE_TYPE_PRESETS.get(key)
    if not globs:
        if not re.fullmatch(r"[a-z0-9]+", key):
            return None
        globs = [f"*.{key}"]
    alias = "ft_" + re.sub(r"[^a-z0-9_]+", "_", key)
    return alias, globs


def build_rg_args(
    pattern: str,
    search_path: str,
    case_sensitive: bool | None = None,
    file_types: list[str] | None = None,
    max_results: int = DEFAULT_MAX_RESULTS,
) -> list[str]:
    args = ["--json", "--color", "never"]
    if case_sensitive is False:
        args.append("--ignore-case")

    aliases: dict[str, list[str]] = {}
    for raw_type in file_types or []:
        resolved = file_type_globs(raw_type)
        if resolved is None:
            continue
        alias, globs = resolved
        known = aliases.setdefault(alias, [])
        known.extend(g for g in globs if g not in known)
    for alias, globs in aliases.items():
        for glob in globs:
            args.extend(["--type-add", f"{alias}:{glob}"])
        args.extend(["--type", alias])

    if max_results > 0:
        args.extend(["-m", str(max_results)])
    args.extend([pattern, search_path])
    return args


def parse_match(line: str) -> dict[str, Any] | None:
    try:
        event = json.loads(line)
    except json.JSONDecodeError:
        return None
    if event.get("type") != "match":
        return None
    data = event.get("data") or {}
    return {
        "path": data.get("path", {}).get("text", ""),
        "line_number": data.get("line_number"),
        "content": data.get("lines", {}).get("text", "").strip(),
    }


class DirectorySearchTool:
    def __init__(self, working_directory: str | None = None, executable: str = "rg"):
        self._working_directory = working_directory
        self._executable = executable

    @property
    def name(self) -> str:
        return "directory_search"

    @property
    def description(self) -> str:
        return (
            "Search file contents under a directory with ripgrep. "
            "Returns matching lines with their file path and line number."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "pattern": {
                    "type": "string",
                    "description": "Regular expression to search for",
                },
                "search_path": {
                    "type": "string",
                    "description": "Directory to search (defaults to the working directory)",
                },
                "case_sensitive": {
                    "type": "boolean",
                    "description": "Set to false for a case-insensitive search",
                },
                "file_types": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Restrict to languages or extensions, e.g. [\"python\", \"ts\"]",
                },
                "max_results": {
                    "type": "integer",
                    "description": f"Maximum number of matches (default {DEFAULT_MAX_RESULTS})",
                },
            },
            "required": ["pattern"],
        }

    async def execute(self, tool_input: dict[str, Any]) -> list[dict[str, Any]]:
        pattern = tool_input["pattern"]
        search_path = str(resolve_path(tool_input.get("search_path") or ".", self._working_directory))
        max_results = int(tool_input.get("max_results") or DEFAULT_MAX_RESULTS)
        args = build_rg_args(
            pattern,
            search_path,
            case_sensitive=tool_input.get("case_sensitive"),
            file_types=tool_input.get("file_types"),
            max_results=max_results,
        )

        try:
            proc = await asyncio.create_subprocess_exec(
                self._executable,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as ex:
            raise ToolExecutionError(self.name, f"Failed to start ripgrep: {ex}") from ex

        assert proc.stdout is not None and proc.stderr is not None
        results: list[dict[str, Any]] = []
        terminated_early = False
        async for raw in proc.stdout:
            match = parse_match(raw.decode(errors="replace").strip())
            if match is None:
                continue
            results.append(match)
            if max_results > 0 and len(results) >= max_results:
                terminated_early = True
                proc.kill()
                break

        stderr = (await proc.stderr.read()).decode(errors="replace").strip()
        code = await proc.wait()
        logger.debug(f"ripgrep exited with {code}, {len(results)} matches for {pattern!r}")

        if terminated_early or code == 0 or (code == 1 and not results):
            return results
        raise ToolExecutionError(self.name, f"Failed to search directory: {stderr or f'rg exited with code {code}'}")
