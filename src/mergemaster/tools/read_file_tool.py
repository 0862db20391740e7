from pathlib import Path
from typing import Any

from mergemaster.errors import ToolExecutionError


def resolve_path(path: str, working_directory: str | None) -> Path:
    """Resolve a model-supplied path against the configured working directory."""
    candidate = Path(path).expanduser()
    if not candidate.is_absolute() and working_directory:
        candidate = Path(working_directory) / candidate
    return candidate


class ReadFileTool:
    def __init__(self, working_directory: str | None = None):
        self._working_directory = working_directory

    @property
    def name(self) -> str:
        return "read_file"

    @property
    def description(self) -> str:
        return "Read the contents of a text file."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "file_path": {
                    "type": "string",
                    "description": "Absolute or relative path to the file to read",
                },
            },
            "required": ["file_path"],
        }

    async def execute(self, tool_input: dict[str, Any]) -> str:
        file_path = tool_input["file_path"]
        try:
            return resolve_path(file_path, self._working_directory).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as ex:
            raise ToolExecutionError(self.name, f"Failed to read file {file_path}: {ex}") from ex
