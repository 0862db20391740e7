from typing import Any

from mergemaster.errors import ToolExecutionError
from mergemaster.tools.read_file_tool import resolve_path


class WriteFileTool:
    def __init__(self, working_directory: str | None = None):
        self._working_directory = working_directory

    @property
    def name(self) -> str:
        return "write_file"

    @property
    def description(self) -> str:
        return "Write content to a file, creating it and any missing parent directories."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "file_path": {
                    "type": "string",
                    "description": "Absolute or relative path to the file to write",
                },
                "content": {
                    "type": "string",
                    "description": "The full content to write to the file",
                },
            },
            "required": ["file_path", "content"],
        }

    async def execute(self, tool_input: dict[str, Any]) -> str:
        file_path = tool_input["file_path"]
        content = tool_input["content"]
        try:
            target = resolve_path(file_path, self._working_directory)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        except OSError as ex:
            raise ToolExecutionError(self.name, f"Failed to write file {file_path}: {ex}") from ex
        return f"Successfully wrote to {file_path}"
