from typing import Any

from mergemaster.errors import ToolExecutionError
from mergemaster.tools.read_file_tool import resolve_path


class DirectoryReadTool:
    def __init__(self, working_directory: str | None = None):
        self._working_directory = working_directory

    @property
    def name(self) -> str:
        return "directory_read"

    @property
    def description(self) -> str:
        return "List the files and subdirectories of a directory."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "dir_path": {
                    "type": "string",
                    "description": "Absolute or relative path to the directory to list",
                },
            },
            "required": ["dir_path"],
        }

    async def execute(self, tool_input: dict[str, Any]) -> list[dict[str, str]]:
        dir_path = tool_input.get("dir_path") or "."
        root = resolve_path(dir_path, self._working_directory)
        try:
            children = sorted(root.iterdir(), key=lambda p: p.name)
            return [
                {
                    "name": child.name,
                    "type": "directory" if child.is_dir() else "file",
                    "path": str(child),
                }
                for child in children
            ]
        except OSError as ex:
            raise ToolExecutionError(self.name, f"Failed to read directory {dir_path}: {ex}") from ex
