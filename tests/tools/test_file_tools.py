import asyncio
import tempfile
import unittest
from pathlib import Path

from mergemaster.approval_types import NeedsApproval
from mergemaster.errors import ToolExecutionError
from mergemaster.tool_registry import get_all
from mergemaster.tools.directory_read_tool import DirectoryReadTool
from mergemaster.tools.execute_command_tool import ExecuteCommandTool, ExecuteServerCommandTool
from mergemaster.tools.read_file_tool import ReadFileTool
from mergemaster.tools.write_file_tool import WriteFileTool


class FileToolTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_write_creates_parents_and_read_returns_content(self) -> None:
        writer = WriteFileTool(str(self.root))
        reader = ReadFileTool(str(self.root))

        message = asyncio.run(writer.execute({"file_path": "pkg/mod.py", "content": "x = 1\n"}))
        content = asyncio.run(reader.execute({"file_path": "pkg/mod.py"}))

        self.assertEqual("Successfully wrote to pkg/mod.py", message)
        self.assertEqual("x = 1\n", content)

    def test_read_missing_file_raises(self) -> None:
        with self.assertRaises(ToolExecutionError) as caught:
            asyncio.run(ReadFileTool(str(self.root)).execute({"file_path": "missing.txt"}))

        self.assertEqual("read_file", caught.exception.tool_name)

    def test_directory_read_lists_sorted_entries(self) -> None:
        (self.root / "b.txt").write_text("b", encoding="utf-8")
        (self.root / "a").mkdir()

        entries = asyncio.run(DirectoryReadTool(str(self.root)).execute({"dir_path": "."}))

        self.assertEqual([("a", "directory"), ("b.txt", "file")], [(e["name"], e["type"]) for e in entries])

    def test_directory_read_missing_raises(self) -> None:
        with self.assertRaises(ToolExecutionError):
            asyncio.run(DirectoryReadTool(str(self.root)).execute({"dir_path": "nope"}))


class CommandToolTests(unittest.TestCase):
    def test_command_tool_only_requests_approval(self) -> None:
        signal = asyncio.run(ExecuteCommandTool("/proj").execute({"command": "pytest", "timeout": "30"}))

        self.assertEqual(NeedsApproval("pytest", "/proj", 30.0, False), signal)

    def test_server_tool_flags_server_and_keeps_cwd(self) -> None:
        signal = asyncio.run(ExecuteServerCommandTool("/proj").execute({"command": "npm start", "cwd": "/web"}))

        self.assertEqual(NeedsApproval("npm start", "/web", None, True), signal)


class ToolRegistryTests(unittest.TestCase):
    def test_search_tool_needs_ripgrep(self) -> None:
        names = [t.name for t in get_all("/proj", ripgrep_path="/usr/bin/rg")]
        without = [t.name for t in get_all("/proj", ripgrep_path="/usr/bin/rg", enable_search=False)]

        self.assertEqual(
            ["read_file", "write_file", "directory_read", "execute_command", "execute_server_command", "directory_search"],
            names,
        )
        self.assertNotIn("directory_search", without)


if __name__ == "__main__":
    unittest.main()
