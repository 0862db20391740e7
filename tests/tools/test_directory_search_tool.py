import json
import unittest

from mergemaster.tools.directory_search_tool import build_rg_args, file_type_globs, parse_match


class DirectorySearchArgsTests(unittest.TestCase):
    def test_basic_args(self) -> None:
        args = build_rg_args("TODO", "/src")

        self.assertEqual(["--json", "--color", "never", "-m", "1000", "TODO", "/src"], args)

    def test_case_insensitive_and_types(self) -> None:
        args = build_rg_args("foo", "/src", case_sensitive=False, file_types=["python", "PYTHON", "weird type"], max_results=5)

        self.assertIn("--ignore-case", args)
        self.assertEqual(1, args.count("--type"))
        self.assertIn("ft_python:*.py", args)
        self.assertEqual(["-m", "5", "foo", "/src"], args[-4:])

    def test_file_type_globs(self) -> None:
        self.assertEqual(("ft_ts", ["*.ts"]), file_type_globs("TS"))
        self.assertEqual(("ft_toml", ["*.toml"]), file_type_globs(".toml"))
        self.assertIsNone(file_type_globs("  "))
        self.assertIsNone(file_type_globs("a/b"))

    def test_parse_match(self) -> None:
        line = json.dumps(
            {
                "type": "match",
                "data": {"path": {"text": "src/a.py"}, "line_number": 3, "lines": {"text": "  # TODO fix\n"}},
            }
        )

        self.assertEqual({"path": "src/a.py", "line_number": 3, "content": "# TODO fix"}, parse_match(line))
        self.assertIsNone(parse_match(json.dumps({"type": "begin"})))
        self.assertIsNone(parse_match("not json"))


if __name__ == "__main__":
    unittest.main()
