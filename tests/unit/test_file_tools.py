"""Tests for the file tools."""

import asyncio
import time
from unittest.mock import patch

import pytest

from makyno.errors import ContentNotFoundError, NotFoundError, ValidationError
from makyno.tools.file_tools import (
    EditFileInput,
    EditFileTool,
    ListFilesInput,
    ListFilesTool,
    ReadFileInput,
    ReadFileTool,
    SearchCodeInput,
    SearchCodeTool,
    WriteFileInput,
    WriteFileTool,
)


class TestReadFile:
    @pytest.mark.asyncio
    async def test_reads_content(self, tool_context, sandbox_root):
        (sandbox_root / "notes.md").write_text("one\ntwo")

        output = await ReadFileTool().run(ReadFileInput(file_path="notes.md"), tool_context)

        assert output.content == "one\ntwo"
        assert output.lines == 2

    @pytest.mark.asyncio
    async def test_missing_file(self, tool_context):
        with pytest.raises(NotFoundError):
            await ReadFileTool().run(ReadFileInput(file_path="nope.txt"), tool_context)

    @pytest.mark.asyncio
    async def test_escape_is_rejected(self, tool_context, tmp_path):
        (tmp_path / "secret.txt").write_text("secret")
        with pytest.raises(ValidationError):
            await ReadFileTool().run(ReadFileInput(file_path="../secret.txt"), tool_context)

    @pytest.mark.asyncio
    async def test_absolute_path_is_rejected(self, tool_context):
        with pytest.raises(ValidationError):
            await ReadFileTool().run(ReadFileInput(file_path="/etc/passwd"), tool_context)


class TestWriteFile:
    @pytest.mark.asyncio
    async def test_creates_parent_directories(self, tool_context, sandbox_root):
        output = await WriteFileTool().run(
            WriteFileInput(file_path="src/auth/oauth.py", content="x = 1\n"), tool_context,
        )

        assert output.success is True
        assert output.size == 6
        assert (sandbox_root / "src" / "auth" / "oauth.py").read_text() == "x = 1\n"

    @pytest.mark.asyncio
    async def test_refuses_directory(self, tool_context, sandbox_root):
        (sandbox_root / "src").mkdir()
        with pytest.raises(ValidationError):
            await WriteFileTool().run(WriteFileInput(file_path="src", content=""), tool_context)


class TestEditFile:
    @pytest.mark.asyncio
    async def test_single_replacement(self, tool_context, sandbox_root):
        path = sandbox_root / "app.py"
        path.write_text("def greet():\n    return 'hello'\n")

        output = await EditFileTool().run(
            EditFileInput(file_path="app.py", old_content="'hello'", new_content="'hi'"), tool_context,
        )

        assert output.replacements == 1
        assert path.read_text() == "def greet():\n    return 'hi'\n"

    @pytest.mark.asyncio
    async def test_count_matches_substitutions(self, tool_context, sandbox_root):
        """Every occurrence is replaced and the count says so."""
        path = sandbox_root / "config.txt"
        original = "debug=true\nverbose=true\ncolor=true\n"
        path.write_text(original)

        output = await EditFileTool().run(
            EditFileInput(file_path="config.txt", old_content="true", new_content="false"), tool_context,
        )

        assert path.read_text() == original.replace("true", "false")
        assert output.replacements == 3
        assert "true" not in path.read_text()

    @pytest.mark.asyncio
    async def test_overlapping_pattern_count(self, tool_context, sandbox_root):
        path = sandbox_root / "a.txt"
        path.write_text("aaaa")

        output = await EditFileTool().run(
            EditFileInput(file_path="a.txt", old_content="aa", new_content="b"), tool_context,
        )

        assert path.read_text() == "bb"
        assert output.replacements == 2

    @pytest.mark.asyncio
    async def test_no_match_is_content_not_found(self, tool_context, sandbox_root):
        path = sandbox_root / "app.py"
        path.write_text("print('x')\n")

        with pytest.raises(ContentNotFoundError):
            await EditFileTool().run(
                EditFileInput(file_path="app.py", old_content="missing", new_content="y"), tool_context,
            )
        assert path.read_text() == "print('x')\n"

    @pytest.mark.asyncio
    async def test_missing_file(self, tool_context):
        with pytest.raises(NotFoundError):
            await EditFileTool().run(
                EditFileInput(file_path="gone.py", old_content="a", new_content="b"), tool_context,
            )

    @pytest.mark.asyncio
    async def test_empty_old_content_rejected(self, tool_context, sandbox_root):
        (sandbox_root / "a.txt").write_text("abc")
        with pytest.raises(ValidationError):
            await EditFileTool().run(
                EditFileInput(file_path="a.txt", old_content="", new_content="x"), tool_context,
            )


class TestListFiles:
    @pytest.fixture
    def tree(self, sandbox_root):
        (sandbox_root / "src").mkdir()
        (sandbox_root / "src" / "main.py").write_text("")
        (sandbox_root / "README.md").write_text("")
        (sandbox_root / ".git").mkdir()
        (sandbox_root / ".git" / "HEAD").write_text("")
        (sandbox_root / "node_modules").mkdir()
        (sandbox_root / "node_modules" / "dep.js").write_text("")
        return sandbox_root

    @pytest.mark.asyncio
    async def test_flat_listing(self, tool_context, tree):
        output = await ListFilesTool().run(ListFilesInput(), tool_context)

        assert output.files == ["README.md"]
        assert "src" in output.directories
        assert output.count == len(output.files) + len(output.directories)

    @pytest.mark.asyncio
    async def test_recursive_skips_hidden_and_node_modules(self, tool_context, tree):
        output = await ListFilesTool().run(ListFilesInput(recursive=True), tool_context)

        assert sorted(output.files) == ["README.md", "src/main.py"]
        assert output.directories == ["src"]

    @pytest.mark.asyncio
    async def test_missing_directory(self, tool_context):
        with pytest.raises(NotFoundError):
            await ListFilesTool().run(ListFilesInput(dir_path="nowhere"), tool_context)


class TestSearchCode:
    @pytest.fixture
    def tree(self, sandbox_root):
        (sandbox_root / "src").mkdir()
        (sandbox_root / "src" / "auth.py").write_text("def login():\n    # TODO login\n    pass\n")
        (sandbox_root / "notes.md").write_text("login flow\n")
        (sandbox_root / "node_modules").mkdir()
        (sandbox_root / "node_modules" / "x.py").write_text("login\n")
        return sandbox_root

    @pytest.mark.asyncio
    async def test_finds_literal_matches(self, tool_context, tree):
        output = await SearchCodeTool().run(SearchCodeInput(pattern="login"), tool_context)

        found = {(m.file, m.line) for m in output.matches}
        assert found == {("notes.md", 1), ("src/auth.py", 1), ("src/auth.py", 2)}
        assert output.total_matches == 3

    @pytest.mark.asyncio
    async def test_file_pattern_filter(self, tool_context, tree):
        output = await SearchCodeTool().run(
            SearchCodeInput(pattern="login", file_pattern="**/*.py"), tool_context,
        )
        assert {m.file for m in output.matches} == {"src/auth.py"}

    @pytest.mark.asyncio
    async def test_max_results(self, tool_context, tree):
        output = await SearchCodeTool().run(SearchCodeInput(pattern="login", max_results=1), tool_context)
        assert output.total_matches == 1

    @pytest.mark.asyncio
    async def test_symlink_out_of_sandbox_is_not_searched(self, tool_context, tree, tmp_path):
        (tmp_path / "secret.txt").write_text("login=admin password=hunter2\n")
        (tree / "leak.txt").symlink_to(tmp_path / "secret.txt")

        output = await SearchCodeTool().run(SearchCodeInput(pattern="password"), tool_context)

        assert output.matches == []

    @pytest.mark.asyncio
    async def test_symlink_inside_sandbox_is_searched(self, tool_context, tree):
        (tree / "alias.md").symlink_to(tree / "notes.md")

        output = await SearchCodeTool().run(SearchCodeInput(pattern="login flow"), tool_context)

        assert {m.file for m in output.matches} == {"alias.md", "notes.md"}


class TestSymlinkListing:
    @pytest.mark.asyncio
    async def test_escaping_entries_are_hidden(self, tool_context, sandbox_root, tmp_path):
        outside = tmp_path / "outside"
        outside.mkdir()
        (outside / "creds.txt").write_text("")
        (sandbox_root / "main.py").write_text("")
        (sandbox_root / "creds.txt").symlink_to(outside / "creds.txt")
        (sandbox_root / "elsewhere").symlink_to(outside)

        flat = await ListFilesTool().run(ListFilesInput(), tool_context)
        deep = await ListFilesTool().run(ListFilesInput(recursive=True), tool_context)

        assert flat.files == ["main.py"]
        assert flat.directories == []
        assert deep.files == ["main.py"]
        assert deep.directories == []


class TestEventLoopStaysResponsive:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("tool_cls, method, params", [
        (ReadFileTool, "_read", ReadFileInput(file_path="a.txt")),
        (WriteFileTool, "_write", WriteFileInput(file_path="b.txt", content="x")),
        (EditFileTool, "_edit", EditFileInput(file_path="a.txt", old_content="a", new_content="b")),
        (ListFilesTool, "_list", ListFilesInput(recursive=True)),
        (SearchCodeTool, "_search", SearchCodeInput(pattern="a")),
    ])
    async def test_filesystem_work_runs_in_a_thread(self, tool_context, sandbox_root, tool_cls, method, params):
        (sandbox_root / "a.txt").write_text("a\n")
        real = getattr(tool_cls, method)

        def slow(self, params, ctx):
            time.sleep(0.3)
            return real(self, params, ctx)

        ticks = []

        async def heartbeat():
            while True:
                ticks.append(time.monotonic())
                await asyncio.sleep(0.01)

        beat = asyncio.create_task(heartbeat())
        try:
            with patch.object(tool_cls, method, slow):
                await tool_cls().run(params, tool_context)
        finally:
            beat.cancel()

        assert len(ticks) >= 5
