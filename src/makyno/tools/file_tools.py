"""File tools. Every path is relative to, and confined inside, the sandbox root.

Filesystem work runs in a worker thread so a large read or search never
stalls the event loop that serves approvals and other sessions.
"""

import asyncio
import fnmatch
import logging
import os
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field

from ..errors import ContentNotFoundError, NotFoundError, ValidationError
from ..utils.validators import resolve_inside
from .base import Tool, ToolContext, ToolInput, ToolKind

logger = logging.getLogger(__name__)

# Directory entries skipped by recursive listing and search
SKIPPED_NAMES = {"node_modules"}
MAX_SEARCH_FILE_BYTES = 1024 * 1024


def sandbox_path(ctx: ToolContext, relative: str) -> Path:
    """Resolve a tool path inside the sandbox or raise ValidationError."""
    try:
        return resolve_inside(ctx.sandbox.root, relative)
    except ValueError as e:
        raise ValidationError(str(e), path=relative) from e


def _skipped(name: str) -> bool:
    return name.startswith(".") or name in SKIPPED_NAMES


def _inside(path: Path, root: Path) -> bool:
    """False for entries, such as symlinks, that resolve outside ``root``."""
    try:
        resolve_inside(root, path.relative_to(root))
    except ValueError:
        return False
    return True


# --- read_file ---


class ReadFileInput(ToolInput):
    file_path: str = Field(description="Path to the file to read (relative to the worktree root)")


class ReadFileOutput(BaseModel):
    content: str
    lines: int
    path: str


class ReadFileTool(Tool):
    name = "read_file"
    description = (
        "Reads the contents of a file. Use this to understand existing code before "
        "making changes. Always read files before editing them."
    )
    kind = ToolKind.INSPECT
    input_model = ReadFileInput
    output_model = ReadFileOutput

    async def run(self, params: ReadFileInput, ctx: ToolContext) -> ReadFileOutput:
        return await asyncio.to_thread(self._read, params, ctx)

    def _read(self, params: ReadFileInput, ctx: ToolContext) -> ReadFileOutput:
        path = sandbox_path(ctx, params.file_path)
        if not path.exists():
            raise NotFoundError(f"File not found: {params.file_path}", path=params.file_path)
        if not path.is_file():
            raise ValidationError(f"Not a file: {params.file_path}", path=params.file_path)

        content = path.read_text(encoding="utf-8", errors="replace")
        return ReadFileOutput(content=content, lines=len(content.split("\n")), path=params.file_path)


# --- write_file ---


class WriteFileInput(ToolInput):
    file_path: str = Field(description="Path to the file to write (relative to the worktree root)")
    content: str = Field(description="The complete content to write to the file")


class WriteFileOutput(BaseModel):
    success: bool
    path: str
    size: int
    message: str


class WriteFileTool(Tool):
    name = "write_file"
    description = (
        "Creates a new file or overwrites an existing file with the provided content. "
        "For modifying existing files, use edit_file instead."
    )
    kind = ToolKind.MUTATE
    input_model = WriteFileInput
    output_model = WriteFileOutput

    async def run(self, params: WriteFileInput, ctx: ToolContext) -> WriteFileOutput:
        return await asyncio.to_thread(self._write, params, ctx)

    def _write(self, params: WriteFileInput, ctx: ToolContext) -> WriteFileOutput:
        path = sandbox_path(ctx, params.file_path)
        if path.is_dir():
            raise ValidationError(f"Path is a directory: {params.file_path}", path=params.file_path)

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(params.content, encoding="utf-8")
        size = path.stat().st_size

        return WriteFileOutput(
            success=True,
            path=params.file_path,
            size=size,
            message=f"File written: {params.file_path} ({size} bytes)",
        )


# --- edit_file ---


class EditFileInput(ToolInput):
    file_path: str = Field(description="Path to the file to edit")
    old_content: str = Field(description="The exact text to find; every occurrence is replaced")
    new_content: str = Field(description="The new text to replace it with")


class EditFileOutput(BaseModel):
    success: bool
    path: str
    replacements: int
    message: str


class EditFileTool(Tool):
    name = "edit_file"
    description = (
        "Edits an existing file by replacing every occurrence of old_content with "
        "new_content. old_content must match the file text exactly."
    )
    kind = ToolKind.MUTATE
    input_model = EditFileInput
    output_model = EditFileOutput

    async def run(self, params: EditFileInput, ctx: ToolContext) -> EditFileOutput:
        if not params.old_content:
            raise ValidationError("old_content cannot be empty", path=params.file_path)
        return await asyncio.to_thread(self._edit, params, ctx)

    def _edit(self, params: EditFileInput, ctx: ToolContext) -> EditFileOutput:
        path = sandbox_path(ctx, params.file_path)
        if not path.is_file():
            raise NotFoundError(f"File not found: {params.file_path}", path=params.file_path)

        current = path.read_text(encoding="utf-8")
        # str.count and str.replace both scan non-overlapping occurrences left to
        # right, so the reported count is exactly the number substituted.
        replacements = current.count(params.old_content)
        if replacements == 0:
            raise ContentNotFoundError(
                f"Content not found in {params.file_path}. Make sure old_content matches exactly.",
                path=params.file_path,
            )

        path.write_text(current.replace(params.old_content, params.new_content), encoding="utf-8")

        plural = "s" if replacements != 1 else ""
        return EditFileOutput(
            success=True,
            path=params.file_path,
            replacements=replacements,
            message=f"File edited: {params.file_path} ({replacements} replacement{plural})",
        )


# --- list_files ---


class ListFilesInput(ToolInput):
    dir_path: str = Field(default=".", description="Directory to list (relative to the worktree root)")
    recursive: bool = Field(default=False, description="List recursively, skipping hidden entries and node_modules")


class ListFilesOutput(BaseModel):
    files: List[str]
    directories: List[str]
    path: str
    count: int


class ListFilesTool(Tool):
    name = "list_files"
    description = "Lists files and directories in a given path. Use this to explore the project structure."
    kind = ToolKind.INSPECT
    input_model = ListFilesInput
    output_model = ListFilesOutput

    async def run(self, params: ListFilesInput, ctx: ToolContext) -> ListFilesOutput:
        return await asyncio.to_thread(self._list, params, ctx)

    def _list(self, params: ListFilesInput, ctx: ToolContext) -> ListFilesOutput:
        root = Path(ctx.sandbox.root).resolve()
        base = sandbox_path(ctx, params.dir_path)
        if not base.is_dir():
            raise NotFoundError(f"Directory not found: {params.dir_path}", path=params.dir_path)

        files: List[str] = []
        directories: List[str] = []
        if params.recursive:
            for dirpath, dirnames, filenames in os.walk(base):
                current = Path(dirpath)
                dirnames[:] = sorted(
                    d for d in dirnames if not _skipped(d) and _inside(current / d, root)
                )
                rel_dir = current.relative_to(base)
                directories.extend((rel_dir / d).as_posix() for d in dirnames)
                files.extend(
                    (rel_dir / f).as_posix()
                    for f in sorted(filenames)
                    if not _skipped(f) and _inside(current / f, root)
                )
        else:
            for entry in sorted(base.iterdir()):
                if not _inside(entry, root):
                    continue
                (directories if entry.is_dir() else files).append(entry.name)

        return ListFilesOutput(
            files=files,
            directories=directories,
            path=params.dir_path,
            count=len(files) + len(directories),
        )


# --- search_code ---


class SearchCodeInput(ToolInput):
    pattern: str = Field(min_length=1, description="Literal text to search for")
    file_pattern: Optional[str] = Field(default=None, description="Glob for files to search (e.g. '**/*.py')")
    max_results: int = Field(default=20, ge=1, le=500, description="Maximum number of matches to return")


class SearchMatch(BaseModel):
    file: str
    line: int
    content: str


class SearchCodeOutput(BaseModel):
    matches: List[SearchMatch]
    total_matches: int
    search_pattern: str


def _matches_glob(rel_path: str, pattern: Optional[str]) -> bool:
    if not pattern:
        return True
    if fnmatch.fnmatch(rel_path, pattern):
        return True
    # "**/x" should also match x at the top level
    return pattern.startswith("**/") and fnmatch.fnmatch(rel_path, pattern[3:])


class SearchCodeTool(Tool):
    name = "search_code"
    description = "Searches for a literal text pattern across files in the worktree."
    kind = ToolKind.INSPECT
    input_model = SearchCodeInput
    output_model = SearchCodeOutput

    async def run(self, params: SearchCodeInput, ctx: ToolContext) -> SearchCodeOutput:
        return await asyncio.to_thread(self._search, params, ctx)

    def _search(self, params: SearchCodeInput, ctx: ToolContext) -> SearchCodeOutput:
        root = Path(ctx.sandbox.root).resolve()
        matches: List[SearchMatch] = []

        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if not _skipped(d))
            for filename in sorted(filenames):
                if _skipped(filename):
                    continue
                path = Path(dirpath) / filename
                rel = path.relative_to(root).as_posix()
                if not _matches_glob(rel, params.file_pattern) or not _inside(path, root):
                    continue
                try:
                    if path.stat().st_size > MAX_SEARCH_FILE_BYTES:
                        continue
                    text = path.read_text(encoding="utf-8")
                except (OSError, UnicodeDecodeError):
                    continue
                for lineno, line in enumerate(text.splitlines(), start=1):
                    if params.pattern in line:
                        matches.append(SearchMatch(file=rel, line=lineno, content=line.strip()))
                        if len(matches) >= params.max_results:
                            return SearchCodeOutput(
                                matches=matches,
                                total_matches=len(matches),
                                search_pattern=params.pattern,
                            )

        return SearchCodeOutput(matches=matches, total_matches=len(matches), search_pattern=params.pattern)
