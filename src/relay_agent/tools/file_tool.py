"""
File Operations Tools - read, list, search, write, edit and patch files.

Relative paths resolve against the workspace directory (the current
directory when unset). Read-only tools may run in parallel; the writing
tools are serialized by the engine.
"""

import fnmatch
import os
from pathlib import Path
from typing import Optional

import structlog

from ..exceptions import ToolExecutionError
from .base import Tool, ToolConcurrency, ToolParameter, ToolResult

logger = structlog.get_logger()

SKIP_DIRS = {".git", "node_modules", "__pycache__", "vendor", ".DS_Store"}
MAX_LIST_ENTRIES = 500
MAX_GREP_MATCHES = 100


def format_diff(old: str, new: str) -> str:
    """Compact line diff: common head and tail collapsed, changed lines as -/+."""
    old_lines = old.split("\n")
    new_lines = new.split("\n")

    prefix = 0
    while prefix < min(len(old_lines), len(new_lines)) and old_lines[prefix] == new_lines[prefix]:
        prefix += 1

    suffix = 0
    while (
        suffix < min(len(old_lines), len(new_lines)) - prefix
        and old_lines[len(old_lines) - 1 - suffix] == new_lines[len(new_lines) - 1 - suffix]
    ):
        suffix += 1

    parts = []
    if prefix:
        parts.append(f" ... ({prefix} unchanged lines)")
    parts.extend(f"- {line}" for line in old_lines[prefix:len(old_lines) - suffix])
    parts.extend(f"+ {line}" for line in new_lines[prefix:len(new_lines) - suffix])
    if suffix:
        parts.append(f" ... ({suffix} unchanged lines)")
    return "\n".join(parts)


class FileManager:
    """File operations relative to a workspace directory."""

    def __init__(self, workspace_dir: Optional[str] = None):
        self.workspace_dir = Path(
            workspace_dir or os.getenv("WORKSPACE_DIR", os.getcwd())
        ).expanduser().resolve()

    def _normalize_path(self, path: str) -> Path:
        """Normalize a path relative to workspace."""
        p = Path(path).expanduser()
        if not p.is_absolute():
            p = self.workspace_dir / p
        return p

    def read_file(self, path: str) -> str:
        file_path = self._normalize_path(path)
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {path}")
        if not file_path.is_file():
            raise IsADirectoryError(f"Path is a directory: {path}")

        content = file_path.read_text(errors="replace")
        lines = content.count("\n") + 1
        return f"[read {path}: {lines} lines, {len(content.encode())} bytes]\n{content}"

    def list_tree(self, path: str, depth: int = 3) -> str:
        """Render a directory as an indented tree."""
        root = self._normalize_path(path)
        if not root.is_dir():
            raise NotADirectoryError(f"Path is not a directory: {path}")

        entries: list[str] = []

        def walk(directory: Path, prefix: str, level: int) -> None:
            if level > depth or len(entries) >= MAX_LIST_ENTRIES:
                return
            try:
                children = sorted(directory.iterdir(), key=lambda p: p.name)
            except OSError:
                return
            for child in children:
                if len(entries) >= MAX_LIST_ENTRIES:
                    entries.append(prefix + "... (truncated)")
                    return
                if child.name in SKIP_DIRS:
                    continue
                if child.is_dir():
                    entries.append(f"{prefix}{child.name}/")
                    walk(child, prefix + "  ", level + 1)
                else:
                    entries.append(prefix + child.name)

        walk(root, "", 1)
        if not entries:
            return f"{path}: empty directory"
        return f"[{path}: {len(entries)} entries]\n" + "\n".join(entries)

    def grep(self, pattern: str, path: str, include: str = "") -> str:
        """Case-insensitive substring search."""
        root = self._normalize_path(path)
        if not root.exists():
            raise FileNotFoundError(f"Path not found: {path}")

        needle = pattern.lower()
        matches: list[str] = []

        def search(file_path: Path) -> None:
            if include and not fnmatch.fnmatch(file_path.name, include):
                return
            try:
                with open(file_path, errors="replace") as f:
                    for number, line in enumerate(f, start=1):
                        if needle in line.lower():
                            matches.append(f"{file_path}:{number}: {line.rstrip()}")
                            if len(matches) >= MAX_GREP_MATCHES:
                                return
            except OSError:
                return

        if root.is_file():
            search(root)
        else:
            for dirpath, dirnames, filenames in os.walk(root):
                dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
                for filename in sorted(filenames):
                    search(Path(dirpath) / filename)
                    if len(matches) >= MAX_GREP_MATCHES:
                        break
                if len(matches) >= MAX_GREP_MATCHES:
                    break

        if not matches:
            return f"no matches for '{pattern}' in {path}"
        output = f"[{len(matches)} matches for '{pattern}' in {path}]\n" + "\n".join(matches)
        if len(matches) >= MAX_GREP_MATCHES:
            output += f"\n... (truncated at {MAX_GREP_MATCHES} matches)"
        return output

    def write_file(self, path: str, content: str) -> str:
        file_path = self._normalize_path(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        old = file_path.read_text(errors="replace") if file_path.is_file() else None
        file_path.write_text(content)

        lines = content.count("\n") + 1
        if old is None:
            return f"created {path} ({lines} lines, {len(content)} bytes)"
        result = f"wrote {path} ({lines} lines, {len(content)} bytes)"
        diff = format_diff(old, content)
        return f"{result}\n{diff}" if diff else result

    def edit_lines(self, path: str, start_line: int, end_line: int, content: str) -> str:
        """Replace lines start_line..end_line (1-based, inclusive)."""
        if start_line < 1 or end_line < start_line:
            raise ToolExecutionError(f"invalid line range: {start_line}-{end_line}")

        file_path = self._normalize_path(path)
        lines = file_path.read_text().split("\n")
        if start_line > len(lines):
            raise ToolExecutionError(f"start_line {start_line} exceeds file length {len(lines)}")
        end_line = min(end_line, len(lines))

        old_chunk = "\n".join(lines[start_line - 1:end_line])
        updated = lines[:start_line - 1] + [content] + lines[end_line:]
        file_path.write_text("\n".join(updated))

        replaced = end_line - start_line + 1
        new_lines = content.count("\n") + 1
        message = (
            f"edited {path}: replaced lines {start_line}-{end_line} "
            f"({replaced} lines) with {new_lines} lines"
        )
        diff = format_diff(old_chunk, content)
        return f"{message}\n{diff}" if diff else message

    def patch(self, path: str, old_str: str, new_str: str) -> str:
        """Replace a unique exact match of old_str."""
        file_path = self._normalize_path(path)
        text = file_path.read_text()

        count = text.count(old_str) if old_str else 0
        if count == 0:
            raise ToolExecutionError(f"old_str not found in {path}")
        if count > 1:
            raise ToolExecutionError(f"old_str matches {count} locations in {path} (must be unique)")

        file_path.write_text(text.replace(old_str, new_str, 1))
        return f"patched {path}\n{format_diff(old_str, new_str)}"


def create_file_tools(workspace_dir: Optional[str] = None) -> list[Tool]:
    """Create file operation tools bound to one FileManager."""
    manager = FileManager(workspace_dir)

    async def read_file_handler(path: str) -> ToolResult:
        return ToolResult(success=True, output=manager.read_file(path))

    async def list_files_handler(path: str, depth: int = 3) -> ToolResult:
        return ToolResult(success=True, output=manager.list_tree(path, int(depth) if depth else 3))

    async def grep_handler(pattern: str, path: str, include: str = "") -> ToolResult:
        return ToolResult(success=True, output=manager.grep(pattern, path, include))

    async def write_file_handler(path: str, content: str) -> ToolResult:
        return ToolResult(success=True, output=manager.write_file(path, content))

    async def edit_file_handler(path: str, start_line: int, end_line: int, content: str) -> ToolResult:
        return ToolResult(
            success=True,
            output=manager.edit_lines(path, int(start_line), int(end_line), content),
        )

    async def patch_file_handler(path: str, old_str: str, new_str: str) -> ToolResult:
        return ToolResult(success=True, output=manager.patch(path, old_str, new_str))

    return [
        Tool(
            name="file_read",
            description="Read the contents of a file at the given path.",
            parameters=[
                ToolParameter(name="path", param_type="string", description="File path to read"),
            ],
            handler=read_file_handler,
            concurrency=ToolConcurrency.READ_ONLY,
        ),
        Tool(
            name="file_list",
            description=(
                "List directory contents as a tree. Returns file/directory names "
                "with indentation showing structure."
            ),
            parameters=[
                ToolParameter(name="path", param_type="string", description="Directory path to list"),
                ToolParameter(
                    name="depth",
                    param_type="integer",
                    description="Max depth to recurse (default 3)",
                    required=False,
                ),
            ],
            handler=list_files_handler,
            concurrency=ToolConcurrency.READ_ONLY,
        ),
        Tool(
            name="grep",
            description=(
                "Search for a text pattern in files. Returns matching lines with file "
                "path and line number. Searches recursively by default."
            ),
            parameters=[
                ToolParameter(
                    name="pattern",
                    param_type="string",
                    description="Text pattern to search for (substring match, case-insensitive)",
                ),
                ToolParameter(name="path", param_type="string", description="File or directory to search in"),
                ToolParameter(
                    name="include",
                    param_type="string",
                    description='File glob filter (e.g. "*.py"). Optional.',
                    required=False,
                ),
            ],
            handler=grep_handler,
            concurrency=ToolConcurrency.READ_ONLY,
        ),
        Tool(
            name="file_write",
            description="Write content to a file at the given path, creating directories as needed.",
            parameters=[
                ToolParameter(name="path", param_type="string", description="File path to write"),
                ToolParameter(name="content", param_type="string", description="Content to write"),
            ],
            handler=write_file_handler,
        ),
        Tool(
            name="file_edit",
            description=(
                "Edit a file by replacing lines between start_line and end_line "
                "(1-based, inclusive) with new content."
            ),
            parameters=[
                ToolParameter(name="path", param_type="string", description="File path to edit"),
                ToolParameter(name="start_line", param_type="integer", description="First line to replace (1-based)"),
                ToolParameter(name="end_line", param_type="integer", description="Last line to replace (inclusive)"),
                ToolParameter(name="content", param_type="string", description="Replacement content"),
            ],
            handler=edit_file_handler,
        ),
        Tool(
            name="file_patch",
            description=(
                "Edit a file by replacing an exact string match. The old_str must match "
                "exactly one location in the file."
            ),
            parameters=[
                ToolParameter(name="path", param_type="string", description="File path to edit"),
                ToolParameter(name="old_str", param_type="string", description="Exact string to find (must be unique)"),
                ToolParameter(name="new_str", param_type="string", description="Replacement string"),
            ],
            handler=patch_file_handler,
        ),
    ]
