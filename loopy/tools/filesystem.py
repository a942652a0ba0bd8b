"""
filesystem.py - list_dir, read_file, write_file

read_file prefixes every line with its 1-based number so that
apply_diff's :start_line: references are unambiguous.
"""

import os
import stat
import tempfile
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from .base import Tool

MAX_READ_LINES = 2000
MAX_LINE_CHARS = 2000


def _target_mode(path: Path) -> int:
    """Mode for the written file: the existing file's, or 0666 minus the umask."""
    try:
        return stat.S_IMODE(path.stat().st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


def atomic_write(path: Path, content: str) -> None:
    """Write via a temp file in the same directory, then os.replace(). Keeps the target's permissions."""
    path.parent.mkdir(parents=True, exist_ok=True)
    mode = _target_mode(path)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


class ListDirInput(BaseModel):
    path: str = Field(description="Directory path to list")


class ListDirTool(Tool):
    name = "list_dir"
    description = "List contents of a directory. Returns entries with their name and type (dir or file)."
    Input = ListDirInput

    async def execute(self, args: ListDirInput) -> Any:
        try:
            entries = sorted(os.scandir(args.path), key=lambda e: e.name)
        except OSError as e:
            return {"error": f"Failed to list directory: {e}"}
        return [
            {"name": e.name, "type": "dir" if e.is_dir() else "file"}
            for e in entries
        ]


class ReadFileInput(BaseModel):
    path: str = Field(description="Path to the file to read")
    offset: int = Field(default=1, ge=1, description="1-based line to start reading from")
    limit: int = Field(default=MAX_READ_LINES, ge=1, description="Maximum number of lines to return")


def split_lines(content: str) -> list[str]:
    """
    Split text into lines the way apply_diff counts them.

    Only "\n" (and "\r\n") ends a line; form feeds and other Unicode
    separators stay inside the line. One trailing newline is not a line.
    """
    content = content.replace("\r\n", "\n")
    if content.endswith("\n"):
        content = content[:-1]
    return content.split("\n")


def number_lines(content: str, offset: int = 1, limit: int = MAX_READ_LINES) -> str:
    """
    Format file content with line numbers.

    Empty content gives an empty string (no trailing artifacts).
    """
    if not content:
        return ""

    lines = split_lines(content)
    start = offset - 1
    end = min(len(lines), start + limit)

    output = []
    for i, line in enumerate(lines[start:end], start=offset):
        if len(line) > MAX_LINE_CHARS:
            line = line[:MAX_LINE_CHARS] + "..."
        output.append(f"{i:>6}| {line}")

    result = "\n".join(output)
    if end < len(lines):
        result += f"\n\n... {len(lines) - end} more lines. Use offset={end + 1} to continue."
    return result


class ReadFileTool(Tool):
    name = "read_file"
    description = (
        "Read the content of a file. Each line is prefixed with its 1-based line number "
        "followed by '| '. The prefix is not part of the file content."
    )
    Input = ReadFileInput

    async def execute(self, args: ReadFileInput) -> Any:
        try:
            with open(args.path, "r", encoding="utf-8", newline="") as f:
                content = f.read()
        except UnicodeDecodeError:
            return {"error": f"Binary file cannot be read as text: {args.path}"}
        except OSError as e:
            return {"error": f"Failed to read file: {e}"}
        return {"content": number_lines(content, args.offset, args.limit)}


class WriteFileInput(BaseModel):
    path: str = Field(description="Path to the file to write")
    content: str = Field(description="Content to write to the file")


class WriteFileTool(Tool):
    name = "write_file"
    description = (
        "Write content to a file. This will create the file (and any missing parent "
        "directories) if it does not exist, and overwrite it if it does."
    )
    Input = WriteFileInput

    async def execute(self, args: WriteFileInput) -> Any:
        try:
            atomic_write(Path(args.path), args.content)
        except OSError as e:
            return {"error": f"Failed to write file: {e}"}
        return {"success": True}
