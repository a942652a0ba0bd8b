"""
apply_diff.py - Line-anchored SEARCH/REPLACE edits

Diff format (one or more blocks):

    <<<<<<< SEARCH
    :start_line:12
    -------
    [exact content currently at line 12..]
    =======
    [replacement content]
    >>>>>>> REPLACE

Start lines refer to the file as it is BEFORE the diff (i.e. the numbers
read_file showed). Blocks are applied in file order; every block is
checked before anything is written, so a mismatch leaves the file
byte-for-byte untouched.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from .base import Tool
from .filesystem import atomic_write

BLOCK_RE = re.compile(
    r"<<<<<<< SEARCH\r?\n"
    r":start_line: *(\d+)\r?\n"
    r"-------\r?\n"
    r"([\s\S]*?)\r?\n"
    r"=======\r?\n"
    r"([\s\S]*?)\r?\n"
    r">>>>>>> REPLACE"
)


@dataclass
class DiffBlock:
    index: int          # 1-based position in the diff as written
    start_line: int     # 1-based
    search: str
    replace: str


class DiffError(Exception):
    pass


def parse_diff_blocks(diff: str) -> list[DiffBlock]:
    return [
        DiffBlock(
            index=i,
            start_line=int(m.group(1)),
            search=m.group(2).replace("\r\n", "\n"),
            replace=m.group(3).replace("\r\n", "\n"),
        )
        for i, m in enumerate(BLOCK_RE.finditer(diff), start=1)
    ]


def apply_blocks(content: str, blocks: list[DiffBlock]) -> str:
    """
    Apply blocks to content and return the new content.

    Raises DiffError naming the failing block and showing expected vs
    actual text. Nothing is returned on failure, so callers never see a
    partially edited result.
    """
    lines = content.split("\n")
    ordered = sorted(blocks, key=lambda b: b.start_line)

    # Validate everything against the original lines first.
    prev_end = 0
    for block in ordered:
        if block.start_line < 1:
            raise DiffError(f"Block {block.index} failed: start_line must be >= 1")
        start = block.start_line - 1
        search_lines = block.search.split("\n")
        if start < prev_end:
            raise DiffError(
                f"Block {block.index} failed: overlaps a previous block "
                f"(starts at line {block.start_line})"
            )
        actual = "\n".join(lines[start:start + len(search_lines)])
        if start >= len(lines) or actual != block.search:
            raise DiffError(
                f"Block {block.index} failed: Search content does not match at line {block.start_line}.\n"
                f"Expected:\n{block.search or '(empty search)'}\n\n"
                f"Actual:\n{actual or '(content not found at line)'}"
            )
        prev_end = start + len(search_lines)

    # Apply bottom-up so earlier line numbers stay valid.
    for block in reversed(ordered):
        start = block.start_line - 1
        end = start + len(block.search.split("\n"))
        lines[start:end] = block.replace.split("\n")

    return "\n".join(lines)


class ApplyDiffInput(BaseModel):
    path: str = Field(description="The path to the file to modify")
    diff: str = Field(description=(
        "The diff content containing SEARCH/REPLACE blocks. Format:\n"
        "<<<<<<< SEARCH\n"
        ":start_line:<line_number>\n"
        "-------\n"
        "[exact content to find]\n"
        "=======\n"
        "[new content to replace with]\n"
        ">>>>>>> REPLACE\n"
        "Multiple blocks can be included in a single diff. The :start_line: is 1-based "
        "and indicates where the search content should be found. Every :start_line: refers "
        "to the file as it is before this diff, as shown by read_file; do not adjust it for "
        "lines added or removed by earlier blocks."
    ))


class ApplyDiffTool(Tool):
    name = "apply_diff"
    description = (
        "Apply precise, targeted modifications to an existing file using one or more "
        "search/replace blocks. The SEARCH block must exactly match the existing content, "
        "including whitespace and indentation. Use the read_file tool first if you are not "
        "confident in the exact content to search for."
    )
    Input = ApplyDiffInput

    async def execute(self, args: ApplyDiffInput) -> Any:
        blocks = parse_diff_blocks(args.diff)
        if not blocks:
            return {"error": "No valid SEARCH/REPLACE blocks found in diff. Ensure the format is correct."}

        path = Path(args.path)
        try:
            with open(path, "r", encoding="utf-8", newline="") as f:
                content = f.read()
        except (OSError, UnicodeDecodeError):
            return {"error": f"Failed to read file: {args.path}. Ensure the file exists."}

        # Blocks are matched on LF text; CRLF files are converted back on write.
        crlf = "\r\n" in content
        try:
            new_content = apply_blocks(content.replace("\r\n", "\n"), blocks)
        except DiffError as e:
            return {"error": str(e)}
        if crlf:
            new_content = new_content.replace("\n", "\r\n")

        try:
            atomic_write(path, new_content)
        except OSError:
            return {"error": f"Failed to write file: {args.path}"}

        return {"success": True, "applied_blocks": len(blocks)}
