"""
grep.py - Regex search over files

Why a dedicated grep tool instead of shelling out?
1. Structured {file, line, content} results
2. Built-in result cap (won't dump 10MB into the context)
3. Automatic noise directory exclusion
"""

import asyncio
import os
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from .base import Tool
from .filesystem import split_lines

MAX_RESULTS = 100

EXCLUDE_DIRS = {
    '.git', '.hg', '.svn', 'node_modules', '__pycache__', '.venv', 'venv',
    '.idea', '.vscode', 'dist', 'build', '.next', '.nuxt',
    'coverage', '.pytest_cache', '.mypy_cache', '.tox',
}


def _is_binary(fp: Path) -> bool:
    try:
        with open(fp, "rb") as f:
            return b"\0" in f.read(8192)
    except OSError:
        return True


def _iter_files(base: Path, recursive: bool):
    if base.is_file():
        yield base
        return

    if not recursive:
        for entry in sorted(base.iterdir()):
            if entry.is_file():
                yield entry
        return

    for root, dirs, files in os.walk(base):
        dirs[:] = sorted(
            d for d in dirs
            if d not in EXCLUDE_DIRS and not d.endswith(".egg-info")
        )
        for name in sorted(files):
            yield Path(root) / name


def search(pattern: str, path: str, recursive: bool = True, max_results: int = MAX_RESULTS) -> dict:
    regex = re.compile(pattern)
    base = Path(path)
    if not base.exists():
        return {"error": f"Path does not exist: {path}"}

    results = []
    truncated = False

    for fp in _iter_files(base, recursive):
        if _is_binary(fp):
            continue
        try:
            with open(fp, "r", encoding="utf-8", errors="ignore", newline="") as f:
                content = f.read()
        except OSError:
            continue

        for lineno, line in enumerate(split_lines(content), start=1):
            if regex.search(line):
                if len(results) >= max_results:
                    truncated = True
                    break
                results.append({"file": str(fp), "line": lineno, "content": line.strip()})
        if truncated:
            break

    if not results:
        return {"results": [], "message": "No matches found."}

    output: dict[str, Any] = {"results": results}
    if truncated:
        output["truncated"] = True
    return output


class GrepInput(BaseModel):
    pattern: str = Field(description="The pattern to search for (Python regex syntax)")
    path: str = Field(default=".", description="The directory or file to search in")
    recursive: bool = Field(default=True, description="Whether to search recursively")


class GrepTool(Tool):
    name = "grep"
    description = (
        "Search for a regex pattern in files within a directory. Returns up to "
        f"{MAX_RESULTS} matches as file, line number and line content. Version-control "
        "and dependency directories are skipped."
    )
    Input = GrepInput

    async def execute(self, args: GrepInput) -> Any:
        try:
            return await asyncio.to_thread(search, args.pattern, args.path, args.recursive)
        except re.error as e:
            return {"error": f"Invalid regex: {e}"}
