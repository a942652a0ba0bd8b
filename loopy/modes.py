"""
modes.py - Mode Loader

A mode is a named bundle: instruction text + the tools it authorizes.

Templates live in loopy/modes/<name>.md:

    # Mode: code            <- optional header, stripped

    You are ...
    [[include:_base]]       <- replaced by loopy/modes/_base.md (recursively)

Files starting with "_" are fragments: includable but not listed as modes.

MODE_TOOLS is an allow-list. The engine only ever sees
registry.subset(mode.tools), so a read-only mode cannot call write_file
or shell.
"""

import os
import platform
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path

from .logger import Logger
from .tools import ALL_TOOL_NAMES

BUILTIN_MODES_DIR = Path(__file__).parent / "modes"

BUILTIN_DEFAULT = "You are a helpful AI assistant. Be concise and clear in your responses."
DEFAULT_MODE_NAME = "default"

READ_ONLY_TOOLS = ["list_dir", "read_file", "grep"]

MODE_TOOLS: dict[str, list[str]] = {
    "code": list(ALL_TOOL_NAMES),
    "ask": list(READ_ONLY_TOOLS),
    "debug": READ_ONLY_TOOLS + ["shell"],
}

MODE_HEADER = "# Mode:"
MACHINE_FRAGMENT = "_machine"

INCLUDE_RE = re.compile(r"\[\[include:([^\]]+)\]\]")


@dataclass
class Mode:
    name: str
    content: str
    tools: list[str] = field(default_factory=lambda: list(ALL_TOOL_NAMES))


def tools_for_mode(name: str) -> list[str]:
    """Allow-list for a mode; unknown modes get the most permissive set."""
    return list(MODE_TOOLS.get(name, ALL_TOOL_NAMES))


def machine_info() -> str:
    shell = os.environ.get("SHELL") or os.environ.get("COMSPEC") or "unknown"
    return "\n".join([
        "## Machine",
        "",
        f"- OS: {platform.system()} {platform.release()}",
        f"- Platform: {platform.platform()}",
        f"- Architecture: {platform.machine()}",
        f"- Python: {sys.version.split()[0]}",
        f"- Shell: {shell}",
        f"- Working directory: {os.getcwd()}",
    ]) + "\n"


class ModeLoader:
    """Loads modes from one directory. Cheap and idempotent, so callers need no cache."""

    def __init__(self, modes_dir: Path | str | None = None, logger: Logger | None = None):
        self.modes_dir = Path(modes_dir) if modes_dir is not None else BUILTIN_MODES_DIR
        self.logger = logger or Logger.disabled()

    def list_modes(self) -> list[str]:
        try:
            names = [
                p.stem for p in self.modes_dir.iterdir()
                if p.suffix == ".md" and not p.name.startswith("_")
            ]
        except OSError:
            return [DEFAULT_MODE_NAME]
        return sorted(names)

    def refresh_machine_info(self) -> None:
        """Regenerate the _machine fragment. Best effort: a read-only install just keeps the old one."""
        try:
            (self.modes_dir / f"{MACHINE_FRAGMENT}.md").write_text(machine_info(), encoding="utf-8")
        except OSError as e:
            self.logger.debug("Could not write machine info fragment", {"error": str(e)})

    def process_includes(self, content: str, seen: frozenset[str] = frozenset()) -> str:
        """
        Recursively replace [[include:name]] markers.

        A circular or unreadable include becomes an inline diagnostic
        instead of failing the load.
        """
        def replace(match: re.Match) -> str:
            include_name = match.group(1).strip()
            if include_name in seen:
                return f'[Error: Circular include detected for "{include_name}"]'
            try:
                fragment = (self.modes_dir / f"{include_name}.md").read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                return f'[Error: Could not include mode fragment "{include_name}"]'

            if fragment.startswith(MODE_HEADER):
                fragment = "\n".join(fragment.split("\n")[1:]).strip()

            return self.process_includes(fragment, seen | {include_name})

        return INCLUDE_RE.sub(replace, content)

    def load_mode(self, name: str) -> Mode:
        """
        Load a mode by name.

        Falls back to the built-in default (most permissive tool set) when
        the template file is missing.
        """
        self.refresh_machine_info()
        path = self.modes_dir / f"{name}.md"
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            self.logger.warn("Mode not found, using built-in default", {"mode": name})
            return Mode(name=DEFAULT_MODE_NAME, content=BUILTIN_DEFAULT, tools=list(ALL_TOOL_NAMES))

        content = self.process_includes(content, frozenset({name}))

        lines = content.split("\n")
        start = 0
        if lines and lines[0].startswith(MODE_HEADER):
            start = 1
            if len(lines) > 1 and lines[1].strip() == "":
                start = 2

        return Mode(
            name=name,
            content="\n".join(lines[start:]).strip(),
            tools=tools_for_mode(name),
        )

    def get_mode(self, name: str) -> Mode | None:
        if name not in self.list_modes():
            return None
        return self.load_mode(name)


def load_mode(name: str, modes_dir: Path | str | None = None) -> Mode:
    return ModeLoader(modes_dir).load_mode(name)


def list_modes(modes_dir: Path | str | None = None) -> list[str]:
    return ModeLoader(modes_dir).list_modes()
