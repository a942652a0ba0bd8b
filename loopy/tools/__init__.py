from .apply_diff import ApplyDiffTool
from .base import Tool, ToolRegistry, tool
from .filesystem import ListDirTool, ReadFileTool, WriteFileTool
from .grep import GrepTool
from .shell import ShellTool

ALL_TOOL_NAMES = ["list_dir", "read_file", "write_file", "apply_diff", "grep", "shell"]

_TOOL_CLASSES: dict[str, type[Tool]] = {
    "list_dir": ListDirTool,
    "read_file": ReadFileTool,
    "write_file": WriteFileTool,
    "apply_diff": ApplyDiffTool,
    "grep": GrepTool,
    "shell": ShellTool,
}


def build_registry(names: list[str] | None = None) -> ToolRegistry:
    """Registry of the built-in tools, restricted to `names` when given. Unknown names are ignored."""
    registry = ToolRegistry()
    for name in ALL_TOOL_NAMES if names is None else names:
        cls = _TOOL_CLASSES.get(name)
        if cls is not None:
            registry.register(cls())
    return registry


__all__ = [
    "ALL_TOOL_NAMES",
    "ApplyDiffTool",
    "GrepTool",
    "ListDirTool",
    "ReadFileTool",
    "ShellTool",
    "Tool",
    "ToolRegistry",
    "WriteFileTool",
    "build_registry",
    "tool",
]
