"""
Tool tests: filesystem, grep, shell and the registry.

Tools run against tmp_path; nothing touches the real working tree.
"""
import asyncio
import os
import stat
import sys

import pytest
from pydantic import BaseModel, Field

from loopy.tools import (
    ALL_TOOL_NAMES,
    GrepTool,
    ListDirTool,
    ReadFileTool,
    ShellTool,
    ToolRegistry,
    WriteFileTool,
    build_registry,
    tool,
)
from loopy.tools.filesystem import number_lines, split_lines
from loopy.tools.grep import search


def run(coro):
    return asyncio.run(coro)


def call(t, **kwargs):
    return run(t.execute(t.validate(kwargs)))


# =============================================================================
# list_dir / read_file / write_file
# =============================================================================

def test_list_dir(tmp_path):
    (tmp_path / "b.txt").write_text("b")
    (tmp_path / "a_dir").mkdir()

    result = call(ListDirTool(), path=str(tmp_path))

    assert result == [
        {"name": "a_dir", "type": "dir"},
        {"name": "b.txt", "type": "file"},
    ]


def test_list_dir_missing(tmp_path):
    result = call(ListDirTool(), path=str(tmp_path / "nope"))
    assert "error" in result


def test_write_then_read(tmp_path):
    target = tmp_path / "sub" / "hello.txt"

    assert call(WriteFileTool(), path=str(target), content="one\ntwo\n") == {"success": True}
    assert target.read_text() == "one\ntwo\n"

    result = call(ReadFileTool(), path=str(target))
    assert result == {"content": "     1| one\n     2| two"}


def test_write_overwrites(tmp_path):
    target = tmp_path / "f.txt"
    target.write_text("old")
    call(WriteFileTool(), path=str(target), content="new")
    assert target.read_text() == "new"
    assert [p.name for p in tmp_path.iterdir()] == ["f.txt"]


def test_read_missing_file(tmp_path):
    result = call(ReadFileTool(), path=str(tmp_path / "missing.txt"))
    assert result["error"].startswith("Failed to read file")


def test_read_empty_file(tmp_path):
    target = tmp_path / "empty.txt"
    target.write_text("")
    assert call(ReadFileTool(), path=str(target)) == {"content": ""}


def test_number_lines_offset_and_limit():
    content = "\n".join(f"line {i}" for i in range(1, 11))

    out = number_lines(content, offset=3, limit=2)

    assert out.startswith("     3| line 3\n     4| line 4")
    assert out.endswith("... 6 more lines. Use offset=5 to continue.")


def test_number_lines_width():
    content = "\n".join("x" for _ in range(1000))
    last = number_lines(content).split("\n")[-1]
    assert last == "  1000| x"


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
def test_write_keeps_existing_mode(tmp_path):
    target = tmp_path / "run.sh"
    target.write_text("echo old\n")
    target.chmod(0o755)

    call(WriteFileTool(), path=str(target), content="echo new\n")

    assert stat.S_IMODE(target.stat().st_mode) == 0o755


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
def test_new_file_follows_umask(tmp_path):
    old = os.umask(0o022)
    try:
        call(WriteFileTool(), path=str(tmp_path / "new.txt"), content="x")
    finally:
        os.umask(old)
    assert stat.S_IMODE((tmp_path / "new.txt").stat().st_mode) == 0o644


def test_only_newlines_end_lines():
    assert split_lines("a\x0cb\r\nc d\n") == ["a\x0cb", "c d"]
    assert split_lines("one\n\n") == ["one", ""]


# =============================================================================
# grep
# =============================================================================

def test_grep_finds_matches(tmp_path):
    (tmp_path / "a.py").write_text("import os\ndef main():\n    pass\n")
    (tmp_path / "b.py").write_text("def helper():\n    return 1\n")

    result = call(GrepTool(), pattern=r"def \w+", path=str(tmp_path))

    found = [(r["file"].split("/")[-1], r["line"], r["content"]) for r in result["results"]]
    assert found == [("a.py", 2, "def main():"), ("b.py", 1, "def helper():")]


def test_grep_no_matches(tmp_path):
    (tmp_path / "a.txt").write_text("nothing here")
    result = call(GrepTool(), pattern="xyz", path=str(tmp_path))
    assert result == {"results": [], "message": "No matches found."}


def test_grep_skips_excluded_and_binary(tmp_path):
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / "dep.js").write_text("needle")
    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "config").write_text("needle")
    (tmp_path / "pkg.egg-info").mkdir()
    (tmp_path / "pkg.egg-info" / "PKG-INFO").write_text("needle")
    (tmp_path / "blob.bin").write_bytes(b"needle\0\0")
    (tmp_path / "src.txt").write_text("needle")

    result = call(GrepTool(), pattern="needle", path=str(tmp_path))

    assert [r["file"].split("/")[-1] for r in result["results"]] == ["src.txt"]


def test_grep_non_recursive(tmp_path):
    (tmp_path / "top.txt").write_text("hit")
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub" / "deep.txt").write_text("hit")

    result = call(GrepTool(), pattern="hit", path=str(tmp_path), recursive=False)

    assert len(result["results"]) == 1


def test_grep_caps_results(tmp_path):
    (tmp_path / "many.txt").write_text("match\n" * 20)
    result = search("match", str(tmp_path), max_results=5)
    assert len(result["results"]) == 5
    assert result["truncated"] is True


def test_grep_invalid_regex(tmp_path):
    result = call(GrepTool(), pattern="(unclosed", path=str(tmp_path))
    assert result["error"].startswith("Invalid regex")


def test_grep_missing_path(tmp_path):
    result = call(GrepTool(), pattern="x", path=str(tmp_path / "missing"))
    assert result["error"].startswith("Path does not exist")


def test_grep_line_numbers_ignore_form_feeds(tmp_path):
    (tmp_path / "paged.txt").write_bytes(b"a\x0cb\nneedle\n")
    result = call(GrepTool(), pattern="needle", path=str(tmp_path))
    assert result["results"][0]["line"] == 2


# =============================================================================
# shell
# =============================================================================

@pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell syntax")
def test_shell_echo():
    result = call(ShellTool(), command="echo hello")
    assert result == {"stdout": "hello\n", "stderr": "", "exit_code": 0}


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell syntax")
def test_shell_nonzero_exit_is_a_result():
    result = call(ShellTool(), command="echo oops >&2; exit 3")
    assert result["exit_code"] == 3
    assert result["stderr"] == "oops\n"
    assert result["error"] == "Command failed with exit code 3"


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell syntax")
def test_shell_timeout():
    result = call(ShellTool(timeout=0.5), command="sleep 10")
    assert result["error"] == "Command timed out after 0.5 seconds"
    assert result["exit_code"] != 0


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell syntax")
def test_shell_cwd(tmp_path):
    result = call(ShellTool(cwd=str(tmp_path)), command="pwd")
    assert result["stdout"].strip() == str(tmp_path.resolve())


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell syntax")
def test_shell_timeout_keeps_partial_output():
    result = call(ShellTool(timeout=1), command="echo start; sleep 5")
    assert result["error"] == "Command timed out after 1 seconds"
    assert result["stdout"] == "start\n"


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell syntax")
def test_shell_output_is_capped():
    result = call(ShellTool(max_output=1000), command="head -c 5000000 /dev/zero; sleep 5")

    assert result["error"] == "Output exceeded 1000 bytes, command was killed"
    assert result["stdout"].startswith("\0" * 1000)
    assert result["stdout"].endswith("[output truncated at 1000 bytes]")
    assert result["exit_code"] != 0


# =============================================================================
# Registry
# =============================================================================

class AddInput(BaseModel):
    a: int = Field(description="First number")
    b: int = Field(description="Second number")


@tool(name="add", description="Add two numbers", input_model=AddInput)
async def add_tool(args: AddInput) -> dict:
    return {"sum": args.a + args.b}


def test_registry_execute():
    registry = ToolRegistry([add_tool])
    assert run(registry.execute("add", {"a": 2, "b": 3})) == {"sum": 5}


def test_registry_unknown_tool():
    assert run(ToolRegistry().execute("nope", {})) == {"error": "Unknown tool: nope"}


def test_registry_invalid_input():
    result = run(ToolRegistry([add_tool]).execute("add", {"a": "two"}))
    assert result["error"].startswith("Invalid input for add:")
    assert "b" in result["error"]


def test_registry_converts_exceptions():
    class Empty(BaseModel):
        pass

    @tool(name="broken", description="Raises", input_model=Empty)
    async def broken(args):
        raise OSError("disk on fire")

    result = run(ToolRegistry([broken]).execute("broken", None))
    assert result == {"error": "broken failed: disk on fire"}


def test_schema_shape():
    schema = add_tool.to_schema()
    assert schema["name"] == "add"
    assert schema["description"] == "Add two numbers"
    props = schema["input_schema"]["properties"]
    assert set(props) == {"a", "b"}
    assert "title" not in props["a"]
    assert schema["input_schema"]["required"] == ["a", "b"]


def test_registry_subset_and_clone():
    registry = build_registry()
    assert registry.list_names() == ALL_TOOL_NAMES

    readonly = registry.subset(["read_file", "grep", "not_a_tool"])
    assert readonly.list_names() == ["read_file", "grep"]

    copy = registry.clone()
    copy.unregister("shell")
    assert "shell" in registry
    assert "shell" not in copy


def test_get_schemas_filtered():
    registry = build_registry(["list_dir", "read_file"])
    names = [s["name"] for s in registry.get_schemas(["read_file", "shell"])]
    assert names == ["read_file"]


def test_build_registry_ignores_unknown_names():
    assert build_registry(["list_dir", "teleport"]).list_names() == ["list_dir"]
