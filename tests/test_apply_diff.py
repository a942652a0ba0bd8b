"""apply_diff: SEARCH/REPLACE blocks anchored at a start line."""
import asyncio
import stat
import sys

import pytest

from loopy.tools import ApplyDiffTool, ReadFileTool
from loopy.tools.apply_diff import DiffError, apply_blocks, parse_diff_blocks


def block(start_line, search, replace):
    return (
        "<<<<<<< SEARCH\n"
        f":start_line:{start_line}\n"
        "-------\n"
        f"{search}\n"
        "=======\n"
        f"{replace}\n"
        ">>>>>>> REPLACE"
    )


def apply(path, diff):
    t = ApplyDiffTool()
    return asyncio.run(t.execute(t.validate({"path": str(path), "diff": diff})))


@pytest.fixture
def source(tmp_path):
    f = tmp_path / "app.py"
    f.write_text("def main():\n    print('hi')\n    return 0\n\n\ndef other():\n    pass\n")
    return f


def test_single_block(source):
    result = apply(source, block(2, "    print('hi')", "    print('hello')"))

    assert result == {"success": True, "applied_blocks": 1}
    assert source.read_text().splitlines()[1] == "    print('hello')"


def test_multiple_blocks_use_original_line_numbers(source):
    diff = "\n".join([
        block(1, "def main():", "def main():\n    # entry point"),
        block(7, "    pass", "    return 1"),
    ])

    result = apply(source, diff)

    assert result["applied_blocks"] == 2
    assert source.read_text() == (
        "def main():\n    # entry point\n    print('hi')\n    return 0\n\n\ndef other():\n    return 1\n"
    )


def test_blocks_out_of_order(source):
    diff = "\n".join([
        block(7, "    pass", "    return 1"),
        block(1, "def main():", "def start():"),
    ])
    assert apply(source, diff)["success"] is True
    assert source.read_text().startswith("def start():")


def test_mismatch_leaves_file_untouched(source):
    before = source.read_bytes()
    diff = "\n".join([
        block(1, "def main():", "def start():"),
        block(3, "    return 42", "    return 0"),
    ])

    result = apply(source, diff)

    assert "Block 2 failed: Search content does not match at line 3" in result["error"]
    assert "Expected:\n    return 42" in result["error"]
    assert "Actual:\n    return 0" in result["error"]
    assert source.read_bytes() == before


def test_start_line_past_end(source):
    before = source.read_bytes()
    result = apply(source, block(100, "x", "y"))
    assert "Block 1 failed" in result["error"]
    assert source.read_bytes() == before


def test_overlapping_blocks_rejected(source):
    before = source.read_bytes()
    diff = "\n".join([
        block(1, "def main():\n    print('hi')", "def main():"),
        block(2, "    print('hi')", "    print('x')"),
    ])

    result = apply(source, diff)

    assert "overlaps a previous block" in result["error"]
    assert source.read_bytes() == before


def test_no_blocks(source):
    result = apply(source, "just some text")
    assert result == {"error": "No valid SEARCH/REPLACE blocks found in diff. Ensure the format is correct."}


def test_missing_file(tmp_path):
    result = apply(tmp_path / "missing.py", block(1, "a", "b"))
    assert result["error"].startswith("Failed to read file")


def test_crlf_file_keeps_line_endings(tmp_path):
    f = tmp_path / "win.txt"
    f.write_bytes(b"alpha\r\nbeta\r\ngamma\r\n")

    result = apply(f, block(2, "beta", "BETA"))

    assert result["success"] is True
    assert f.read_bytes() == b"alpha\r\nBETA\r\ngamma\r\n"


def test_parse_reports_block_index():
    diff = block(3, "a", "b") + "\n" + block(1, "c", "d")
    blocks = parse_diff_blocks(diff)
    assert [(b.index, b.start_line, b.search, b.replace) for b in blocks] == [
        (1, 3, "a", "b"),
        (2, 1, "c", "d"),
    ]


def test_delete_lines():
    blocks = parse_diff_blocks(block(2, "two", ""))
    assert apply_blocks("one\ntwo\nthree", blocks) == "one\n\nthree"


def test_apply_blocks_raises_diff_error():
    with pytest.raises(DiffError, match="Block 1 failed"):
        apply_blocks("one", parse_diff_blocks(block(1, "two", "three")))


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
def test_file_mode_is_preserved(source):
    source.chmod(0o755)

    result = apply(source, block(2, "    print('hi')", "    print('hello')"))

    assert result["success"] is True
    assert stat.S_IMODE(source.stat().st_mode) == 0o755


def test_diff_description_pins_start_lines_to_original_file():
    description = ApplyDiffTool().to_schema()["input_schema"]["properties"]["diff"]["description"]
    assert "as it is before this diff" in description
    assert "do not adjust it" in description


def test_start_lines_in_form_feed_file_match_read_file(tmp_path):
    f = tmp_path / "paged.txt"
    f.write_bytes(b"a\x0cb\nc\n")
    t = ReadFileTool()
    shown = asyncio.run(t.execute(t.validate({"path": str(f)})))["content"]
    assert shown == "     1| a\x0cb\n     2| c"

    result = apply(f, block(2, "c", "C"))

    assert result["success"] is True
    assert f.read_bytes() == b"a\x0cb\nC\n"
