"""
shell.py - Run a shell command with a timeout and bounded output

Timeouts, oversized output and non-zero exits are reported as structured
results carrying stdout/stderr/exit_code, never raised.

stdout and stderr are drained by reader tasks into capped buffers. A
stream that goes over the cap gets the process group killed, and the
buffers survive a timeout so partial output is still returned.
"""

import asyncio
import os
import signal
from typing import Any

from pydantic import BaseModel, Field

from .base import Tool

DEFAULT_TIMEOUT = 30
MAX_OUTPUT_BYTES = 10 * 1024 * 1024
READ_CHUNK = 64 * 1024


class _Output:
    """Bytes collected from one stream."""

    def __init__(self):
        self.data = bytearray()
        self.truncated = False

    def decode(self) -> str:
        text = self.data.decode("utf-8", errors="replace")
        if self.truncated:
            text += f"\n... [output truncated at {len(self.data)} bytes]"
        return text


def _kill(proc: asyncio.subprocess.Process) -> None:
    # The shell may have forked children holding our pipes; kill the group.
    try:
        if os.name == "posix":
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except ProcessLookupError:
        pass


async def _pump(
    stream: asyncio.StreamReader,
    out: _Output,
    limit: int,
    proc: asyncio.subprocess.Process,
) -> None:
    while True:
        chunk = await stream.read(READ_CHUNK)
        if not chunk:
            return
        room = limit - len(out.data)
        out.data += chunk[:room]
        if len(chunk) > room:
            out.truncated = True
            _kill(proc)
            return


async def exec_command(
    command: str,
    timeout: float = DEFAULT_TIMEOUT,
    cwd: str | None = None,
    max_output: int = MAX_OUTPUT_BYTES,
) -> dict:
    proc = await asyncio.create_subprocess_shell(
        command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=cwd,
        start_new_session=os.name == "posix",
    )
    stdout, stderr = _Output(), _Output()
    timed_out = False
    try:
        await asyncio.wait_for(
            asyncio.gather(
                _pump(proc.stdout, stdout, max_output, proc),
                _pump(proc.stderr, stderr, max_output, proc),
            ),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        timed_out = True
        _kill(proc)
    except asyncio.CancelledError:
        _kill(proc)
        await proc.wait()
        raise
    await proc.wait()

    result: dict[str, Any] = {
        "stdout": stdout.decode(),
        "stderr": stderr.decode(),
        "exit_code": proc.returncode,
    }
    if timed_out:
        error = f"Command timed out after {timeout:g} seconds"
    elif stdout.truncated or stderr.truncated:
        error = f"Output exceeded {max_output} bytes, command was killed"
    elif proc.returncode != 0:
        error = f"Command failed with exit code {proc.returncode}"
    else:
        return result
    return {"error": error, **result}


class ShellInput(BaseModel):
    command: str = Field(description="The command to run")


class ShellTool(Tool):
    name = "shell"
    description = f"Run a shell command. The command will time out after {DEFAULT_TIMEOUT} seconds."
    Input = ShellInput

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        cwd: str | None = None,
        max_output: int = MAX_OUTPUT_BYTES,
    ):
        self.timeout = timeout
        self.cwd = cwd
        self.max_output = max_output

    async def execute(self, args: ShellInput) -> Any:
        try:
            return await exec_command(args.command, timeout=self.timeout, cwd=self.cwd, max_output=self.max_output)
        except OSError as e:
            return {"error": f"Failed to run command: {e}"}
