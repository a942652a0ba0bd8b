"""
logger.py - Best-effort file logging and debug payload printing

One log file per calendar day under ~/.loopy/logs:

    [2026-10-18T09:12:03.123Z] [INFO] Tool call {"name": "list_dir", ...}

Every append is a single small write, so several loopy processes can
share the directory. Logging never raises: any failure is dropped.
"""

import json
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

DEFAULT_LOG_DIR = Path.home() / ".loopy" / "logs"


def _to_json(data: Any, indent: int | None = None) -> str:
    return json.dumps(data, ensure_ascii=False, default=str, indent=indent)


class Logger:
    """
    Constructed once by the entry point and passed down.

    enabled=False turns the file sink into a no-op (used by tests and
    library callers that do not want files in the home directory).
    debug=True (or DEBUG_LOG=true) prints raw provider payloads to stderr.
    """

    def __init__(self, log_dir: Path | str | None = None, enabled: bool = True, debug: bool | None = None):
        self.log_dir = Path(log_dir) if log_dir is not None else DEFAULT_LOG_DIR
        self.enabled = enabled
        if debug is None:
            debug = os.getenv("DEBUG_LOG", "false").lower() == "true"
        self.debug_payloads = debug
        self._dir_ready = False

    @classmethod
    def disabled(cls) -> "Logger":
        return cls(enabled=False, debug=False)

    def log_file(self, now: datetime | None = None) -> Path:
        now = now or datetime.now()
        return self.log_dir / f"{now:%Y-%m-%d}.log"

    @staticmethod
    def format_entry(timestamp: datetime, level: str, message: str, data: Any = None) -> str:
        stamp = timestamp.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
        data_str = f" {_to_json(data)}" if data is not None else ""
        return f"[{stamp}] [{level.upper()}] {message}{data_str}\n"

    def _write(self, level: str, message: str, data: Any = None) -> None:
        if not self.enabled:
            return
        try:
            if not self._dir_ready:
                self.log_dir.mkdir(parents=True, exist_ok=True)
                self._dir_ready = True
            now = datetime.now()
            line = self.format_entry(now, level, message, data)
            with open(self.log_file(now), "a", encoding="utf-8") as f:
                f.write(line)
        except Exception:
            # Never let logging disrupt the app.
            pass

    def debug(self, message: str, data: Any = None) -> None:
        self._write("debug", message, data)

    def info(self, message: str, data: Any = None) -> None:
        self._write("info", message, data)

    def warn(self, message: str, data: Any = None) -> None:
        self._write("warn", message, data)

    def error(self, message: str, data: Any = None) -> None:
        self._write("error", message, data)

    # -------------------------------------------------------------------------
    # Raw payload printing (--debug)
    # -------------------------------------------------------------------------

    def log_api_call(self, caller: str, system: str | None, messages: list, tools: list) -> None:
        """Print raw API call details for debugging."""
        if not self.debug_payloads:
            return
        self._print_block(f"[API CALL] from: {caller}", {
            "system": system,
            "messages": messages,
            "tools": tools,
        })

    def log_api_response(self, caller: str, response: Any) -> None:
        """Print raw API response for debugging."""
        if not self.debug_payloads:
            return
        self._print_block(f"[API RESPONSE] to: {caller}", response)

    @staticmethod
    def _print_block(title: str, payload: Any) -> None:
        try:
            print("\n" + "=" * 80, file=sys.stderr)
            print(title, file=sys.stderr)
            print("=" * 80, file=sys.stderr)
            print(_to_json(payload, indent=2), file=sys.stderr)
            print("=" * 80 + "\n", file=sys.stderr)
        except Exception:
            pass
