"""Version string: `git describe` for a checkout, package metadata otherwise."""

import subprocess
from importlib import metadata
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def get_version(root: Path = PROJECT_ROOT) -> str:
    try:
        r = subprocess.run(
            ["git", "describe", "--tags", "--always", "--dirty"],
            cwd=root, capture_output=True, text=True, timeout=5,
        )
        if r.returncode == 0 and r.stdout.strip():
            return r.stdout.strip()
    except (OSError, subprocess.TimeoutExpired):
        pass

    try:
        return metadata.version("loopy")
    except metadata.PackageNotFoundError:
        return "unknown"
