"""
config.py - Config file and .env loading

config.json:

    {
      "provider": "google",
      "model": {"name": "gemini-2.5-flash"},
      "tools": {"enabled": ["list_dir", "read_file", "grep"]},
      "maxSteps": 5,
      "defaultMode": "code"
    }

A missing or broken file silently falls back to DEFAULT_CONFIG.
"""

import json
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .logger import Logger

DEFAULT_CONFIG_PATH = Path.home() / ".loopy" / "config.json"
DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_MAX_STEPS = 5
DEFAULT_MODE = "code"
ENV_FILES = (".env.local", ".env")


class ModelSettings(BaseModel):
    name: str


class ToolSettings(BaseModel):
    enabled: list[str] = Field(default_factory=lambda: ["list_dir"])


class Config(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    provider: str | None = None
    model: ModelSettings
    tools: ToolSettings = Field(default_factory=ToolSettings)
    max_steps: int | None = Field(default=None, alias="maxSteps", ge=1)
    default_mode: str | None = Field(default=None, alias="defaultMode")


def default_config() -> Config:
    return Config(
        model=ModelSettings(name=DEFAULT_MODEL),
        tools=ToolSettings(enabled=["list_dir"]),
        max_steps=DEFAULT_MAX_STEPS,
    )


def config_path() -> Path:
    override = os.getenv("LOOPY_CONFIG")
    return Path(override) if override else DEFAULT_CONFIG_PATH


def load_config(path: Path | str | None = None, logger: Logger | None = None) -> Config:
    path = Path(path) if path is not None else config_path()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return Config.model_validate(data)
    except FileNotFoundError:
        return default_config()
    except (OSError, ValueError, ValidationError) as e:
        if logger:
            logger.warn("Invalid config file, using defaults", {"path": str(path), "error": str(e)})
        return default_config()


def load_env(cwd: Path | str | None = None) -> None:
    """Load .env.local (wins) and then .env from the working directory."""
    base = Path(cwd) if cwd is not None else Path.cwd()
    load_dotenv(base / ENV_FILES[0], override=True)
    load_dotenv(base / ENV_FILES[1])
