"""loopy - a terminal AI assistant with a multi-step tool-use loop."""

from .agent import Agent
from .errors import ConfigError, ExchangeAborted, LoopyError, ProviderError
from .modes import Mode, ModeLoader
from .providers import create_model
from .tools import Tool, ToolRegistry, build_registry, tool
from .types import AgentConfig, Message, Role, SyncResponse, Usage
from .version import get_version

__version__ = get_version()

__all__ = [
    "Agent",
    "AgentConfig",
    "ConfigError",
    "ExchangeAborted",
    "LoopyError",
    "Message",
    "Mode",
    "ModeLoader",
    "ProviderError",
    "Role",
    "SyncResponse",
    "Tool",
    "ToolRegistry",
    "Usage",
    "build_registry",
    "create_model",
    "get_version",
    "tool",
]
