"""
commands.py - REPL slash commands

    /exit /quit /q       leave the session
    /help /?             show this list
    /list-models         models available from the current provider
    /model <name>        switch model (next exchange)
    /provider <name>     switch provider (google, openrouter, anthropic)
    /mode <name>         switch mode: new instructions + tool set, clears history
    /modes               list modes
    /clear               clear conversation history
"""

from dataclasses import dataclass

from .agent import Agent
from .errors import ProviderError
from .modes import ModeLoader
from .providers import PROVIDERS, list_models
from .tools import ToolRegistry

HELP_TEXT = """Commands:
  /exit, /quit, /q     Exit
  /help, /?            Show this help
  /list-models         List models for the current provider
  /model <name>        Switch model
  /provider <name>     Switch provider (google, openrouter, anthropic)
  /mode <name>         Switch mode (clears history)
  /modes               List available modes
  /clear               Clear conversation history"""

EXIT_COMMANDS = {"/exit", "/quit", "/q"}


@dataclass
class CommandResult:
    output: str = ""
    exit: bool = False


@dataclass
class Session:
    """What a command may touch: the agent plus what is needed to rebuild a mode."""
    agent: Agent
    registry: ToolRegistry
    loader: ModeLoader
    mode: str = "default"


def parse_command(line: str) -> tuple[str, str] | None:
    """Split '/cmd arg...' into ('/cmd', 'arg...'). Returns None for plain prompts."""
    line = line.strip()
    if not line.startswith("/"):
        return None
    name, _, arg = line.partition(" ")
    return name.lower(), arg.strip()


async def handle_command(session: Session, line: str) -> CommandResult | None:
    parsed = parse_command(line)
    if parsed is None:
        return None
    name, arg = parsed
    agent = session.agent

    if name in EXIT_COMMANDS:
        return CommandResult(exit=True)

    if name in ("/help", "/?"):
        return CommandResult(HELP_TEXT)

    if name == "/clear":
        agent.clear_history()
        return CommandResult("History cleared.")

    if name == "/model":
        if not arg:
            return CommandResult(f"Current model: {agent.config.model}")
        agent.update_config(model=arg)
        return CommandResult(f"Model set to {arg}")

    if name == "/provider":
        if not arg:
            return CommandResult(f"Current provider: {agent.config.provider}")
        if arg.lower() not in PROVIDERS:
            return CommandResult(f"Unknown provider: {arg}. Choose one of: {', '.join(PROVIDERS)}")
        agent.update_config(provider=arg.lower())
        return CommandResult(f"Provider set to {arg.lower()}")

    if name == "/modes":
        names = session.loader.list_modes()
        lines = [f"{'*' if n == session.mode else ' '} {n}" for n in names]
        return CommandResult("\n".join(lines))

    if name == "/mode":
        if not arg:
            return CommandResult(f"Current mode: {session.mode}")
        if arg not in session.loader.list_modes():
            return CommandResult(f"Unknown mode: {arg}")
        mode = session.loader.load_mode(arg)
        agent.apply_mode(mode, session.registry)
        session.mode = mode.name
        return CommandResult(f"Mode set to {mode.name} (tools: {', '.join(agent.config.tools.list_names()) or 'none'})")

    if name == "/list-models":
        try:
            models = await list_models(agent.config.provider)
        except ProviderError as e:
            return CommandResult(f"Error: {e}")
        return CommandResult("\n".join(models) or "No models found.")

    return CommandResult(f"Unknown command: {name}. Type /help for commands.")
