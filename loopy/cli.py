"""
cli.py - Command line entry point

    loopy "what does main.py do?"          one-shot, prints the answer
    loopy -v -m gpt-4o -p openrouter ...   with run details
    loopy -i                               interactive session

Exit codes: 0 success, 1 usage/runtime error, 130 interrupted.
"""

import argparse
import asyncio
import json
import sys

from .agent import Agent
from .commands import Session, handle_command
from .config import DEFAULT_MAX_STEPS, DEFAULT_MODE, load_config, load_env
from .errors import LoopyError
from .events import ErrorEvent, EventType, TextDelta, ToolCallCompleted, ToolCallStarted
from .logger import Logger
from .modes import ModeLoader
from .providers import DEFAULT_PROVIDER, PROVIDERS, list_models
from .tools import build_registry
from .types import SyncResponse
from .version import get_version

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="loopy",
        description="Terminal AI assistant with local tools.",
    )
    parser.add_argument("prompt", nargs="*", help="Prompt to send")
    parser.add_argument("-v", "--verbose", action="store_true", help="Print run details")
    parser.add_argument("-d", "--debug", action="store_true", help="Print raw provider payloads")
    parser.add_argument("-m", "--model", help="Model name")
    parser.add_argument("-p", "--provider", help=f"Provider ({', '.join(PROVIDERS)})")
    # Validated by hand so a bad value exits 1 instead of argparse's 2.
    parser.add_argument("--max-steps", dest="max_steps", help="Maximum tool-use steps per exchange")
    parser.add_argument("--mode", help="Mode (code, ask, debug)")
    parser.add_argument("--config", help="Path to config.json")
    parser.add_argument("--list-models", action="store_true", help="List models for the provider and exit")
    parser.add_argument("-i", "--interactive", action="store_true", help="Start an interactive session")
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    return parser


def parse_max_steps(value: str | None) -> int | None:
    """Positive integer or None; raises ValueError otherwise."""
    if value is None:
        return None
    steps = int(value)
    if steps < 1:
        raise ValueError(value)
    return steps


def print_summary(result: SyncResponse) -> None:
    print("\n---", file=sys.stderr)
    print(f"Finish reason: {result.finish_reason}", file=sys.stderr)
    print(f"Steps: {len(result.steps)}", file=sys.stderr)
    usage = result.usage
    print(f"Tokens: input={usage.input_tokens} output={usage.output_tokens}", file=sys.stderr)
    for step in result.steps:
        for call in step.tool_calls:
            print(f"Tool: {call.name}({json.dumps(call.input, ensure_ascii=False)})", file=sys.stderr)


async def run_once(agent: Agent, prompt: str, verbose: bool) -> int:
    result = await agent.send_sync(prompt)
    print(result.text)
    if verbose:
        print_summary(result)
    return EXIT_OK


async def run_interactive(session: Session) -> int:
    agent = session.agent

    def on_event(event) -> None:
        if isinstance(event, TextDelta):
            print(event.delta, end="", flush=True)
        elif isinstance(event, ToolCallStarted):
            print(f"\n> {event.name}({json.dumps(event.input, ensure_ascii=False)[:200]})", flush=True)
        elif isinstance(event, ToolCallCompleted):
            print(f"  {json.dumps(event.result, ensure_ascii=False)[:200]}", flush=True)
        elif isinstance(event, ErrorEvent):
            print(f"\nError: {event.error}", file=sys.stderr)

    agent.subscribe(on_event, EventType.TEXT_DELTA, EventType.TOOL_CALL, EventType.TOOL_RESULT, EventType.ERROR)

    print(f"loopy {get_version()} - {agent.config.provider}/{agent.config.model} [{session.mode}]")
    print("Type /help for commands, /exit to quit.\n")

    while True:
        try:
            user_input = (await asyncio.to_thread(input, "You: ")).strip()
        except EOFError:
            break

        if not user_input:
            continue

        result = await handle_command(session, user_input)
        if result is not None:
            if result.exit:
                break
            if result.output:
                print(result.output)
            continue

        await agent.send(user_input)
        print()

    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.version:
        print(get_version())
        return EXIT_OK

    try:
        max_steps = parse_max_steps(args.max_steps)
    except ValueError:
        print(f"Error: --max-steps must be a positive integer, got {args.max_steps!r}", file=sys.stderr)
        return EXIT_ERROR

    load_env()
    logger = Logger(debug=True if args.debug else None)
    config = load_config(args.config, logger=logger)

    provider = (args.provider or config.provider or DEFAULT_PROVIDER).lower()
    model = args.model or config.model.name
    max_steps = max_steps or config.max_steps or DEFAULT_MAX_STEPS
    mode_name = args.mode or config.default_mode or DEFAULT_MODE

    try:
        if args.list_models:
            for name in asyncio.run(list_models(provider)):
                print(name)
            return EXIT_OK

        prompt = " ".join(args.prompt).strip()
        if not prompt and not args.interactive:
            print("Error: No prompt provided. Use --help for usage.", file=sys.stderr)
            return EXIT_ERROR

        registry = build_registry(config.tools.enabled)
        loader = ModeLoader(logger=logger)
        mode = loader.load_mode(mode_name)
        agent = Agent(
            provider=provider,
            model=model,
            max_steps=max_steps,
            instructions=mode.content,
            tools=registry.subset(mode.tools),
            logger=logger,
        )

        if args.verbose:
            print(f"Provider: {provider}", file=sys.stderr)
            print(f"Model: {model}", file=sys.stderr)
            print(f"Mode: {mode.name}", file=sys.stderr)
            print(f"Tools: {', '.join(agent.config.tools.list_names()) or 'none'}", file=sys.stderr)
            print(f"Max steps: {max_steps}", file=sys.stderr)

        if args.interactive:
            return asyncio.run(run_interactive(Session(agent, registry, loader, mode.name)))
        return asyncio.run(run_once(agent, prompt, args.verbose))

    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return EXIT_INTERRUPTED
    except LoopyError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
