"""Main entry point: interactive agent session."""

import asyncio
import sys
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.text import Text

from agent_loop.agent import Agent, LoopState
from agent_loop.config import Config, set_config
from agent_loop.exceptions import ConfigurationError
from agent_loop.history import ConversationHistory
from agent_loop.llm import create_provider
from agent_loop.logging import configure_logging, log

PROMPT = "s01 >> "
EXIT_INPUTS = {"", "q", "exit"}
PREVIEW_CHARS = 200

console = Console()


def print_tool_output(tool_name: str, arguments: dict[str, Any], output: str) -> None:
    """Echo the command and a short preview of its output."""
    command = arguments.get("command")
    if isinstance(command, str):
        console.print(Text(f"$ {command}", style="yellow"))
    else:
        console.print(Text(f"[{tool_name}]", style="yellow"))
    console.print(Text(output[:PREVIEW_CHARS]))


async def run_interactive(agent: Agent) -> None:
    """Read prompts until the user quits; history persists across prompts."""
    history = ConversationHistory()

    while True:
        try:
            query = console.input(f"[cyan]{PROMPT}[/cyan]").strip()
        except EOFError:
            break
        if query in EXIT_INPUTS:
            break

        result = await agent.complete(history, query)

        if result.state == LoopState.FAILED:
            console.print(Text(f"API error: {result.error}", style="red"))
        elif result.state == LoopState.MAX_TURNS_EXCEEDED:
            console.print(Text(str(result.error), style="red"))

        reply = history.last_assistant_text()
        if result.ok and reply:
            console.print(Text(reply))
        console.print()


async def _run(agent: Agent) -> None:
    try:
        await run_interactive(agent)
    finally:
        await agent.provider.close()


def main(
    config: str = "",
    model: str = "",
    working_dir: str = "",
    max_turns: int = 0,
    verbose: bool = False,
) -> None:
    """Start an interactive agent session."""
    cfg = Config.load(Path(config) if config else None)

    if model:
        cfg.model.model = model
    if working_dir:
        cfg.agent.working_dir = working_dir
    if max_turns > 0:
        cfg.agent.max_turns = max_turns
    if verbose:
        cfg.logging.level = "DEBUG"

    set_config(cfg)
    configure_logging(cfg.logging)

    try:
        cfg.require_model_credentials()
    except ConfigurationError as e:
        console.print(Text(f"error: {e}", style="red"))
        sys.exit(1)

    provider = create_provider(cfg.model)
    agent = Agent.from_config(cfg, provider, tool_output_callback=print_tool_output)

    try:
        asyncio.run(_run(agent))
    except KeyboardInterrupt:
        log.info("Shutting down...")
        sys.exit(0)


def version() -> None:
    """Show version information."""
    from agent_loop import __version__
    print(f"agent-loop v{__version__}")


cli = typer.Typer(help="Run a language model against local shell tools.")


@cli.command()
def run(
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    model: str = typer.Option("", "-m", "--model", help="Override model"),
    working_dir: str = typer.Option("", "-w", "--working-dir", help="Directory commands run in"),
    max_turns: int = typer.Option(0, "--max-turns", help="Stop after this many model calls (0 = unbounded)"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    main(config, model, working_dir, max_turns, verbose)


@cli.command()
def ver() -> None:
    version()


if __name__ == "__main__":
    cli()
