"""Main entry point for Helmsman."""

import asyncio
import signal
from dataclasses import dataclass
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from helmsman import __version__
from helmsman.agent import Agent
from helmsman.config import Config, set_config
from helmsman.events import EventStream, EventType, ProgressEvent, ProgressEventType
from helmsman.exceptions import HelmsmanError, QueryAbortedError, SessionNotFoundError
from helmsman.history_agent import HistoryAgent
from helmsman.llm import create_provider
from helmsman.logging import configure_logging, log
from helmsman.session import SessionManager
from helmsman.tools import ToolRegistry, register_builtin_tools, set_tool_registry

app = typer.Typer(help="Helmsman - a command-line AI assistant with local tools")
console = Console()

HELP_TEXT = "Commands: /tools list tools, /clear reset the conversation, /exit quit"
RESULT_PREVIEW_CHARS = 200


@dataclass
class CLIState:
    config: Config
    stream: bool = True
    verbose: bool = False


def load_config(
    config_path: str = "",
    provider: str = "",
    model: str = "",
    yolo: bool = False,
    channel_markup: bool = False,
) -> Config:
    """Load configuration and apply command-line overrides."""
    if config_path:
        try:
            cfg = Config.from_yaml(Path(config_path))
        except Exception as e:
            log.error("Failed to load config", path=config_path, error=str(e))
            cfg = Config.load()
    else:
        cfg = Config.load()

    if provider:
        cfg.model.provider = provider
    if model:
        cfg.model.model = model
    if yolo:
        cfg.tools.shell.yolo = True
    if channel_markup:
        cfg.agent.enable_channel_markup_parser = True
    return cfg


def build_registry(cfg: Config) -> ToolRegistry:
    registry = register_builtin_tools(ToolRegistry(default_timeout=cfg.agent.tool_timeout))
    set_tool_registry(registry)
    return registry


def _print_progress(event: ProgressEvent) -> None:
    if event.type == ProgressEventType.ITERATION:
        console.print(f"[dim]iteration {event.iteration}/{event.max_iterations}[/dim]")
    elif event.type == ProgressEventType.TOOL_CALLS_START:
        console.print(f"[dim]running {event.tool_count} tool call(s)[/dim]")
    elif event.type == ProgressEventType.NO_TOOLS:
        console.print("[dim]empty reply, asking for an answer[/dim]")


def build_agent(state: CLIState) -> Agent:
    cfg = state.config
    provider = create_provider(
        provider=cfg.model.provider,
        model=cfg.model.model,
        api_key=cfg.model.api_key or None,
        base_url=cfg.model.base_url or None,
        timeout=cfg.model.timeout,
    )
    return Agent(
        provider=provider,
        config=cfg.agent,
        registry=build_registry(cfg),
        progress_handler=_print_progress if state.verbose else None,
    )


def _preview(text: str) -> str:
    text = text.strip().replace("\n", " ")
    if len(text) <= RESULT_PREVIEW_CHARS:
        return text
    return text[:RESULT_PREVIEW_CHARS] + "..."


async def render_stream(stream: EventStream, verbose: bool = False) -> bool:
    """Print streamed events; returns True when the turn completed."""
    completed = False
    async with stream:
        async for event in stream:
            tool = event.tool
            if event.type == EventType.MESSAGE:
                console.print(event.content, end="", markup=False, highlight=False, soft_wrap=True)
            elif event.type == EventType.TOOL_START and tool:
                label = f"[cyan]> {escape(tool.name)}[/cyan] [dim]{escape(tool.args_raw)}[/dim]"
                console.print(f"\n{label}", highlight=False)
            elif event.type == EventType.TOOL_RESULT and tool:
                status = "[red]failed[/red]" if tool.error else "[green]done[/green]"
                console.print(f"[cyan]< {escape(tool.name)}[/cyan] {status}")
                if verbose or tool.error:
                    console.print(_preview(tool.result), style="dim", markup=False, highlight=False)
            elif event.type == EventType.TOOL_CANCEL and tool:
                console.print(f"[yellow]< {escape(tool.name)} cancelled[/yellow]")
            elif event.type == EventType.TOOL_TIMEOUT and tool:
                console.print(f"[yellow]< {escape(tool.name)} timed out[/yellow]")
            elif event.type == EventType.ERROR:
                console.print(f"\n[red]Error:[/red] {escape(str(event.error))}", highlight=False)
            elif event.type == EventType.COMPLETE:
                completed = True
                console.print()
    return completed


def _install_abort_handler(abort_event: asyncio.Event) -> bool:
    try:
        asyncio.get_running_loop().add_signal_handler(signal.SIGINT, abort_event.set)
    except (NotImplementedError, RuntimeError):
        return False
    return True


def _remove_abort_handler() -> None:
    try:
        asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)
    except (NotImplementedError, RuntimeError):
        pass


async def run_turn(runner: HistoryAgent | Agent, text: str, state: CLIState) -> None:
    """Run one chat turn; Ctrl-C aborts it and keeps the chat alive."""
    abort_event = asyncio.Event()
    installed = _install_abort_handler(abort_event)
    try:
        if state.stream:
            completed = await render_stream(runner.query_stream(text, abort_event), state.verbose)
            if not completed and abort_event.is_set():
                console.print("\n[yellow]cancelled[/yellow]")
            return
        try:
            response = await runner.query(text, abort_event)
        except QueryAbortedError:
            console.print("[yellow]cancelled[/yellow]")
            return
        except HelmsmanError as e:
            console.print(f"[red]Error:[/red] {escape(str(e))}", highlight=False)
            return
        console.print(response.content, markup=False, highlight=False)
    finally:
        if installed:
            _remove_abort_handler()


def print_tools(registry: ToolRegistry) -> None:
    table = Table(title="Tools", show_header=True)
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    for name, description in sorted(registry.descriptions().items()):
        table.add_row(name, description)
    console.print(table)


async def run_chat(state: CLIState, continue_last: bool = False, resume: str = "") -> None:
    """Interactive chat loop."""
    cfg = state.config
    agent = build_agent(state)
    manager = SessionManager(cfg.session.path)
    history = HistoryAgent(agent, manager)
    cwd = str(Path.cwd())
    try:
        session = None
        if resume:
            session = await manager.select_session(resume)
            if session is None:
                raise SessionNotFoundError(resume)
        elif continue_last:
            session = await manager.get_last_session_for_path(cwd)
        if session is not None:
            history.restore_memory_from_session(session)
            console.print(f"[dim]Resumed session {escape(session.title or session.id)}[/dim]")
        else:
            history.session = await manager.start_session(cwd, cfg.model.provider, cfg.model.model)

        runner: HistoryAgent | Agent = history if cfg.session.auto_save else agent
        console.print(f"[bold]Helmsman[/bold] v{__version__} ({cfg.model.provider}/{cfg.model.model})")
        console.print(f"[dim]{HELP_TEXT}[/dim]")

        while True:
            try:
                text = (await asyncio.to_thread(console.input, "[bold green]> [/bold green]")).strip()
            except EOFError:
                break
            if not text:
                continue
            command = text.lower()
            if command in ("/exit", "/quit"):
                break
            if command == "/clear":
                agent.clear()
                history.session = await manager.start_session(cwd, cfg.model.provider, cfg.model.model)
                console.print("[dim]Conversation cleared[/dim]")
                continue
            if command == "/tools":
                print_tools(agent.tools)
                continue
            if command == "/help":
                console.print(f"[dim]{HELP_TEXT}[/dim]")
                continue
            await run_turn(runner, text, state)
    finally:
        await agent.provider.close()
        await manager.close()


async def run_query(state: CLIState, text: str) -> str:
    agent = build_agent(state)
    try:
        response = await agent.query(text)
    finally:
        await agent.provider.close()
    return response.content


@app.callback()
def main(
    ctx: typer.Context,
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    provider: str = typer.Option("", "-p", "--provider", help="Override provider"),
    model: str = typer.Option("", "-m", "--model", help="Override model"),
    no_stream: bool = typer.Option(False, "--no-stream", help="Disable streaming"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging and progress output"),
    yolo: bool = typer.Option(False, "--yolo", help="Allow any shell command"),
    channel_markup: bool = typer.Option(False, "--channel-markup", help="Parse channel-markup tool calls"),
) -> None:
    """Helmsman - a command-line AI assistant with local tools."""
    cfg = load_config(config, provider, model, yolo, channel_markup)
    set_config(cfg)
    configure_logging("DEBUG" if verbose else None)
    ctx.obj = CLIState(config=cfg, stream=not no_stream, verbose=verbose)


@app.command()
def chat(
    ctx: typer.Context,
    continue_last: bool = typer.Option(False, "--continue", help="Continue the last session in this directory"),
    resume: str = typer.Option("", "--resume", help="Resume a session by id, name or #index"),
) -> None:
    """Start an interactive chat."""
    state: CLIState = ctx.obj
    try:
        asyncio.run(run_chat(state, continue_last, resume))
    except KeyboardInterrupt:
        log.info("Shutting down...")
    except (HelmsmanError, ValueError) as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}", highlight=False)
        raise typer.Exit(1) from e


@app.command()
def query(ctx: typer.Context, text: str = typer.Argument(..., help="Question to ask")) -> None:
    """Ask one question and print the answer."""
    state: CLIState = ctx.obj
    try:
        content = asyncio.run(run_query(state, text))
    except (HelmsmanError, ValueError) as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}", highlight=False)
        raise typer.Exit(1) from e
    except KeyboardInterrupt:
        raise typer.Exit(130)
    console.print(content, markup=False, highlight=False)


@app.command()
def tools(ctx: typer.Context) -> None:
    """List available tools."""
    state: CLIState = ctx.obj
    print_tools(build_registry(state.config))


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"Helmsman v{__version__}")


if __name__ == "__main__":
    app()
