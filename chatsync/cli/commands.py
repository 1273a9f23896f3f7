"""CLI commands for chatsync."""

import asyncio
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.history import FileHistory
from prompt_toolkit.patch_stdout import patch_stdout

from chatsync import __version__, __logo__
from chatsync.config.schema import Config

app = typer.Typer(
    name="chatsync",
    help=f"{__logo__} chatsync - realtime conversation sync client",
    no_args_is_help=True,
)

console = Console()
EXIT_COMMANDS = {"exit", "quit", "/exit", "/quit", ":q"}


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} chatsync v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """chatsync - realtime conversation sync client."""
    pass


def _is_exit_command(command: str) -> bool:
    """Return True when input should end interactive chat."""
    return command.lower() in EXIT_COMMANDS


def _require_identity(config: Config) -> None:
    if not config.identity.user_id:
        console.print("[red]Error: identity.userId is not set.[/red]")
        console.print("Run [cyan]chatsync onboard --user-id ID --user-name NAME[/cyan] first.")
        raise typer.Exit(1)


def _configure_logs(logs: bool) -> None:
    from loguru import logger

    if logs:
        logger.enable("chatsync")
    else:
        logger.disable("chatsync")


def _format_time(value: Any) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else ""


# ============================================================================
# Onboard / Status
# ============================================================================


@app.command()
def onboard(
    user_id: str = typer.Option(None, "--user-id", help="User id to speak as"),
    user_name: str = typer.Option(None, "--user-name", help="Display name"),
    server: str = typer.Option(None, "--server", help="Backend base URL"),
):
    """Create or refresh the chatsync configuration."""
    from chatsync.config.loader import get_config_path, load_config, save_config

    config_path = get_config_path()

    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        console.print("  [bold]y[/bold] = overwrite with defaults (existing values will be lost)")
        console.print("  [bold]N[/bold] = refresh config, keeping existing values and adding new fields")
        if typer.confirm("Overwrite?"):
            config = Config()
            console.print(f"[green]✓[/green] Config reset to defaults at {config_path}")
        else:
            config = load_config()
            console.print(f"[green]✓[/green] Config refreshed at {config_path} (existing values preserved)")
    else:
        config = Config()
        console.print(f"[green]✓[/green] Created config at {config_path}")

    if user_id:
        config.identity.user_id = user_id
    if user_name:
        config.identity.user_name = user_name
    if server:
        config.server.api_url = server
    save_config(config)

    console.print(f"\n{__logo__} chatsync is ready!")
    if not config.identity.user_id:
        console.print("\nNext steps:")
        console.print(f"  1. Set [cyan]identity.userId[/cyan] in [cyan]{config_path}[/cyan]")
        console.print("  2. Watch a conversation: [cyan]chatsync watch CONVERSATION_ID[/cyan]")


@app.command()
def status():
    """Show chatsync status."""
    from chatsync.config.loader import get_config_path, load_config

    config_path = get_config_path()
    config = load_config()

    console.print(f"{__logo__} chatsync Status\n")
    console.print(f"Config: {config_path} {'[green]✓[/green]' if config_path.exists() else '[red]✗[/red]'}")
    console.print(f"API: {config.server.api_url}")
    console.print(f"Socket: {config.server.resolved_socket_url()}{config.server.socket_path}")
    identity = config.identity
    if identity.user_id:
        console.print(f"Identity: [green]{identity.user_name or identity.user_id}[/green] ({identity.user_id})")
    else:
        console.print("Identity: [dim]not set[/dim]")


# ============================================================================
# History
# ============================================================================


@app.command()
def history(
    conversation_id: str = typer.Argument(..., help="Conversation id"),
    pages: int = typer.Option(1, "--pages", "-p", min=1, help="Number of pages to fetch"),
    logs: bool = typer.Option(False, "--logs/--no-logs", help="Show chatsync runtime logs"),
):
    """Print a conversation's message history."""
    from chatsync.api import ChatApi
    from chatsync.config.loader import load_config
    from chatsync.history import HistoryPager

    config = load_config()
    _configure_logs(logs)

    async def run():
        async with ChatApi(config.server) as api:
            pager = HistoryPager(api, page_size=config.history.page_size)
            await pager.load_initial_messages(conversation_id)
            while pager.error is None and pager.has_more and pager.current_page < pages:
                await pager.load_more()
            return pager

    pager = asyncio.run(run())
    if pager.error:
        console.print(f"[red]Failed to load history: {pager.error}[/red]")
        raise typer.Exit(1)

    table = Table(title=f"{conversation_id} (pages 1-{pager.current_page})")
    table.add_column("Time", style="dim")
    table.add_column("Sender", style="cyan")
    table.add_column("Message")
    table.add_column("Read by", style="dim")
    for message in pager.messages:
        readers = ", ".join(r.user_name for r in message.read_by)
        table.add_row(_format_time(message.timestamp), message.sender_name, message.text, readers)
    console.print(table)
    if pager.has_more:
        console.print("[dim]More history available (use --pages)[/dim]")


# ============================================================================
# Live commands
# ============================================================================


def _attach_printers(session) -> None:
    """Print live events after the session's trackers have applied them."""
    manager = session.manager

    def on_message(payload: Any) -> None:
        if isinstance(payload, dict) and payload.get("conversationId") in (None, session.conversation_id):
            console.print(f"[cyan]{payload.get('senderName', '?')}[/cyan]: {payload.get('text', '')}")

    def on_read(payload: Any) -> None:
        if isinstance(payload, dict):
            message_id = str(payload.get("messageId", ""))
            text = session.receipts.get_read_status_text(session.receipts.receipts_for(message_id))
            if text:
                console.print(f"  [dim]{message_id}: {text}[/dim]")

    def on_reaction(payload: Any) -> None:
        if isinstance(payload, dict):
            message_id = str(payload.get("messageId", ""))
            summary = " ".join(f"{s.emoji} {s.count}" for s in session.reactions.get_reaction_summary(message_id))
            console.print(f"  [dim]{message_id}: {summary or 'no reactions'}[/dim]")

    def on_presence(payload: Any) -> None:
        console.print(f"[dim]{session.presence.get_online_users_text()}[/dim]")

    def on_typing(payload: Any) -> None:
        text = session.typing.get_typing_text()
        if text:
            console.print(f"[dim]{text}[/dim]")

    manager.on_new_message(on_message)
    manager.on_message_read(on_read)
    manager.on_reaction_added(on_reaction)
    manager.on_reaction_removed(on_reaction)
    manager.on_presence_update(on_presence)
    manager.on_user_typing(on_typing)
    manager.on_connect(lambda: console.print("[green]connected[/green]"))
    manager.on_disconnect(lambda: console.print("[yellow]disconnected, waiting for reconnect...[/yellow]"))


async def _open_session(config: Config, conversation_id: str):
    from chatsync.session import ChatSession

    session = ChatSession.from_config(config)
    if not await session.manager.connect():
        console.print(f"[red]Could not connect to {config.server.resolved_socket_url()}[/red]")
        return None

    await session.open(conversation_id)
    if session.history.error:
        console.print(f"[yellow]History unavailable: {session.history.error}[/yellow]")
    for message in session.messages.messages:
        console.print(f"[dim]{_format_time(message.timestamp)}[/dim] [cyan]{message.sender_name}[/cyan]: {message.text}")
    console.print(f"[dim]{session.presence.get_online_users_text()}[/dim]")
    _attach_printers(session)
    return session


async def _close_session(session) -> None:
    session.close()
    await session.manager.disconnect()
    await session.history.source.aclose()


@app.command()
def watch(
    conversation_id: str = typer.Argument(..., help="Conversation id"),
    logs: bool = typer.Option(False, "--logs/--no-logs", help="Show chatsync runtime logs"),
):
    """Follow a conversation's live events."""
    from chatsync.config.loader import load_config

    config = load_config()
    _configure_logs(logs)
    _require_identity(config)

    async def run():
        session = await _open_session(config, conversation_id)
        if session is None:
            raise typer.Exit(1)
        console.print(f"{__logo__} Watching [bold]{conversation_id}[/bold] (Ctrl+C to quit)\n")
        try:
            while True:
                await asyncio.sleep(1)
        finally:
            await _close_session(session)

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\nGoodbye!")


@app.command()
def chat(
    conversation_id: str = typer.Argument(..., help="Conversation id"),
    logs: bool = typer.Option(False, "--logs/--no-logs", help="Show chatsync runtime logs"),
):
    """Join a conversation and send messages interactively."""
    from chatsync.config.loader import load_config

    config = load_config()
    _configure_logs(logs)
    _require_identity(config)

    history_file = Path.home() / ".chatsync" / "history" / "cli_history"
    history_file.parent.mkdir(parents=True, exist_ok=True)
    prompt = PromptSession(history=FileHistory(str(history_file)), multiline=False)

    async def run():
        session = await _open_session(config, conversation_id)
        if session is None:
            raise typer.Exit(1)
        console.print(f"{__logo__} Interactive mode (type [bold]exit[/bold] or [bold]Ctrl+C[/bold] to quit)\n")
        try:
            while True:
                try:
                    with patch_stdout():
                        user_input = await prompt.prompt_async(HTML("<b fg='ansiblue'>You:</b> "))
                except (EOFError, KeyboardInterrupt):
                    break
                text = user_input.strip()
                if not text:
                    continue
                if _is_exit_command(text):
                    break
                if not await session.messages.send_message(text):
                    console.print("[yellow]Not connected, message not sent[/yellow]")
        finally:
            await _close_session(session)

    asyncio.run(run())
    console.print("\nGoodbye!")


if __name__ == "__main__":
    app()
