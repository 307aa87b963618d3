"""Command line interface for agnt.

Manages chats, shows the graph, and sends messages through the generation
worker.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import NoReturn

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .agent import Agent
from .chats import ChatRepository
from .config import Settings, default_home, load_settings
from .constants import DB_FILENAME, LOG_FILENAME
from .errors import AgntError, FatalError
from .graph import GraphRepository
from .models import AgentMessage, EdgeFilter, Message, ToolMessage, UserMessage
from .provider import AnthropicProvider, Provider
from .store import Store
from .tools import ToolRegistry
from .worker import GenerationComplete, GenerationQueue, Worker

console = Console()
logger = logging.getLogger("agnt")


def setup_logging(home: Path, level: str, verbose: bool) -> None:
    """Log to <home>/agnt.log, and to stderr when verbose."""
    home.mkdir(parents=True, exist_ok=True)
    handlers: list[logging.Handler] = [logging.FileHandler(home / LOG_FILENAME)]
    if verbose:
        handlers.append(logging.StreamHandler(sys.stderr))
    logging.basicConfig(
        level=logging.DEBUG if verbose else level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )


def _fail(message: str) -> NoReturn:
    console.print(f"[red]Error:[/red] {escape(message)}")
    sys.exit(1)


def _open_store(ctx: click.Context) -> Store:
    """Open the store once per invocation; closed when the command ends."""
    if "store" not in ctx.obj:
        try:
            store = Store(ctx.obj["home"] / DB_FILENAME)
        except FatalError as e:
            _fail(f"{e}. Refusing to continue.")
        except AgntError as e:
            _fail(str(e))
        ctx.obj["store"] = store
        ctx.call_on_close(store.close)
    return ctx.obj["store"]


def render_message(msg: Message) -> str:
    """One line of rich markup per message."""
    if isinstance(msg, UserMessage):
        return f"[bold cyan]you:[/bold cyan] {escape(msg.text)}"
    if isinstance(msg, AgentMessage):
        return f"[bold green]agent:[/bold green] {escape(msg.text)}"
    if isinstance(msg, ToolMessage):
        call = escape(f"{msg.tool_name}({', '.join(f'{k}={v!r}' for k, v in msg.tool_args.items())})")
        if not msg.done:
            return f"[dim]tool: calling {call}...[/dim]"
        if msg.tool_error:
            return f"[dim]tool: {call}[/dim] [red]error:[/red] {escape(msg.tool_error)}"
        return f"[dim]tool: {call} -> {escape(msg.tool_result)}[/dim]"
    raise TypeError(f"unknown message type {type(msg).__name__}")


@click.group()
@click.option(
    "--home",
    envvar="AGNT_HOME",
    type=click.Path(path_type=Path),
    help="Directory holding agnt.db, config.yaml and agnt.log (default ~/.agnt)",
)
@click.option("-v", "--verbose", is_flag=True, help="Also log to stderr")
@click.pass_context
def cli(ctx, home, verbose):
    """agnt - chat with a model that maintains your knowledge graph."""
    ctx.ensure_object(dict)
    home = home or default_home()
    try:
        settings = load_settings(home)
    except AgntError as e:
        _fail(str(e))
    ctx.obj["home"] = home
    ctx.obj.setdefault("settings", settings)
    setup_logging(home, settings.log_level, verbose)
    logger.debug(f"Using home {home} (model={settings.model})")


@cli.command()
@click.option("--chat", "chat_name", help="Also create a first chat with this name")
@click.pass_context
def init(ctx, chat_name):
    """Initialize the store."""
    store = _open_store(ctx)
    console.print(f"[green]✓[/green] Store ready at {store.db_path}")
    if chat_name:
        chat = ChatRepository(store).create_chat(chat_name)
        console.print(f"Chat created with ID: {chat.id}")


@cli.command()
@click.pass_context
def chats(ctx):
    """List chats."""
    threads = ChatRepository(_open_store(ctx)).list_chats()
    if not threads:
        console.print("No chats yet. Create one with [bold]agnt new NAME[/bold].")
        return

    table = Table(title="Chats")
    table.add_column("ID", justify="right")
    table.add_column("Name")
    table.add_column("State")
    for chat in threads:
        state = "[yellow]running[/yellow]" if chat.state == "running" else chat.state
        table.add_row(str(chat.id), escape(chat.name), state)
    console.print(table)


@cli.command()
@click.argument("name")
@click.pass_context
def new(ctx, name):
    """Create a chat."""
    chat = ChatRepository(_open_store(ctx)).create_chat(name)
    console.print(f"Chat created with ID: {chat.id}")


@cli.command()
@click.argument("chat_id", type=int)
@click.argument("name")
@click.pass_context
def rename(ctx, chat_id, name):
    """Rename a chat."""
    try:
        ChatRepository(_open_store(ctx)).rename_chat(chat_id, name)
    except AgntError as e:
        _fail(str(e))
    console.print(f"Chat {chat_id} renamed to {name!r}")


@cli.command()
@click.argument("chat_id", type=int)
@click.pass_context
def rm(ctx, chat_id):
    """Delete a chat and all of its messages."""
    try:
        ChatRepository(_open_store(ctx)).delete_chat(chat_id)
    except AgntError as e:
        _fail(str(e))
    console.print(f"Chat {chat_id} deleted")


@cli.command()
@click.argument("chat_id", type=int)
@click.pass_context
def history(ctx, chat_id):
    """Show a chat's messages."""
    try:
        messages = ChatRepository(_open_store(ctx)).list_messages(chat_id)
    except AgntError as e:
        _fail(str(e))
    if not messages:
        console.print("No messages.")
    for msg in messages:
        console.print(render_message(msg))


async def _run_round(agent: Agent, settings: Settings, chat_id: int) -> GenerationComplete:
    worker = Worker(agent, GenerationQueue(settings.queue_size))
    worker.start()
    worker.submit(chat_id)
    try:
        with console.status("Thinking..."):
            while True:
                event = await worker.notifications.get()
                if isinstance(event, GenerationComplete):
                    return event
    finally:
        await worker.close()


@cli.command()
@click.argument("chat_id", type=int)
@click.argument("text")
@click.pass_context
def send(ctx, chat_id, text):
    """Send a message and run the agent until it answers."""
    if not text.strip():
        _fail("message is empty")

    settings: Settings = ctx.obj["settings"]
    store = _open_store(ctx)
    chats_repo = ChatRepository(store)

    provider: Provider | None = ctx.obj.get("provider")
    if provider is None:
        try:
            provider = AnthropicProvider.from_settings(settings)
        except AgntError as e:
            _fail(str(e))

    try:
        sent = chats_repo.create_message(UserMessage(chat_id=chat_id, text=text))
    except AgntError as e:
        _fail(str(e))

    agent = Agent(chats_repo, ToolRegistry(GraphRepository(store)), provider, settings)
    try:
        result = asyncio.run(_run_round(agent, settings, chat_id))
    except KeyboardInterrupt:
        _fail("interrupted")

    for msg in chats_repo.list_messages(chat_id):
        if msg.message_id > sent.message_id:
            console.print(render_message(msg))

    if not result.ok:
        _fail(str(result.error))


@cli.command()
@click.option("--type", "node_type", help="Only nodes of this type")
@click.pass_context
def nodes(ctx, node_type):
    """List graph nodes."""
    found = GraphRepository(_open_store(ctx)).list_nodes(node_type)
    if not found:
        console.print("No nodes.")
        return

    table = Table(title="Nodes")
    table.add_column("ID", justify="right")
    table.add_column("Type")
    table.add_column("Properties")
    for node in found:
        props = ", ".join(f"{k}={v!r}" for k, v in node.properties.items())
        table.add_row(str(node.id), node.type, props)
    console.print(table)


@cli.command()
@click.option("--type", "edge_type", default="", help="Only edges of this type")
@click.option("--from", "from_id", type=int, default=0, help="Only edges leaving this node")
@click.option("--to", "to_id", type=int, default=0, help="Only edges entering this node")
@click.pass_context
def edges(ctx, edge_type, from_id, to_id):
    """List graph edges."""
    found = GraphRepository(_open_store(ctx)).list_edges(
        EdgeFilter(type=edge_type, from_id=from_id, to_id=to_id)
    )
    if not found:
        console.print("No edges.")
        return

    table = Table(title="Edges")
    table.add_column("ID", justify="right")
    table.add_column("Type")
    table.add_column("From", justify="right")
    table.add_column("To", justify="right")
    for edge in found:
        table.add_row(str(edge.id), edge.type, str(edge.from_id), str(edge.to_id))
    console.print(table)


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
