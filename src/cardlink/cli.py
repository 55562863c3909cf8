"""Command-line interface for cardlink."""

from __future__ import annotations

import asyncio
import logging
import sys

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.table import Table

from cardlink.config import CardlinkConfig, load_config
from cardlink.core.orchestrator import Orchestrator
from cardlink.dashboard import DashboardAssistantService, DashboardReply
from cardlink.errors import LLMError
from cardlink.llm.client import AsyncLLMClient
from cardlink.onboarding import OnboardingReply, OnboardingService
from cardlink.store import MessageStore
from cardlink.tools.mcp import MCPGateway
from cardlink.types import ContentChunk, ToolInvocation

console = Console()


def _setup_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        )
    else:
        logging.basicConfig(level=logging.WARNING)


class StreamingDisplay:
    """Renders a streaming answer to the terminal as it arrives."""

    def __init__(self, con: Console):
        self.con = con
        self._streaming = False

    def handle(self, event: ContentChunk | ToolInvocation):
        if isinstance(event, ContentChunk):
            if not self._streaming:
                self._streaming = True
                self.con.print()
            self.con.print(event.text, end="", highlight=False)

        elif isinstance(event, ToolInvocation):
            self._flush()
            args = str(event.arguments)
            if len(args) > 120:
                args = args[:120] + "..."
            self.con.print(f"[yellow]> {event.name}[/yellow] [dim]{args}[/dim]")

    def finish(self):
        self._flush()

    def _flush(self):
        if self._streaming:
            self.con.print()
            self._streaming = False


async def _ask(
    config: CardlinkConfig,
    prompt: str,
    system: str | None,
    images: list[str],
    stream: bool,
) -> None:
    gateway = MCPGateway(config.mcp_server_url) if config.mcp_server_url else None
    async with AsyncLLMClient(config.llm) as client:
        orchestrator = Orchestrator(
            client, gateway=gateway, concurrent_tools=config.concurrent_tools,
        )
        try:
            if stream:
                display = StreamingDisplay(console)
                async for event in orchestrator.call_streaming(prompt, system=system, images=images):
                    display.handle(event)
                display.finish()
            else:
                answer = await orchestrator.call_blocking(prompt, system=system, images=images)
                console.print(Markdown(answer))
        finally:
            if gateway is not None:
                await gateway.close()


async def _tools(server_url: str) -> None:
    gateway = MCPGateway(server_url)
    try:
        definitions = await gateway.discover()
    finally:
        await gateway.close()

    if not definitions:
        console.print(f"[yellow]No tools available from {server_url}[/yellow]")
        return
    table = Table(title=f"Tools ({server_url})")
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    table.add_column("Parameters", style="dim")
    for d in definitions:
        params = ", ".join((d.parameters.get("properties") or {}).keys())
        table.add_row(d.name, d.description, params)
    console.print(table)


@click.group()
@click.option("--config", "-c", "config_path", default=None,
              help="Path to cardlink.yaml (auto-detected from CWD or ~/.config/cardlink/)")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool):
    """cardlink - chat with a business card's AI assistant."""
    _setup_logging(verbose)
    ctx.obj = load_config(config_path)


@main.command()
@click.argument("prompt")
@click.option("--system", "-s", default=None, help="System prompt")
@click.option("--image", "images", multiple=True, help="Image URL to attach (repeatable)")
@click.option("--no-stream", is_flag=True, help="Wait for the full answer instead of streaming")
@click.option("--mcp", "mcp_url", default=None, help="MCP server URL providing tools")
@click.pass_obj
def ask(config: CardlinkConfig, prompt: str, system: str | None, images: tuple[str, ...],
        no_stream: bool, mcp_url: str | None):
    """Send PROMPT to the model and print the answer."""
    if mcp_url:
        config.mcp_server_url = mcp_url
    try:
        asyncio.run(_ask(config, prompt, system, list(images), stream=not no_stream))
    except LLMError as e:
        console.print(f"[red]{type(e).__name__}: {e}[/red]")
        sys.exit(1)


@main.command()
@click.option("--mcp", "mcp_url", default=None, help="MCP server URL")
@click.pass_obj
def tools(config: CardlinkConfig, mcp_url: str | None):
    """List the tools an MCP server exposes."""
    server_url = mcp_url or config.mcp_server_url
    if not server_url:
        console.print("[red]No MCP server configured (use --mcp or MCP_SERVER_URL)[/red]")
        sys.exit(1)
    asyncio.run(_tools(server_url))


# ---------------------------------------------------------------------------
# Card owner commands (use the configured database)
# ---------------------------------------------------------------------------

def _open_store(config: CardlinkConfig) -> MessageStore:
    return MessageStore(config.database)


def _require_profile(store: MessageStore, profile_id: int) -> None:
    if store.get_profile(profile_id) is None:
        console.print(f"[red]Profile {profile_id} not found[/red]")
        store.close()
        sys.exit(1)


async def _onboard(config: CardlinkConfig, store: MessageStore, profile_id: int,
                   message: str | None) -> OnboardingReply:
    async with AsyncLLMClient(config.llm) as client:
        return await OnboardingService(store, client).handle(profile_id, message)


async def _assist(config: CardlinkConfig, store: MessageStore, profile_id: int,
                  message: str) -> DashboardReply:
    async with AsyncLLMClient(config.llm) as client:
        service = DashboardAssistantService(store, client)
        try:
            return await service.handle(profile_id, message)
        finally:
            await service.close()


@main.command("new-profile")
@click.argument("full_name")
@click.argument("title")
@click.option("--company", default=None, help="Company or firm")
@click.pass_obj
def new_profile(config: CardlinkConfig, full_name: str, title: str, company: str | None):
    """Create a card for FULL_NAME and print its id."""
    store = _open_store(config)
    try:
        profile = store.add_profile(full_name, title, company=company)
    finally:
        store.close()
    console.print(f"Created profile [bold]{profile.id}[/bold] ({profile.slug})")


@main.command()
@click.argument("message", required=False)
@click.option("--profile", "-p", "profile_id", type=int, required=True, help="Profile id")
@click.pass_obj
def onboard(config: CardlinkConfig, message: str | None, profile_id: int):
    """Answer the current onboarding question (omit MESSAGE to see it)."""
    store = _open_store(config)
    _require_profile(store, profile_id)
    try:
        reply = asyncio.run(_onboard(config, store, profile_id, message))
    finally:
        store.close()
    if not reply.success:
        console.print(f"[red]{reply.error}[/red]")
        sys.exit(1)
    console.print(f"[dim]step: {reply.step} -> {reply.next_step}[/dim]")
    console.print(Markdown(reply.response))


@main.command()
@click.argument("message")
@click.option("--profile", "-p", "profile_id", type=int, required=True, help="Profile id")
@click.pass_obj
def assist(config: CardlinkConfig, message: str, profile_id: int):
    """Ask the dashboard assistant to explain or update a card."""
    store = _open_store(config)
    _require_profile(store, profile_id)
    try:
        reply = asyncio.run(_assist(config, store, profile_id, message))
    finally:
        store.close()
    if not reply.success:
        console.print(f"[red]{reply.error}[/red]")
        sys.exit(1)
    console.print(Markdown(reply.response))


if __name__ == "__main__":
    main()
