"""
TaskChat CLI - command-line interface for the local messaging store.

Minimal commands for inspecting the local store and exercising the sync
engine against a live server.
"""

import threading
import time
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape

from taskchat.logging_config import setup_logging

app = typer.Typer(
    name="taskchat",
    help="TaskChat - real-time messaging sync engine",
    no_args_is_help=True,
)

console = Console()


def _init_logging() -> None:
    # Fall back to console logging if file logging is not permitted
    try:
        setup_logging(context="cli")
    except PermissionError:
        import logging

        logging.basicConfig(level=logging.INFO)


def _open_store(database_url: Optional[str]):
    from taskchat.db.connection import LocalStore

    store = LocalStore(database_url) if database_url else LocalStore.from_settings()
    store.init_schema()
    return store


def _parse_uuid_or_exit(value: str, what: str):
    from taskchat.db.repositories.base import parse_uuid

    parsed = parse_uuid(value)
    if parsed is None:
        console.print(f"[bold red]Error:[/bold red] Invalid {what} id: {value}")
        raise typer.Exit(1)
    return parsed


def _wait_for_connection(service, timeout: float) -> bool:
    from taskchat.transport.channel import ConnectionState

    connected = threading.Event()
    unsubscribe = service.channel.on_state_change(
        lambda state: connected.set() if state == ConnectionState.CONNECTED else None
    )
    try:
        if service.channel.is_connected:
            return True
        return connected.wait(timeout)
    finally:
        unsubscribe()


@app.command("init-db")
def init_db(
    database_url: str = typer.Option(None, help="Local store URL (defaults to settings)"),
) -> None:
    """
    Create the local store schema.
    """
    _init_logging()
    store = _open_store(database_url)
    try:
        if not store.check_connection():
            console.print("[bold red]Error:[/bold red] Local store is not reachable")
            raise typer.Exit(1)
        console.print(f"[green]✓ Local store ready:[/green] {store.engine.url}")
    finally:
        store.close()


@app.command()
def conversations(
    database_url: str = typer.Option(None, help="Local store URL (defaults to settings)"),
    include_archived: bool = typer.Option(False, help="Include archived conversations"),
) -> None:
    """
    List conversations, most recently active first.
    """
    from taskchat.db.repositories import ConversationRepository

    _init_logging()
    store = _open_store(database_url)
    try:
        with store.read_session() as session:
            items = ConversationRepository(session).list_recent(
                include_archived=include_archived
            )
            rows = [
                (
                    str(c.id),
                    c.name or f"({c.conversation_type})",
                    c.last_activity_at.isoformat() if c.last_activity_at else "-",
                    c.is_archived,
                )
                for c in items
            ]
    finally:
        store.close()

    if not rows:
        console.print("[yellow]No conversations found[/yellow]")
        return

    console.print(f"[bold]Conversations:[/bold] {len(rows)}")
    for conversation_id, name, last_activity, archived in rows:
        marker = " [dim](archived)[/dim]" if archived else ""
        console.print(f"  {conversation_id}  {name}  last activity: {last_activity}{marker}")


@app.command()
def messages(
    conversation_id: str = typer.Argument(..., help="Conversation id"),
    limit: int = typer.Option(50, help="Number of recent messages to show"),
    database_url: str = typer.Option(None, help="Local store URL (defaults to settings)"),
) -> None:
    """
    Show the most recent messages of a conversation, oldest first.
    """
    from taskchat.db.repositories import ConversationRepository, MessageRepository

    _init_logging()
    target = _parse_uuid_or_exit(conversation_id, "conversation")
    store = _open_store(database_url)
    try:
        with store.read_session() as session:
            if ConversationRepository(session).get(target) is None:
                console.print(
                    f"[bold red]Error:[/bold red] Conversation not found: {conversation_id}"
                )
                raise typer.Exit(1)
            window = MessageRepository(session).get_window(target, limit=limit)
            lines = [
                (
                    m.created_at.strftime("%Y-%m-%d %H:%M:%S"),
                    m.sender.display_name if m.sender else str(m.sender_id),
                    m.text,
                )
                for m in window
            ]
    finally:
        store.close()

    if not lines:
        console.print("[yellow]No messages[/yellow]")
        return
    for created_at, sender, text in lines:
        console.print(f"[dim]{created_at}[/dim] [bold]{escape(sender)}:[/bold] {escape(text)}")


@app.command()
def send(
    conversation_id: str = typer.Argument(..., help="Conversation id"),
    text: str = typer.Argument(..., help="Message text"),
    user_id: str = typer.Option(None, help="Sender id (defaults to CURRENT_USER_ID)"),
    offline: bool = typer.Option(False, help="Store locally without connecting"),
    database_url: str = typer.Option(None, help="Local store URL (defaults to settings)"),
) -> None:
    """
    Send a message: emit it to the server and store it locally.
    """
    from taskchat.config import settings
    from taskchat.exceptions import MessageValidationError, NoCurrentUserError
    from taskchat.messaging import MessagingService

    _init_logging()
    target = _parse_uuid_or_exit(conversation_id, "conversation")
    raw_user = user_id or settings.current_user_id
    if not raw_user:
        console.print("[bold red]Error:[/bold red] No current user (use --user-id)")
        raise typer.Exit(1)
    sender = _parse_uuid_or_exit(raw_user, "user")

    service = MessagingService.from_settings(store=_open_store(database_url))
    service.identity.sign_in(sender)
    try:
        if not offline:
            service.start()
            if not _wait_for_connection(service, settings.open_timeout):
                console.print("[yellow]⚠ Not connected, message will only be stored locally[/yellow]")

        try:
            pending = service.send_message(text, target)
        except (MessageValidationError, NoCurrentUserError) as e:
            console.print(f"[bold red]Error:[/bold red] {e}")
            raise typer.Exit(1)

        stored = pending.wait(timeout=10)
        console.print(f"[blue]Message:[/blue] {pending.id}")
        console.print(f"  Sent: {pending.emitted}")
        console.print(f"  Stored locally: {stored}")
        if not stored:
            raise typer.Exit(1)
    finally:
        service.close()


@app.command()
def listen(
    conversation_id: str = typer.Option(None, help="Conversation to join"),
    user_id: str = typer.Option(None, help="Signed-in user (defaults to CURRENT_USER_ID)"),
    duration: float = typer.Option(0, help="Stop after this many seconds (0 = until Ctrl+C)"),
    database_url: str = typer.Option(None, help="Local store URL (defaults to settings)"),
) -> None:
    """
    Connect to the server and apply incoming events to the local store.
    """
    from taskchat.config import settings
    from taskchat.messaging import MessagingService

    raw_user = user_id or settings.current_user_id
    signed_in = _parse_uuid_or_exit(raw_user, "user") if raw_user else None
    target = _parse_uuid_or_exit(conversation_id, "conversation") if conversation_id else None

    _init_logging()
    service = MessagingService.from_settings(store=_open_store(database_url))
    if signed_in is not None:
        service.identity.sign_in(signed_in)

    def print_window(active_id, window) -> None:
        if active_id is None or not window:
            return
        latest = window[-1]
        console.print(f"[bold]{latest.sender_id}:[/bold] {escape(latest.text)}")

    service.sessions.subscribe(print_window)
    service.channel.on_state_change(
        lambda state: console.print(f"[cyan]Transport {state.value}[/cyan]")
    )

    console.print(f"[bold green]Listening on {settings.websocket_url}[/bold green]")
    console.print("  Press Ctrl+C to stop\n")

    deadline = time.monotonic() + duration if duration > 0 else None
    try:
        service.start()
        if target is not None:
            service.join_conversation(target)
        while not service.channel.wait(timeout=0.5):
            if deadline is not None and time.monotonic() >= deadline:
                break
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopping...[/yellow]")
    finally:
        stats = service.sync_engine.stats
        service.close()

    console.print()
    console.print("[bold]Summary:[/bold]")
    console.print(f"  Received: {stats.received}")
    console.print(f"  Applied: {stats.applied}")
    console.print(f"  Duplicates: {stats.duplicates}")
    console.print(f"  Discarded: {stats.malformed + stats.unresolved + stats.failed}")


if __name__ == "__main__":
    app()
