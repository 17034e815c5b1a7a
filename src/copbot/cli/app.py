"""Main CLI application using Typer."""
import asyncio

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..context import ConversationContextManager
from ..errors import (
    LastSessionProtected,
    RecognitionStartFailed,
    SessionCreationFailed,
    UnsupportedPlatform,
)
from ..pipeline import MessagePipeline
from ..sessions import SessionSynchronizer
from ..store import ChatSession, Message, Sender
from ..voice import VoiceCaptureStateMachine, VoiceState
from .providers import (
    configure_logging,
    get_recognizer_factory,
    get_store,
    get_user_id,
    require_llm,
)

# Load environment variables
load_dotenv()

# Create Typer app
app = typer.Typer(
    name="copbot",
    help="Conversational assistant with live chat sessions and voice input",
    no_args_is_help=True,
    add_completion=True,
)

# Console for rich output
console = Console()

FEED_READY_TIMEOUT = 10.0

CHAT_HELP = """[bold]/new[/bold]        start a new chat
[bold]/sessions[/bold]   list your chats
[bold]/switch N[/bold]   open chat number N
[bold]/delete N[/bold]   delete chat number N
[bold]/clear[/bold]      forget the context of the current chat
[bold]/voice[/bold]      speak your next message
[bold]/quit[/bold]       leave"""

_NOTIFY_STYLES = {
    "error": "red",
    "warning": "yellow",
    "success": "green",
    "info": "dim",
}


@app.callback()
def main_options(
    log_level: str = typer.Option(
        None,
        "--log-level",
        "-L",
        help="Log level (debug, info, warning, error); default from COPBOT_LOG_LEVEL"
    )
):
    """Configure logging for every command."""
    configure_logging(log_level, console)


def _notify(level: str, text: str) -> None:
    style = _NOTIFY_STYLES.get(level, "dim")
    console.print(f"[{style}]{text}[/{style}]")


def _print_message(message: Message) -> None:
    if message.sender is Sender.ASSISTANT:
        console.print(f"[bold green]CopBot:[/bold green] {message.content}\n")
    elif message.is_voice:
        console.print(f"[bold yellow]You (voice):[/bold yellow] {message.content}")


def _sessions_table(sessions: list[ChatSession], active_id: str | None) -> Table:
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", width=4)
    table.add_column("Title", style="cyan")
    table.add_column("Messages", style="yellow", width=8)
    table.add_column("Updated", style="green")
    table.add_column("ID", style="dim")

    for i, session in enumerate(sessions, 1):
        marker = "*" if session.id == active_id else ""
        table.add_row(
            f"{i}{marker}",
            session.title,
            str(len(session.messages)),
            session.updated_at.strftime("%Y-%m-%d %H:%M"),
            session.id
        )
    return table


def _pick(sessions: list[ChatSession], arg: str) -> ChatSession | None:
    try:
        index = int(arg)
    except ValueError:
        console.print("[red]Give the chat number from /sessions[/red]")
        return None
    if not 1 <= index <= len(sessions):
        console.print(f"[red]No chat number {index}[/red]")
        return None
    return sessions[index - 1]


async def _send(pipeline: MessagePipeline, text: str, is_voice: bool = False) -> None:
    try:
        with console.status("[dim]Thinking...[/dim]"):
            await pipeline.send(text, is_voice=is_voice)
    except SessionCreationFailed:
        console.print("[red]Could not start a new chat. Please try again.[/red]")


async def _capture_voice(pipeline: MessagePipeline) -> None:
    finished = asyncio.Event()

    def _on_state(state: VoiceState) -> None:
        if state is VoiceState.IDLE:
            finished.set()

    def _on_error(error: Exception) -> None:
        console.print(f"[red]{error}[/red]")

    machine = VoiceCaptureStateMachine(
        get_recognizer_factory(),
        on_transcript=lambda transcript, is_voice: _send(pipeline, transcript, is_voice),
        on_error=_on_error,
        on_state_change=_on_state
    )

    async with machine:
        try:
            machine.start()
        except (UnsupportedPlatform, RecognitionStartFailed) as e:
            console.print(f"[red]{e}[/red]")
            return

        console.print("[dim]Listening... speak now[/dim]")
        await finished.wait()
        await machine.wait_for_handoff()


async def _run_command(
    line: str,
    sync: SessionSynchronizer,
    pipeline: MessagePipeline,
    context: ConversationContextManager
) -> bool:
    """Run a slash command. Returns False when the chat should end."""
    name, _, arg = line[1:].partition(" ")
    name = name.lower()
    arg = arg.strip()

    if name in ("quit", "exit", "q"):
        return False

    if name == "help":
        console.print(Panel(CHAT_HELP, title="Commands", border_style="dim"))

    elif name == "new":
        try:
            await sync.create_session()
            console.print("[dim]Started a new chat[/dim]")
        except SessionCreationFailed:
            console.print("[red]Could not create a new chat. Please try again.[/red]")

    elif name == "sessions":
        if not sync.sessions:
            console.print("[dim]No chats yet. Type a message to start one.[/dim]")
        else:
            console.print(_sessions_table(sync.sessions, sync.active_session_id))

    elif name == "switch":
        session = _pick(sync.sessions, arg)
        if session:
            sync.select(session.id)
            console.print(f"[dim]Opened: {session.title}[/dim]")
            for message in pipeline.visible_messages:
                speaker = "You" if message.sender is Sender.USER else "CopBot"
                console.print(f"[bold]{speaker}:[/bold] {message.content}")

    elif name == "delete":
        session = _pick(sync.sessions, arg)
        if session:
            try:
                await sync.delete_session(session.id)
                console.print("[green]Chat deleted.[/green]")
            except LastSessionProtected as e:
                console.print(f"[red]{e}[/red]")
            except Exception as e:
                console.print(f"[red]Failed to delete chat: {e}[/red]")

    elif name == "clear":
        if sync.active_session_id:
            context.clear(sync.user_id, sync.active_session_id)
            console.print("[dim]Context cleared for this chat[/dim]")

    elif name == "voice":
        await _capture_voice(pipeline)

    else:
        console.print(f"[red]Unknown command: /{name}[/red] [dim](try /help)[/dim]")

    return True


@app.command()
def chat(
    user: str = typer.Option(
        None,
        "--user",
        "-u",
        help="User id (default: COPBOT_USER_ID)"
    ),
    voice: bool = typer.Option(
        False,
        "--voice",
        "-v",
        help="Capture each message by voice; press Enter to start listening"
    )
):
    """Interactive chat with live, persisted sessions."""
    async def _chat():
        user_id = get_user_id(user, console)
        llm = require_llm(console)
        store = get_store()
        context = ConversationContextManager()

        try:
            await store.connect()

            async with SessionSynchronizer(store, user_id, on_error=lambda e: _notify("error", str(e))) as sync:
                await sync.wait_until_ready(timeout=FEED_READY_TIMEOUT)

                pipeline = MessagePipeline(
                    store,
                    sync,
                    context,
                    llm,
                    notify=_notify,
                    on_message=_print_message
                )

                console.print("[bold cyan]CopBot[/bold cyan]")
                console.print("[dim]How can I help you today? Type /help for commands.[/dim]\n")

                try:
                    while True:
                        try:
                            line = await asyncio.to_thread(
                                console.input, "[bold yellow]You:[/bold yellow] "
                            )
                        except (KeyboardInterrupt, EOFError):
                            console.print("\n[dim]Goodbye![/dim]")
                            break

                        text = line.strip()
                        if text.startswith("/"):
                            if not await _run_command(text, sync, pipeline, context):
                                console.print("[dim]Goodbye![/dim]")
                                break
                        elif voice and not text:
                            await _capture_voice(pipeline)
                        elif text:
                            await _send(pipeline, text)
                finally:
                    await pipeline.aclose()

        except Exception as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(code=1)
        finally:
            context.purge_user(user_id)
            await store.disconnect()
            await llm.close()

    asyncio.run(_chat())


@app.command()
def sessions(
    user: str = typer.Option(
        None,
        "--user",
        "-u",
        help="User id (default: COPBOT_USER_ID)"
    )
):
    """List a user's chat sessions, most recent first."""
    async def _sessions():
        user_id = get_user_id(user, console)
        store = get_store()

        try:
            await store.connect()
            found = await store.list_sessions(user_id)

            if not found:
                console.print("[yellow]No chats found[/yellow]")
                return

            console.print(_sessions_table(found, None))

        except Exception as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(code=1)
        finally:
            await store.disconnect()

    asyncio.run(_sessions())


@app.command()
def delete(
    session_id: str = typer.Argument(..., help="Id of the chat to delete"),
    user: str = typer.Option(
        None,
        "--user",
        "-u",
        help="User id (default: COPBOT_USER_ID)"
    )
):
    """Delete a chat session. The last remaining chat cannot be deleted."""
    async def _delete():
        user_id = get_user_id(user, console)
        store = get_store()

        try:
            await store.connect()

            async with SessionSynchronizer(store, user_id) as sync:
                await sync.wait_until_ready(timeout=FEED_READY_TIMEOUT)

                if sync.get_session(session_id) is None:
                    console.print(f"[red]No chat {session_id} for user {user_id}[/red]")
                    raise typer.Exit(code=1)

                await sync.delete_session(session_id)
                console.print("[green]Chat deleted.[/green]")

        except LastSessionProtected as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(code=1)
        except typer.Exit:
            raise
        except Exception as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(code=1)
        finally:
            await store.disconnect()

    asyncio.run(_delete())


def main():
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
