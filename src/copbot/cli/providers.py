"""Provider factory functions for CLI.

Centralizes creation of the store, LLM, identity and speech capability from
environment variables. Hides configuration details from command
implementations.
"""

import logging
import os
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

from ..config import DEFAULT_DB_PATH
from ..llm import LLMProvider, create_llm_provider
from ..store import SessionStore, create_session_store
from ..voice import RecognizerFactory, microphone_factory

# Default console for output
_console = Console()


def configure_logging(level: str | None = None, console: Console | None = None) -> None:
    """Route library logs through rich.

    Environment variables:
        COPBOT_LOG_LEVEL: Level name used when level is None (default: WARNING)
    """
    level_name = (level or os.getenv("COPBOT_LOG_LEVEL", "WARNING")).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.WARNING),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console or _console, rich_tracebacks=True)],
        force=True,
    )
    # SDK request logging is too chatty below WARNING
    for noisy in ("httpx", "httpcore", "openai", "anthropic", "aiosqlite"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_store() -> SessionStore:
    """Create a session store from environment variables.

    Returns:
        Session store instance (not yet connected)

    Environment variables:
        COPBOT_STORE: Backend type (memory, sqlite; default: sqlite)
        COPBOT_DB_PATH: SQLite database file (default: ./copbot.db)
    """
    backend = os.getenv("COPBOT_STORE", "sqlite").lower()
    if backend == "sqlite":
        return create_session_store("sqlite", path=os.getenv("COPBOT_DB_PATH", DEFAULT_DB_PATH))
    return create_session_store(backend)


def get_user_id(user: str | None = None, console: Console | None = None) -> str:
    """Resolve the signed-in user.

    Args:
        user: Explicit user id from the command line
        console: Optional Rich console for output

    Raises:
        SystemExit: If no user id is available

    Environment variables:
        COPBOT_USER_ID: User id used when --user is not given
    """
    import typer

    con = console or _console
    user_id = user or os.getenv("COPBOT_USER_ID")
    if not user_id:
        con.print("[red]Error: no user. Pass --user or set COPBOT_USER_ID[/red]")
        raise typer.Exit(code=1)
    return user_id


def get_llm(console: Console | None = None) -> LLMProvider | None:
    """Create LLM provider from environment variables.

    Args:
        console: Optional Rich console for output

    Returns:
        LLM provider instance, or None if not configured

    Environment variables:
        LLM_PROVIDER: Provider type (groq, openai, anthropic; default: groq)
        GROQ_API_KEY: Groq API key (for groq provider)
        GROQ_MODEL: Groq model (default: llama-3.1-8b-instant)
        OPENAI_API_KEY: OpenAI API key (for openai provider)
        OPENAI_CHAT_MODEL: OpenAI model (default: gpt-4o-mini)
        ANTHROPIC_API_KEY: Anthropic API key (for anthropic provider)
        ANTHROPIC_MODEL: Anthropic model (default: claude-sonnet-4-20250514)
    """
    con = console or _console
    llm_provider = os.getenv("LLM_PROVIDER", "groq").lower()

    if llm_provider == "groq":
        api_key = os.getenv("GROQ_API_KEY")
        if not api_key:
            con.print("[yellow]Warning: GROQ_API_KEY not set, LLM features disabled[/yellow]")
            return None
        model = os.getenv("GROQ_MODEL", "llama-3.1-8b-instant")
        return create_llm_provider("groq", api_key=api_key, model=model)

    elif llm_provider == "openai":
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            con.print("[yellow]Warning: OPENAI_API_KEY not set, LLM features disabled[/yellow]")
            return None
        model = os.getenv("OPENAI_CHAT_MODEL", "gpt-4o-mini")
        return create_llm_provider("openai", api_key=api_key, model=model)

    elif llm_provider in ("anthropic", "claude"):
        api_key = os.getenv("ANTHROPIC_API_KEY")
        if not api_key:
            con.print("[yellow]Warning: ANTHROPIC_API_KEY not set, LLM features disabled[/yellow]")
            return None
        model = os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-20250514")
        return create_llm_provider("anthropic", api_key=api_key, model=model)

    else:
        con.print(f"[red]Error: Unknown LLM provider: {llm_provider}[/red]")
        return None


def require_llm(console: Console | None = None) -> Any:
    """Get LLM provider, raising error if not configured.

    Args:
        console: Optional Rich console for output

    Returns:
        LLM provider instance

    Raises:
        SystemExit: If LLM provider is not configured
    """
    import typer

    con = console or _console
    llm = get_llm(con)
    if not llm:
        con.print("[red]Error: LLM provider not configured[/red]")
        raise typer.Exit(code=1)
    return llm


def get_recognizer_factory() -> RecognizerFactory | None:
    """Speech recognizer factory for this machine, or None if unsupported."""
    return microphone_factory()
