"""Tests for the command-line interface."""
import asyncio

import pytest
from rich.console import Console
from typer.testing import CliRunner

from copbot.cli.app import app
from copbot.store import Message, Sender
from copbot.store.sqlite import SQLiteSessionStore

runner = CliRunner()


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    """Point the CLI at a fresh SQLite file."""
    path = tmp_path / "copbot.db"
    monkeypatch.setenv("COPBOT_STORE", "sqlite")
    monkeypatch.setenv("COPBOT_DB_PATH", str(path))
    monkeypatch.delenv("COPBOT_USER_ID", raising=False)
    monkeypatch.setattr("copbot.cli.app.console", Console(width=200))
    return path


def seed(path, user_id, titles):
    """Create sessions directly in the database file."""
    async def _seed():
        ids = []
        async with SQLiteSessionStore(path) as store:
            for title in titles:
                session_id = await store.create_session(user_id, title=title)
                await store.append_message(session_id, Message(content="hi", sender=Sender.USER))
                ids.append(session_id)
        return ids

    return asyncio.run(_seed())


class TestSessionsCommand:
    """Tests for `copbot sessions`."""

    def test_requires_user(self, db_path):
        """Without --user or COPBOT_USER_ID the command fails."""
        result = runner.invoke(app, ["sessions"])

        assert result.exit_code == 1
        assert "no user" in result.output

    def test_no_sessions(self, db_path):
        result = runner.invoke(app, ["sessions", "--user", "alice"])

        assert result.exit_code == 0
        assert "No chats found" in result.output

    def test_lists_only_own_sessions(self, db_path, monkeypatch):
        """The user id can come from the environment."""
        seed(db_path, "alice", ["Lost Passport", "Traffic Fine"])
        seed(db_path, "bob", ["Noise Complaint"])
        monkeypatch.setenv("COPBOT_USER_ID", "alice")

        result = runner.invoke(app, ["sessions"])

        assert result.exit_code == 0
        assert "Lost Passport" in result.output
        assert "Traffic Fine" in result.output
        assert "Noise Complaint" not in result.output


class TestDeleteCommand:
    """Tests for `copbot delete`."""

    def test_deletes_session(self, db_path):
        keep, doomed = seed(db_path, "alice", ["Keep", "Doomed"])

        result = runner.invoke(app, ["delete", doomed, "--user", "alice"])

        assert result.exit_code == 0
        assert "Chat deleted" in result.output

        listing = runner.invoke(app, ["sessions", "--user", "alice"])
        assert "Doomed" not in listing.output
        assert "Keep" in listing.output

    def test_last_session_protected(self, db_path):
        (only,) = seed(db_path, "alice", ["Only"])

        result = runner.invoke(app, ["delete", only, "--user", "alice"])

        assert result.exit_code == 1
        assert "You can't delete the last chat." in result.output

    def test_unknown_session(self, db_path):
        seed(db_path, "alice", ["One", "Two"])

        result = runner.invoke(app, ["delete", "missing", "--user", "alice"])

        assert result.exit_code == 1
        assert "No chat missing" in result.output
