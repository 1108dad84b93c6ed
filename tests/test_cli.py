"""Tests for the command line interface."""

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker
from typer.testing import CliRunner

from chatrecall import cli
from chatrecall.config import settings
from chatrecall.db import connection
from chatrecall.models.db import Conversation

runner = CliRunner()


@pytest.fixture
def cli_env(monkeypatch, file_engine):
    """Point the CLI at a temporary database and keep logs out of the home dir."""
    monkeypatch.setattr(cli, "setup_logging", lambda context: None)
    monkeypatch.setattr(connection, "engine", file_engine)
    monkeypatch.setattr(
        connection, "SessionLocal", sessionmaker(bind=file_engine, autoflush=False)
    )
    monkeypatch.setattr(
        connection,
        "BackgroundSessionLocal",
        sessionmaker(bind=file_engine, autoflush=False),
    )
    monkeypatch.setattr(settings, "openai_api_key", "")
    return file_engine


def _conversation_count(engine):
    with sessionmaker(bind=engine)() as session:
        return session.scalar(select(func.count()).select_from(Conversation))


def test_help_lists_commands():
    result = runner.invoke(cli.app, ["--help"])

    assert result.exit_code == 0
    for command in ["import", "embed", "dedupe", "search", "context"]:
        assert command in result.output


def test_import_missing_path(cli_env, tmp_path):
    result = runner.invoke(cli.app, ["import", str(tmp_path / "nope.json")])

    assert result.exit_code == 1
    assert "Path not found" in result.output


def test_import_json_export(cli_env, export_builder, write_export):
    turns = [
        export_builder.turn("u1", "user", "What is a roux?"),
        export_builder.turn("a1", "assistant", "Flour cooked in fat."),
    ]
    path = write_export([export_builder.conversation("Cooking", 1700000000.0, turns)])

    result = runner.invoke(cli.app, ["import", str(path)])

    assert result.exit_code == 0, result.output
    assert "Conversations imported: 1" in result.output
    assert _conversation_count(cli_env) == 1

    again = runner.invoke(cli.app, ["import", str(path)])

    assert "Conversations skipped: 1" in again.output
    assert _conversation_count(cli_env) == 1


def test_import_reports_item_errors(cli_env, export_builder, write_export):
    good = export_builder.conversation(
        "Fine", 1700000000.0, [export_builder.turn("a1", "assistant", "ok")]
    )
    path = write_export([good, {"title": "Broken", "mapping": {}}])

    result = runner.invoke(cli.app, ["import", str(path)])

    assert result.exit_code == 1
    assert "Errors: 1" in result.output
    assert _conversation_count(cli_env) == 1


def test_import_unreadable_document(cli_env, tmp_path):
    path = tmp_path / "conversations.json"
    path.write_text("{not json", encoding="utf-8")

    result = runner.invoke(cli.app, ["import", str(path)])

    assert result.exit_code == 1
    assert "Import failed" in result.output


def test_embed_requires_api_key(cli_env):
    result = runner.invoke(cli.app, ["embed"])

    assert result.exit_code == 1
    assert "OPENAI_API_KEY not set" in result.output


def test_dedupe_on_empty_store(cli_env):
    result = runner.invoke(cli.app, ["dedupe"])

    assert result.exit_code == 0
    assert "Removed 0 duplicates" in result.output


def test_dedupe_reports_surviving_conversations(cli_env, export_builder, write_export):
    b = export_builder
    path = write_export(
        [
            b.conversation("Cooking", 1700000000.0, [b.turn("a1", "assistant", "Roux.")]),
            b.conversation("Travel", 1700001000.0, [b.turn("a2", "assistant", "Lisbon.")]),
        ]
    )
    runner.invoke(cli.app, ["import", str(path)])

    result = runner.invoke(cli.app, ["dedupe"])

    assert result.exit_code == 0
    assert "Removed 0 duplicates (2 conversations kept)" in result.output
