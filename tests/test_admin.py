"""Tests for the index-queue admin commands and database helpers."""

from __future__ import annotations

import pytest
from sqlalchemy import inspect

from index_queue import SQLAlchemyEntryStore, create_db_engine, create_session_factory, create_tables, drop_tables
from index_queue.admin import main


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'queue.db'}"


@pytest.fixture
def file_store(database_url):
    """Store on a file database created through the admin command."""
    assert main(["--database-url", database_url, "create-tables"]) == 0

    engine = create_db_engine(database_url)
    yield SQLAlchemyEntryStore(create_session_factory(engine))
    engine.dispose()


def test_create_tables_builds_indexes(database_url):
    engine = create_db_engine(database_url)
    create_tables(engine)

    inspector = inspect(engine)
    assert "index_queue_entries" in inspector.get_table_names()
    index_names = {index["name"] for index in inspector.get_indexes("index_queue_entries")}
    assert "ix_index_queue_entries_run_at" in index_names
    assert "ux_index_queue_entries_unclaimed" in index_names

    drop_tables(engine)
    assert "index_queue_entries" not in inspect(engine).get_table_names()
    engine.dispose()


def test_stats(file_store, database_url, capsys):
    """Test that stats prints counts for the requested scope."""
    _ = file_store.enqueue("Widget", 1)
    _ = file_store.enqueue("Widget", 2)
    _ = file_store.enqueue("Gadget", 1)

    assert main(["--database-url", database_url, "stats"]) == 0
    output = capsys.readouterr().out
    assert "Total entries: 3" in output
    assert "Ready entries: 3" in output
    assert "Error entries: 0" in output

    assert main(["--database-url", database_url, "--class-name", "Gadget", "stats"]) == 0
    assert "Total entries: 1" in capsys.readouterr().out


def test_errors_reset_and_delete(file_store, database_url, capsys):
    _ = file_store.enqueue("Widget", 1)
    entry = file_store.claim_batch(None, batch_size=1, retry_interval=60)[0]
    try:
        raise RuntimeError("mapping conflict")
    except RuntimeError as e:
        file_store.record_failure(entry, e, retry_interval=600)

    assert main(["--database-url", database_url, "errors"]) == 0
    output = capsys.readouterr().out
    assert "RuntimeError: mapping conflict" in output
    assert "attempts=1" in output

    assert main(["--database-url", database_url, "reset"]) == 0
    assert "Reset 1 entries" in capsys.readouterr().out
    assert file_store.error_count() == 0
    assert file_store.ready_count() == 1

    assert main(["--database-url", database_url, "delete", str(entry.id)]) == 0
    assert "Deleted 1 entries" in capsys.readouterr().out
    assert file_store.total_count() == 0


def test_errors_on_clean_queue(file_store, database_url, capsys):
    assert main(["--database-url", database_url, "errors"]) == 0
    assert "No failing entries" in capsys.readouterr().out


def test_command_failure_returns_nonzero(database_url):
    # Table was never created
    assert main(["--database-url", database_url, "stats"]) == 1
