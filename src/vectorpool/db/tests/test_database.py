"""Tests for database clients and session helpers."""

from __future__ import annotations

import pytest
from sqlalchemy import inspect
from sqlmodel import select

from vectorpool.config import VectorpoolConfig
from vectorpool.db import get_database_client, managed_session, session_scope
from vectorpool.db.postgresql import PostgreSQLClient
from vectorpool.db.sqlite import SQLiteClient
from vectorpool.documents import SourceDocument


class TestGetDatabaseClient:
    def test_sqlite_by_default(self, tmp_path, monkeypatch):
        """Test PATH_DB resolves relative to the project directory."""
        monkeypatch.chdir(tmp_path)
        client = get_database_client(VectorpoolConfig(PATH_DB="data/x.sqlite"))
        assert isinstance(client, SQLiteClient)
        assert client.get_mode_name() == "sqlite"
        assert client.get_database_path() == tmp_path / "data" / "x.sqlite"

    @pytest.mark.parametrize(
        "url", ["postgresql://u:p@localhost/db", "postgres://u:p@localhost/db"]
    )
    def test_postgres_when_url_set(self, url):
        """Test DATABASE_URL selects the PostgreSQL client."""
        client = get_database_client(VectorpoolConfig(DATABASE_URL=url))
        assert isinstance(client, PostgreSQLClient)
        assert client.get_mode_name() == "postgresql"

    def test_postgres_scheme_normalized(self):
        """Test postgres:// is rewritten for SQLAlchemy."""
        client = PostgreSQLClient("postgres://u:p@localhost/db")
        assert client._get_sync_url() == "postgresql://u:p@localhost/db"
        assert client.get_database_url() == "postgres://u:p@localhost/db"


class TestSQLiteClient:
    def test_init_creates_all_tables(self, tmp_database):
        """Test init_database registers and creates every plugin table."""
        tables = set(inspect(tmp_database.get_engine()).get_table_names())
        assert {
            "source_documents",
            "embeddings",
            "bulk_embedding_runs",
            "bulk_embedding_batches",
            "bulk_embedding_input_metadata",
        } <= tables
        assert tmp_database.check_database_exists()

    def test_init_is_idempotent(self, tmp_database):
        """Test a second init_database call is harmless."""
        tmp_database.init_database()
        assert tmp_database.check_database_exists()

    def test_wal_mode_enabled(self, tmp_database):
        """Test the connect listener switches the journal to WAL."""
        with tmp_database.get_engine().connect() as conn:
            mode = conn.exec_driver_sql("PRAGMA journal_mode").scalar()
        assert mode.lower() == "wal"


class TestManagedSession:
    def test_commits_on_success(self, tmp_database):
        """Test rows written in the block are committed."""
        with managed_session(tmp_database) as session:
            session.add(SourceDocument(collection="posts", doc_id="1", data={"title": "a"}))

        with session_scope(tmp_database) as session:
            assert session.exec(select(SourceDocument)).one().doc_id == "1"

    def test_rolls_back_on_error(self, tmp_database):
        """Test an exception discards the block's writes."""
        with pytest.raises(RuntimeError):
            with managed_session(tmp_database) as session:
                session.add(SourceDocument(collection="posts", doc_id="1"))
                session.flush()
                raise RuntimeError("boom")

        with session_scope(tmp_database) as session:
            assert session.exec(select(SourceDocument)).all() == []

    def test_existing_session_passes_through(self, tmp_database):
        """Test a session argument is yielded without committing."""
        session = tmp_database.get_session()
        try:
            with managed_session(session) as inner:
                assert inner is session
                inner.add(SourceDocument(collection="posts", doc_id="2"))
            session.rollback()
        finally:
            session.close()

        with session_scope(tmp_database) as check:
            assert check.exec(select(SourceDocument)).all() == []
