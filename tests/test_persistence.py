"""Tests for the local database layer: schema, settings records and audit trail."""

import json
import sqlite3

import pytest

from accountdesk import schema
from accountdesk.database import DatabaseManager
from accountdesk.models import RegistryState
from accountdesk.schema import CURRENT_SCHEMA_VERSION, initialize_schema
from accountdesk.utils import log_audit_event


def _tables(conn):
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    return {row[0] for row in rows}


def _columns(conn, table):
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


class TestSchema:

    def test_fresh_database_gets_every_table(self, db):
        assert {"schema_version", "secure_items", "app_settings", "audit_log"} <= _tables(db.sqlite)
        version = db.sqlite.execute("SELECT version FROM schema_version").fetchone()[0]
        assert version == CURRENT_SCHEMA_VERSION

    def test_initialize_is_idempotent(self, db, logger):
        initialize_schema(db.sqlite, logger)
        initialize_schema(db.sqlite, logger)
        count = db.sqlite.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
        assert count == 1

    def test_current_database_is_left_alone(self, db, logger):
        db.sqlite.execute("INSERT INTO app_settings (key, value) VALUES ('k', 'v')")
        db.sqlite.commit()

        initialize_schema(db.sqlite, logger)

        assert db.sqlite.execute("SELECT value FROM app_settings").fetchone()[0] == "v"

    def test_registered_upgrade_step_runs_once(self, db, logger, monkeypatch):
        calls = []

        def add_notes(conn, log):
            calls.append(conn)
            conn.execute("ALTER TABLE app_settings ADD COLUMN notes TEXT")

        monkeypatch.setattr(schema, "CURRENT_SCHEMA_VERSION", 2)
        monkeypatch.setitem(schema._UPGRADES, 2, add_notes)

        initialize_schema(db.sqlite, logger)
        initialize_schema(db.sqlite, logger)

        assert len(calls) == 1
        assert "notes" in _columns(db.sqlite, "app_settings")
        assert db.sqlite.execute("SELECT version FROM schema_version").fetchone()[0] == 2

    def test_failing_upgrade_step_rolls_back(self, db, logger, monkeypatch):
        def broken(conn, log):
            conn.execute("INSERT INTO app_settings (key, value) VALUES ('half', 'done')")
            conn.execute("SELECT * FROM no_such_table")

        monkeypatch.setattr(schema, "CURRENT_SCHEMA_VERSION", 2)
        monkeypatch.setitem(schema._UPGRADES, 2, broken)

        with pytest.raises(sqlite3.Error):
            initialize_schema(db.sqlite, logger)

        assert db.sqlite.execute("SELECT version FROM schema_version").fetchone()[0] == 1
        assert db.sqlite.execute("SELECT COUNT(*) FROM app_settings").fetchone()[0] == 0


class TestDatabaseManager:

    def test_close_is_idempotent(self, logger):
        manager = DatabaseManager(sqlite_path=":memory:", logger=logger)
        manager.close()
        manager.close()

    def test_file_database_is_created(self, logger, tmp_path):
        path = tmp_path / "local.db"
        manager = DatabaseManager(sqlite_path=path, logger=logger)
        initialize_schema(manager.sqlite, logger)
        manager.close()
        assert path.exists()


class TestAppSettingsService:

    def test_missing_key_returns_none(self, app_settings):
        assert app_settings.get("nope") is None
        assert app_settings.get_model("nope", RegistryState) is None

    def test_set_then_get(self, app_settings):
        assert app_settings.set("theme", "dark")
        assert app_settings.set("theme", "light")
        assert app_settings.get("theme") == "light"

    def test_model_round_trip(self, app_settings):
        state = RegistryState(active_account="u2", stored_accounts=["u1", "u2"], client_version="v9")
        assert app_settings.set_model("session_registry.state", state)
        assert app_settings.get_model("session_registry.state", RegistryState) == state

    def test_invalid_record_reads_as_none(self, app_settings, caplog):
        app_settings.set("session_registry.state", '{"stored_accounts": 5}')
        assert app_settings.get_model("session_registry.state", RegistryState) is None
        assert "not a valid RegistryState" in caplog.text

    def test_write_to_closed_database_reports_failure(self, app_settings, db):
        db.close()
        assert app_settings.set("k", "v") is False
        assert app_settings.get("k") is None


class TestAuditLog:

    def test_event_is_logged_and_persisted(self, db, logger, caplog):
        log_audit_event(
            logger, "ACTIVATE", "Account", "u1", details={"region": "eu"}, conn=db.sqlite,
        )

        assert "AUDIT:" in caplog.text
        row = db.sqlite.execute(
            "SELECT action, entity_type, entity_id, details FROM audit_log"
        ).fetchone()
        assert (row["action"], row["entity_type"], row["entity_id"]) == ("ACTIVATE", "Account", "u1")
        assert json.loads(row["details"]) == {"region": "eu"}

    def test_persistence_failure_is_only_logged(self, logger, caplog):
        conn = sqlite3.connect(":memory:")

        log_audit_event(logger, "CLEAR", "Account", "*", conn=conn)

        assert "Failed to persist audit event" in caplog.text
        conn.close()
