import json
import os
import sqlite3
import sys
import tempfile

import pytest

# Ensure repository root is on sys.path so top-level modules import during tests
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

# app.py initialises its database on import; keep that out of the working tree.
os.environ.setdefault("DB_FILE", os.path.join(tempfile.gettempdir(), "housie_import_test.db"))

TICKETS_SCHEMA = """
    CREATE TABLE IF NOT EXISTS tickets (
        id TEXT PRIMARY KEY,
        game_id TEXT,
        user_id TEXT,
        numbers TEXT NOT NULL,
        created_at TEXT,
        updated_at TEXT
    )
"""

# 15 numbers, four of them in the 1-9 column
LEGACY_NUMBERS = [1, 2, 3, 4, 12, 23, 34, 45, 56, 67, 78, 81, 82, 83, 14]
# 15 numbers, at most three per column
GOOD_NUMBERS = [3, 7, 11, 15, 22, 31, 38, 44, 52, 59, 63, 71, 77, 84, 90]


@pytest.fixture
def db_file(tmp_path):
    path = str(tmp_path / "tickets.db")
    with sqlite3.connect(path) as conn:
        conn.execute(TICKETS_SCHEMA)
        conn.commit()
    return path


def insert_ticket(path, ticket_id, numbers, created_at="2025-01-01T00:00:00Z"):
    stored = numbers if isinstance(numbers, str) else json.dumps(numbers)
    with sqlite3.connect(path) as conn:
        conn.execute(
            "INSERT INTO tickets (id, game_id, user_id, numbers, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?)",
            (ticket_id, "game-1", "user-1", stored, created_at, created_at),
        )
        conn.commit()


def stored_numbers(path, ticket_id):
    with sqlite3.connect(path) as conn:
        row = conn.execute("SELECT numbers FROM tickets WHERE id = ?", (ticket_id,)).fetchone()
    return json.loads(row[0])


@pytest.fixture
def flask_app(db_file, monkeypatch):
    import app as app_module

    monkeypatch.setattr(app_module, "DB_FILE", db_file)
    monkeypatch.setattr(app_module, "ADMIN_KEY", "secret")
    monkeypatch.setattr(app_module, "MIGRATION_PAUSE", 0.0)
    app_module.app.config["TESTING"] = True
    return app_module.app


@pytest.fixture
def client(flask_app):
    return flask_app.test_client()
