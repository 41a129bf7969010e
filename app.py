"""
Tevalovalo Housie backend — app.py
- Consolidated & safe CORS
- SQLite init on import (safe for Render single worker)
- Ticket purchase stores the flat 15-number list; display rebuilds the grid
- Admin endpoints protected by X-Admin-Key (analyze / fix legacy tickets)

ENV VARS (Render Dashboard):
- FRONTEND_ORIGIN     -> e.g. https://tevalovalo.netlify.app  (optional; we also allow *.netlify.app)
- DB_FILE             -> optional, defaults to /data/tickets.db (or ./tickets.db locally)
- ADMIN_KEY           -> required for /admin/* endpoints
- MIGRATION_PAUSE_MS  -> pause between ticket updates during /admin/tickets/fix (default 100)
"""
from __future__ import annotations

import json
import os
import sqlite3
import uuid
from datetime import datetime, timezone
from threading import Lock

from flask import Flask, jsonify, request
from flask_cors import CORS
from loguru import logger

from ticket_generator_module import generate_ticket, reconstruct_grid
from ticket_migration import analyze_existing_tickets, fix_invalid_tickets
from ticket_validator_module import normalize_numbers, validate_ticket

app = Flask(__name__)

# ======== Config ========
FRONTEND_ORIGIN = os.environ.get("FRONTEND_ORIGIN", "").strip()  # exact origin, optional
DEFAULT_DB = "/data/tickets.db" if os.path.exists("/data") else "tickets.db"
DB_FILE = os.environ.get("DB_FILE", DEFAULT_DB)
ADMIN_KEY = os.environ.get("ADMIN_KEY", "")
try:
    MIGRATION_PAUSE = int(os.environ.get("MIGRATION_PAUSE_MS", "100")) / 1000.0
except ValueError:
    MIGRATION_PAUSE = 0.1

# Dev-friendly allowlist; FRONTEND_ORIGIN added if set.
ALLOWED_ORIGINS = {
    "http://localhost",
    "http://127.0.0.1",
    "http://127.0.0.1:5500",
    "http://0.0.0.0",
}
if FRONTEND_ORIGIN:
    ALLOWED_ORIGINS.add(FRONTEND_ORIGIN)

CORS(
    app,
    resources={r"/*": {"origins": list(ALLOWED_ORIGINS)}},
    supports_credentials=False,
    methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Admin-Key"],
    expose_headers=["Content-Type"],
    max_age=86400,
)


@app.after_request
def add_cors_headers(resp):
    """Allow any https://*.netlify.app origin dynamically."""
    origin = request.headers.get("Origin", "")
    resp.headers.setdefault("Vary", "Origin")
    if origin and (origin in ALLOWED_ORIGINS or (origin.startswith("https://") and origin.endswith(".netlify.app"))):
        resp.headers["Access-Control-Allow-Origin"] = origin
    return resp


# ======== DB Setup ========
lock = Lock()


def _ensure_db_dir(path: str) -> None:
    d = os.path.dirname(os.path.abspath(path)) or "."
    os.makedirs(d, exist_ok=True)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_utc(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def init_db() -> None:
    _ensure_db_dir(DB_FILE)
    with sqlite3.connect(DB_FILE) as conn:
        c = conn.cursor()
        c.execute(
            """
            CREATE TABLE IF NOT EXISTS tickets (
                id TEXT PRIMARY KEY,
                game_id TEXT,
                user_id TEXT,
                numbers TEXT NOT NULL,
                created_at TEXT,
                updated_at TEXT
            )
            """
        )
        c.execute("CREATE INDEX IF NOT EXISTS idx_tickets_created ON tickets(created_at)")
        conn.commit()


# Initialize at import time
init_db()


# ======== Health ========
@app.route("/")
def home():
    return "Tevalovalo Housie backend is running ✅"


@app.route("/whoami")
def whoami():
    return jsonify(
        {
            "service": os.environ.get("RENDER_SERVICE_NAME", "local-or-unknown"),
            "db_file": DB_FILE,
            "frontend_origin": FRONTEND_ORIGIN or "(dev/any in list)",
            "migration_pause_s": MIGRATION_PAUSE,
            "time": iso_utc(utc_now()),
            "version": "v4",
        }
    )


# ======== Auth helpers ========

def _auth_ok(req) -> bool:
    return bool(ADMIN_KEY) and req.headers.get("X-Admin-Key") == ADMIN_KEY


# ======== Tickets ========
@app.route("/api/selftest")
def api_selftest():
    try:
        ticket = generate_ticket()
        report = validate_ticket(ticket["flat_numbers"])
        return jsonify({"ok": report["is_valid"], "issues": report["issues"], "sample_ticket": ticket})
    except Exception as e:
        logger.exception("Self-test failed")
        return jsonify({"ok": False, "error": str(e)}), 500


@app.route("/api/tickets", methods=["POST", "OPTIONS"])
def buy_ticket():
    if request.method == "OPTIONS":
        return ("", 204)

    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({"ok": False, "error": "body_must_be_object"}), 400
    game_id = str(data.get("game_id") or "").strip()
    user_id = str(data.get("user_id") or "").strip()
    if not game_id or not user_id:
        return jsonify({"ok": False, "error": "missing_game_or_user"}), 400

    try:
        ticket = generate_ticket()
        ticket_id = uuid.uuid4().hex
        now = iso_utc(utc_now())
        with lock:
            with sqlite3.connect(DB_FILE) as conn:
                c = conn.cursor()
                c.execute(
                    """
                    INSERT INTO tickets (id, game_id, user_id, numbers, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (ticket_id, game_id, user_id, json.dumps(ticket["flat_numbers"]), now, now),
                )
                conn.commit()
    except Exception as e:
        logger.exception("Ticket purchase failed")
        return jsonify({"ok": False, "error": str(e)}), 500

    logger.info(f"Ticket {ticket_id[-8:]} issued for game {game_id} user {user_id}")
    return jsonify({"ok": True, "ticket_id": ticket_id, "numbers": ticket["flat_numbers"], "grid": ticket["grid"]}), 201


@app.route("/api/tickets/<ticket_id>", methods=["GET"])
def get_ticket(ticket_id: str):
    with sqlite3.connect(DB_FILE) as conn:
        c = conn.cursor()
        c.execute("SELECT numbers FROM tickets WHERE id = ?", (ticket_id,))
        row = c.fetchone()
    if not row:
        return jsonify({"ok": False, "error": "not_found"}), 404

    try:
        stored = normalize_numbers(row[0])
    except ValueError:
        stored = []
    view = reconstruct_grid(stored)
    return jsonify(
        {
            "ok": True,
            "ticket_id": ticket_id,
            "numbers": view["flat_numbers"],
            "grid": view["grid"],
            "regenerated": view["regenerated"],
        }
    )


@app.route("/api/tickets/validate", methods=["POST", "OPTIONS"])
def validate_numbers():
    if request.method == "OPTIONS":
        return ("", 204)
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({"ok": False, "error": "body_must_be_object"}), 400
    if "numbers" not in data:
        return jsonify({"ok": False, "error": "missing_numbers"}), 400
    return jsonify({"ok": True, **validate_ticket(data["numbers"])})


# ======== Admin ========
@app.route("/admin/tickets/analyze", methods=["POST", "OPTIONS"])
def admin_analyze_tickets():
    if request.method == "OPTIONS":
        return ("", 204)
    if not _auth_ok(request):
        return jsonify({"ok": False, "error": "unauthorized"}), 403

    try:
        result = analyze_existing_tickets(DB_FILE)
    except sqlite3.Error as e:
        logger.exception("Ticket analysis failed")
        return jsonify({"ok": False, "error": str(e)}), 500
    return jsonify({"ok": True, **result})


@app.route("/admin/tickets/fix", methods=["POST", "OPTIONS"])
def admin_fix_tickets():
    if request.method == "OPTIONS":
        return ("", 204)
    if not _auth_ok(request):
        return jsonify({"ok": False, "error": "unauthorized"}), 403

    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({"ok": False, "error": "body_must_be_object"}), 400
    dry_run = data.get("dry_run", True) is not False

    try:
        result = fix_invalid_tickets(DB_FILE, dry_run=dry_run, pause=MIGRATION_PAUSE, lock=lock)
    except sqlite3.Error as e:
        logger.exception("Ticket fix run failed")
        return jsonify({"ok": False, "error": str(e)}), 500
    return jsonify({"ok": True, **result})


# ======== Run (local) ========
if __name__ == "__main__":
    init_db()
    app.run(host="0.0.0.0", port=int(os.environ.get("PORT", 5000)))
