"""
Integration tests for the Flask endpoints (test client, temporary database).
"""

from conftest import GOOD_NUMBERS, LEGACY_NUMBERS, insert_ticket, stored_numbers
from ticket_generator_module import layout_numbers, validate_grid

ADMIN = {"X-Admin-Key": "secret"}


def test_health(client):
    r = client.get("/")
    assert r.status_code == 200
    assert b"running" in r.data


def test_selftest(client):
    r = client.get("/api/selftest")
    assert r.status_code == 200
    body = r.get_json()
    assert body["ok"] is True
    assert len(body["sample_ticket"]["flat_numbers"]) == 15


def test_buy_ticket_persists_flat_numbers(client, db_file):
    r = client.post("/api/tickets", json={"game_id": "g1", "user_id": "u1"})
    assert r.status_code == 201
    body = r.get_json()
    assert body["ok"] is True
    assert validate_grid(body["grid"]) == (True, "ok")
    assert stored_numbers(db_file, body["ticket_id"]) == body["numbers"]


def test_buy_ticket_requires_game_and_user(client):
    r = client.post("/api/tickets", json={"game_id": "g1"})
    assert r.status_code == 400
    assert r.get_json()["error"] == "missing_game_or_user"


def test_get_ticket_lays_out_stored_numbers(client, db_file):
    insert_ticket(db_file, "t-good", GOOD_NUMBERS)
    r = client.get("/api/tickets/t-good")
    assert r.status_code == 200
    body = r.get_json()
    assert body["regenerated"] is False
    assert body["numbers"] == GOOD_NUMBERS
    assert body["grid"] == layout_numbers(GOOD_NUMBERS)


def test_get_legacy_ticket_shows_regenerated_grid(client, db_file):
    insert_ticket(db_file, "t-legacy", LEGACY_NUMBERS)
    r = client.get("/api/tickets/t-legacy")
    body = r.get_json()
    assert body["regenerated"] is True
    assert validate_grid(body["grid"]) == (True, "ok")
    # display only; the stored list is left for the migration to replace
    assert stored_numbers(db_file, "t-legacy") == LEGACY_NUMBERS


def test_get_unknown_ticket(client):
    r = client.get("/api/tickets/missing")
    assert r.status_code == 404


def test_validate_endpoint(client):
    r = client.post("/api/tickets/validate", json={"numbers": LEGACY_NUMBERS})
    body = r.get_json()
    assert body["ok"] is True
    assert body["is_valid"] is False
    assert "Ticket needs regeneration for proper Housie format" in body["issues"]
    assert body["column_counts"][0] == 4


def test_validate_endpoint_requires_numbers(client):
    r = client.post("/api/tickets/validate", json={})
    assert r.status_code == 400


def test_admin_requires_key(client):
    assert client.post("/admin/tickets/analyze").status_code == 403
    assert client.post("/admin/tickets/fix", headers={"X-Admin-Key": "wrong"}).status_code == 403


def test_admin_analyze_and_fix(client, db_file):
    insert_ticket(db_file, "t-good", GOOD_NUMBERS, "2025-01-01T00:00:00Z")
    insert_ticket(db_file, "t-legacy", LEGACY_NUMBERS, "2025-01-02T00:00:00Z")

    r = client.post("/admin/tickets/analyze", headers=ADMIN)
    body = r.get_json()
    assert body["total_tickets"] == 2
    assert body["invalid_tickets"][0]["ticket_id"] == "t-legacy"

    dry = client.post("/admin/tickets/fix", headers=ADMIN, json={}).get_json()
    assert dry["dry_run"] is True
    assert stored_numbers(db_file, "t-legacy") == LEGACY_NUMBERS

    fixed = client.post("/admin/tickets/fix", headers=ADMIN, json={"dry_run": False}).get_json()
    assert fixed["fixed"] == 1
    assert stored_numbers(db_file, "t-legacy") != LEGACY_NUMBERS

    after = client.post("/admin/tickets/analyze", headers=ADMIN).get_json()
    assert after["valid_tickets"] == 2


def test_purchase_completes_during_paused_fix_run(client, db_file, flask_app, monkeypatch):
    import threading

    import app as app_module
    import ticket_migration

    for i in range(3):
        insert_ticket(db_file, f"t-legacy-{i}", LEGACY_NUMBERS, f"2025-01-0{i + 1}T00:00:00Z")
    monkeypatch.setattr(app_module, "MIGRATION_PAUSE", 0.05)

    purchases = []

    def buy_during_pause(seconds):
        assert not app_module.lock.locked()
        worker = threading.Thread(
            target=lambda: purchases.append(
                flask_app.test_client().post("/api/tickets", json={"game_id": "g1", "user_id": "u2"}).status_code
            )
        )
        worker.start()
        worker.join(timeout=5)

    monkeypatch.setattr(ticket_migration.time, "sleep", buy_during_pause)

    fixed = client.post("/admin/tickets/fix", headers=ADMIN, json={"dry_run": False}).get_json()
    assert fixed["fixed"] == 3
    assert purchases == [201, 201, 201]


def test_non_object_bodies_rejected(client):
    r = client.post("/api/tickets/validate", json="numbers")
    assert r.status_code == 400
    assert r.get_json() == {"ok": False, "error": "body_must_be_object"}

    r = client.post("/api/tickets", json=[1])
    assert r.status_code == 400
    assert r.get_json()["error"] == "body_must_be_object"

    r = client.post("/admin/tickets/fix", headers=ADMIN, json=[False])
    assert r.status_code == 400
