# ticket_migration.py
"""
Admin tooling for tickets stored before the current generator existed.

Every stored ticket is validated; invalid ones are replaced wholesale with a
freshly generated ticket (never patched). Runs serially, pausing between
updates so the database is not hammered. Dry run is the default.
"""
import json
import random
import sqlite3
import time
from contextlib import nullcontext
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from loguru import logger

from ticket_generator_module import generate_ticket
from ticket_validator_module import validate_ticket


def _short(ticket_id: str) -> str:
    return str(ticket_id)[-8:]


def analyze_tickets(records: Iterable[Tuple[str, Any]]) -> Dict[str, Any]:
    """records: (ticket_id, stored numbers) pairs."""
    total = 0
    valid = 0
    invalid: List[Dict[str, Any]] = []

    for ticket_id, numbers in records:
        total += 1
        report = validate_ticket(numbers)
        if report["is_valid"]:
            valid += 1
        else:
            invalid.append({"ticket_id": ticket_id, "issues": report["issues"]})
            logger.warning(f"Invalid ticket {_short(ticket_id)}: {', '.join(report['issues'])}")

    logger.info(f"Analysis: total={total} valid={valid} invalid={len(invalid)}")
    return {"total_tickets": total, "valid_tickets": valid, "invalid_tickets": invalid}


def _load_tickets(db_file: str) -> List[Tuple[str, Any]]:
    with sqlite3.connect(db_file) as conn:
        c = conn.cursor()
        c.execute("SELECT id, numbers FROM tickets ORDER BY created_at ASC")
        return list(c.fetchall())


def analyze_existing_tickets(db_file: str) -> Dict[str, Any]:
    tickets = _load_tickets(db_file)
    if not tickets:
        logger.info("No tickets found in database")
    return analyze_tickets(tickets)


def _replace_ticket(db_file: str, ticket_id: str, rng: Optional[random.Random], lock=None) -> List[int]:
    new_numbers = generate_ticket(rng)["flat_numbers"]
    now = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    with lock or nullcontext(), sqlite3.connect(db_file) as conn:
        c = conn.cursor()
        c.execute(
            "UPDATE tickets SET numbers = ?, updated_at = ? WHERE id = ?",
            (json.dumps(new_numbers), now, ticket_id),
        )
        if c.rowcount != 1:
            raise sqlite3.DatabaseError(f"ticket {ticket_id} not found")
        conn.commit()
    return new_numbers


def fix_invalid_tickets(
    db_file: str,
    dry_run: bool = True,
    pause: float = 0.0,
    rng: Optional[random.Random] = None,
    lock=None,
) -> Dict[str, Any]:
    """
    Regenerate every invalid stored ticket.

    Returns {"processed", "fixed", "failed", "errors", "dry_run"}. A failed
    update is recorded and the run carries on with the next ticket.
    When given, lock is held for each UPDATE only, never across the pause.
    """
    logger.info(f"{'DRY RUN - ' if dry_run else ''}Fixing invalid tickets in {db_file}")
    analysis = analyze_existing_tickets(db_file)
    results: Dict[str, Any] = {"processed": 0, "fixed": 0, "failed": 0, "errors": [], "dry_run": dry_run}

    if not analysis["invalid_tickets"]:
        logger.info("No invalid tickets found")
        return results

    for entry in analysis["invalid_tickets"]:
        ticket_id = entry["ticket_id"]
        results["processed"] += 1

        if dry_run:
            logger.info(f"Would regenerate ticket {_short(ticket_id)}")
        else:
            try:
                new_numbers = _replace_ticket(db_file, ticket_id, rng, lock)
                results["fixed"] += 1
                logger.info(f"Fixed ticket {_short(ticket_id)} with new numbers {new_numbers}")
            except sqlite3.Error as e:
                results["failed"] += 1
                results["errors"].append(f"Failed to fix ticket {ticket_id}: {e}")
                logger.error(f"Failed to update ticket {ticket_id}: {e}")

        if pause > 0:
            time.sleep(pause)

    logger.info(
        f"{'Dry run' if dry_run else 'Fix'} results: processed={results['processed']} "
        f"fixed={results['fixed']} failed={results['failed']}"
    )
    return results
