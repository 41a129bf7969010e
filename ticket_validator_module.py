# ticket_validator_module.py
import json
from typing import Any, Dict, List

from ticket_generator_module import COLS, MAX_PER_COLUMN, NUMBERS_PER_TICKET, column_of

INVALID_FORMAT = "Invalid number format"
NEEDS_REGENERATION = "Ticket needs regeneration for proper Housie format"


def _as_number(x: Any):
    """Return x as a positive int, or None when it is filler (0, blanks, junk)."""
    if isinstance(x, bool):
        return None
    if isinstance(x, float):
        if not x.is_integer():
            return None
        x = int(x)
    if isinstance(x, int) and x > 0:
        return x
    return None


def normalize_numbers(candidate: Any) -> List[int]:
    """
    Coerce stored ticket data into a flat list of positive ints.

    Accepts a flat list, a grid (list of rows) or a JSON string of either.
    Non-positive and non-numeric entries are dropped as filler. Raises
    ValueError when the data is not a list at all.
    """
    if isinstance(candidate, (str, bytes)):
        try:
            candidate = json.loads(candidate)
        except (ValueError, RecursionError) as e:
            raise ValueError(f"not valid JSON: {e}") from e

    if not isinstance(candidate, (list, tuple)):
        raise ValueError(f"expected a list, got {type(candidate).__name__}")

    flat: List[Any] = []
    for item in candidate:
        if isinstance(item, (list, tuple)):
            flat.extend(item)
        else:
            flat.append(item)

    return [n for n in (_as_number(x) for x in flat) if n is not None]


def column_counts(numbers: List[int]) -> List[int]:
    counts = [0] * COLS
    for n in numbers:
        c = column_of(n)
        if c is not None:
            counts[c] += 1
    return counts


def validate_ticket(candidate: Any) -> Dict[str, Any]:
    """
    Check stored ticket numbers against the Housie rules.

    Every check runs so the report lists all problems at once:
      - exactly 15 numbers
      - no duplicates
      - every number within 1-90
      - at most 3 numbers per column (overflow means the ticket must be regenerated)

    Row layout is not checked; a flat list does not carry it.
    Returns {"is_valid": bool, "issues": [str], "column_counts": [9 ints]}.
    """
    try:
        numbers = normalize_numbers(candidate)
    except ValueError:
        return {"is_valid": False, "issues": [INVALID_FORMAT], "column_counts": [0] * COLS}

    issues: List[str] = []

    if len(numbers) != NUMBERS_PER_TICKET:
        issues.append(f"Has {len(numbers)} numbers instead of {NUMBERS_PER_TICKET}")

    if len(set(numbers)) != len(numbers):
        issues.append("Contains duplicate numbers")

    for n in numbers:
        if column_of(n) is None:
            issues.append(f"Number {n} is outside valid range 1-90")

    counts = column_counts(numbers)
    overflow = False
    for c, k in enumerate(counts):
        if k > MAX_PER_COLUMN:
            overflow = True
            issues.append(f"Column {c + 1} has {k} numbers (max {MAX_PER_COLUMN} allowed)")
    if overflow:
        issues.append(NEEDS_REGENERATION)

    return {"is_valid": not issues, "issues": issues, "column_counts": counts}
