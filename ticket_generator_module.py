# ticket_generator_module.py
import random
from typing import Dict, List, Optional, Sequence, Tuple

from loguru import logger

# Column ranges (inclusive) for 9 columns:
# 0: 1–9, 1: 10–19, ..., 8: 80–90
COL_RANGES: Tuple[Tuple[int, int], ...] = (
    (1, 9),    # col 0
    (10, 19),  # col 1
    (20, 29),  # col 2
    (30, 39),  # col 3
    (40, 49),  # col 4
    (50, 59),  # col 5
    (60, 69),  # col 6
    (70, 79),  # col 7
    (80, 90),  # col 8
)

ROWS = 3
COLS = 9
NUMBERS_PER_TICKET = 15
NUMBERS_PER_ROW = 5
MAX_PER_COLUMN = 3

Grid = List[List[Optional[int]]]


class TicketGenerationError(RuntimeError):
    """A freshly generated ticket failed its own consistency check."""


def column_of(n: int) -> Optional[int]:
    for c, (lo, hi) in enumerate(COL_RANGES):
        if lo <= n <= hi:
            return c
    return None


def _in_col_range(c: int, n: int) -> bool:
    lo, hi = COL_RANGES[c]
    return lo <= n <= hi


# ========================= VALIDATION =========================

def validate_grid(grid: Grid) -> Tuple[bool, str]:
    """
    Validate a single ticket grid with rules:
      - grid is 3 x 9
      - exactly 15 numbers in total
      - each row has exactly 5 numbers
      - each column has at most 3 numbers
      - column ranges per number respected
      - no number appears twice
      - within each column, numbers ascend top->bottom ignoring blanks
    """
    if not isinstance(grid, list) or len(grid) != ROWS:
        return False, "ticket must have 3 rows"
    for r in range(ROWS):
        if not isinstance(grid[r], list) or len(grid[r]) != COLS:
            return False, f"row {r} not 9 cols"

    total = sum(1 for row in grid for x in row if x)
    if total != NUMBERS_PER_TICKET:
        return False, f"has {total} numbers instead of {NUMBERS_PER_TICKET}"

    for r, row in enumerate(grid):
        k = sum(1 for x in row if x)
        if k != NUMBERS_PER_ROW:
            return False, f"row {r} has {k} numbers instead of {NUMBERS_PER_ROW}"

    seen = set()
    for c in range(COLS):
        col_vals = [grid[r][c] for r in range(ROWS) if grid[r][c]]
        if len(col_vals) > MAX_PER_COLUMN:
            return False, f"column {c} has {len(col_vals)} numbers (max {MAX_PER_COLUMN})"
        for n in col_vals:
            if isinstance(n, bool) or not isinstance(n, int):
                return False, f"cell {n!r} in column {c} is not a number"
            if not _in_col_range(c, n):
                lo, hi = COL_RANGES[c]
                return False, f"number {n} in column {c} is outside range {lo}-{hi}"
            if n in seen:
                return False, f"duplicate number {n}"
            seen.add(n)
        if col_vals != sorted(col_vals):
            return False, f"column {c} not ascending"

    return True, "ok"


# ========================= ROW LAYOUT =========================

def layout_columns(column_numbers: Sequence[Sequence[int]]) -> Grid:
    """
    Place per-column numbers into a 3 x 9 grid.

    Columns are processed left to right; every number goes to the least
    filled row that still has room and a free cell in that column (ties go
    to the lowest row index). Afterwards each column's values are re-sorted
    over the rows it occupies so the column reads ascending top to bottom.

    With at most 3 numbers per column and 15 in total this always ends with
    5 numbers per row. Raises ValueError when a number cannot be placed.
    """
    if len(column_numbers) != COLS:
        raise ValueError("column_numbers must have length 9")

    grid: Grid = [[None] * COLS for _ in range(ROWS)]
    row_counts = [0] * ROWS

    for c, nums in enumerate(column_numbers):
        used_rows: List[int] = []
        for n in sorted(nums):
            best: Optional[int] = None
            for r in range(ROWS):
                if row_counts[r] >= NUMBERS_PER_ROW or grid[r][c] is not None:
                    continue
                if best is None or row_counts[r] < row_counts[best]:
                    best = r
            if best is None:
                raise ValueError(f"no free row for number {n} in column {c}")
            grid[best][c] = n
            row_counts[best] += 1
            used_rows.append(best)

        for r, n in zip(sorted(used_rows), sorted(nums)):
            grid[r][c] = n

    return grid


def flatten_grid(grid: Grid) -> List[int]:
    return sorted(x for row in grid for x in row if x)


# ========================= GENERATION =========================

def _pick_column_numbers(rng) -> List[List[int]]:
    """
    Choose which numbers go in which column (distinct, in range, <= 3 each,
    15 in total). Row placement is left to layout_columns.
    """
    column_numbers: List[List[int]] = [[] for _ in range(COLS)]
    total = 0

    def free_numbers(c: int) -> List[int]:
        lo, hi = COL_RANGES[c]
        return [n for n in range(lo, hi + 1) if n not in column_numbers[c]]

    # One sweep: a random batch of 1 or 2 per column. Lands anywhere in 9..18.
    for c in range(COLS):
        batch = rng.randint(1, 2)
        pool = free_numbers(c)
        rng.shuffle(pool)
        column_numbers[c].extend(pool[:batch])
        column_numbers[c].sort()
        total += batch

    # Normalize to exactly 15: top up columns with room, or drop largest numbers.
    while total < NUMBERS_PER_TICKET:
        for c in range(COLS):
            pool = free_numbers(c)
            if len(column_numbers[c]) < MAX_PER_COLUMN and pool:
                column_numbers[c].append(rng.choice(pool))
                column_numbers[c].sort()
                total += 1
                break
        else:
            raise TicketGenerationError("no column can take another number")

    while total > NUMBERS_PER_TICKET:
        for c in range(COLS):
            if column_numbers[c]:
                column_numbers[c].pop()
                total -= 1
                break

    return column_numbers


def generate_ticket(rng: Optional[random.Random] = None) -> Dict[str, list]:
    """
    Generate one Housie ticket.

    Returns {"grid": 3x9 list (None for blanks), "flat_numbers": sorted 15 ints}.
    Pass a seeded random.Random for reproducible tickets.
    """
    if rng is None:
        rng = random  # type: ignore[assignment]

    column_numbers = _pick_column_numbers(rng)
    try:
        grid = layout_columns(column_numbers)
    except ValueError as e:
        logger.error(f"Ticket layout failed for columns {column_numbers}: {e}")
        raise TicketGenerationError(f"Invalid ticket: {e}") from e

    ok, msg = validate_grid(grid)
    if not ok:
        logger.error(f"Generated ticket failed self-check: {msg} grid={grid}")
        raise TicketGenerationError(f"Invalid ticket: {msg}")

    flat_numbers = flatten_grid(grid)
    logger.debug(f"Generated ticket {flat_numbers}")
    return {"grid": grid, "flat_numbers": flat_numbers}


# ========================= RECONSTRUCTION =========================

def layout_numbers(numbers: Sequence[int]) -> Grid:
    """
    Lay out an existing flat list of 15 numbers into a grid, deterministically.

    Raises ValueError if the list is not 15 distinct integers in 1..90 with
    at most 3 per column.
    """
    values = list(numbers)
    if any(isinstance(n, bool) or not isinstance(n, int) for n in values):
        raise ValueError("numbers must be integers")
    if len(values) != NUMBERS_PER_TICKET:
        raise ValueError(f"expected {NUMBERS_PER_TICKET} numbers, got {len(values)}")
    if len(set(values)) != len(values):
        raise ValueError("numbers contain duplicates")

    column_numbers: List[List[int]] = [[] for _ in range(COLS)]
    for n in values:
        c = column_of(n)
        if c is None:
            raise ValueError(f"number {n} is outside range 1-90")
        column_numbers[c].append(n)

    for c, nums in enumerate(column_numbers):
        if len(nums) > MAX_PER_COLUMN:
            raise ValueError(f"column {c} has {len(nums)} numbers (max {MAX_PER_COLUMN})")

    grid = layout_columns(column_numbers)
    ok, msg = validate_grid(grid)
    if not ok:
        raise ValueError(msg)
    return grid


def reconstruct_grid(numbers: Sequence[int], rng: Optional[random.Random] = None) -> Dict[str, object]:
    """
    Build the display grid for a stored flat list.

    A list that can be laid out keeps its numbers. Anything else (column
    overflow, wrong count, duplicates) is replaced by a brand-new ticket and
    "regenerated" is True; the caller then holds numbers that differ from
    the stored ones.
    """
    try:
        grid = layout_numbers(numbers)
        return {"grid": grid, "flat_numbers": flatten_grid(grid), "regenerated": False}
    except (TypeError, ValueError) as e:
        logger.warning(f"Stored numbers {numbers!r} cannot be laid out ({e}); regenerating ticket")

    ticket = generate_ticket(rng)
    return {"grid": ticket["grid"], "flat_numbers": ticket["flat_numbers"], "regenerated": True}
