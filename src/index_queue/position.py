"""Queue position encoding.

Ordering ready entries by ``priority DESC, run_at ASC`` needs two sort keys,
which some engines cannot serve from a single index. Both values are folded
into one string whose ascending lexicographic order is the same ordering:

    "0.0909090909-0001423053863"

The first part is the inverse of the (offset) priority with fixed precision,
the second the run_at epoch seconds padded to 13 digits.
"""

from .exceptions import InvalidPriorityError

PRIORITY_MIN = -10
PRIORITY_MAX = 10_000
PRIORITY_OFFSET = 10

_TIME_WIDTH = 13


def validate_priority(priority: int) -> int:
    """Check that a priority lies within the supported domain.

    Args:
        priority: Requested priority

    Returns:
        The priority unchanged

    Raises:
        InvalidPriorityError: If priority is not an int or out of range
    """
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise InvalidPriorityError(priority, PRIORITY_MIN, PRIORITY_MAX)
    if priority < PRIORITY_MIN or priority > PRIORITY_MAX:
        raise InvalidPriorityError(priority, PRIORITY_MIN, PRIORITY_MAX)
    return priority


def encode_queue_position(priority: int, run_at: int) -> str:
    """Encode priority and run_at into a single ascending sort key.

    Args:
        priority: Entry priority, higher runs sooner
        run_at: Earliest run time in epoch milliseconds

    Returns:
        Sortable queue position string

    Raises:
        InvalidPriorityError: If priority is outside the supported domain
    """
    shifted = validate_priority(priority) + PRIORITY_OFFSET
    inverse = 2.0 if shifted == 0 else 1.0 / shifted
    fixed_width_time = str(run_at // 1000)[:_TIME_WIDTH].rjust(_TIME_WIDTH, "0")

    return f"{inverse:0.10f}-{fixed_width_time}"
