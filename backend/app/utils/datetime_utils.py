"""DateTime utilities for timezone-aware timestamp handling.

All persisted timestamps are offset-naive UTC so they compare cleanly with
PostgreSQL TIMESTAMP WITHOUT TIME ZONE columns.
"""

import math
from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    """
    Get current UTC datetime without timezone info (offset-naive).

    Returns:
        Current UTC datetime without timezone info

    Example:
        >>> now = utc_now()
        >>> print(now.tzinfo)
        None
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def seconds_until(moment: datetime, now: datetime) -> int:
    """Whole seconds from *now* until *moment*, rounded up and never negative."""
    remaining = (moment - now) / timedelta(seconds=1)
    return max(0, math.ceil(remaining))


# Lambda version for SQLAlchemy default/onupdate parameters
utc_now_lambda = lambda: datetime.now(timezone.utc).replace(tzinfo=None)
