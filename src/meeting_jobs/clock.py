"""Wall-clock access for the job engine.

Every component that reads the time takes a ``Clock`` so tests can
drive time explicitly.
"""

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)
