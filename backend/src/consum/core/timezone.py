"""UTC clock helpers.

Timestamps are stored as naive UTC datetimes so they compare consistently on
every database backend. Table models declare their datetime columns as plain
`DateTime` to match.
"""

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(UTC).replace(tzinfo=None)
