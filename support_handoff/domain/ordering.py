from datetime import UTC, datetime, timedelta

TIMESTAMP_STEP = timedelta(microseconds=1)


def next_timestamp(previous: datetime | None, now: datetime | None = None) -> datetime:
    """Next append timestamp for a log whose last entry was stamped ``previous``.

    Entries of one handoff (or one conversation) never share or go back in time,
    so a ``timestamp > since`` filter neither skips nor repeats entries.
    """
    current = now or datetime.now(UTC)
    if previous is not None and current <= previous:
        return previous + TIMESTAMP_STEP
    return current
