from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how the tables store datetimes."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
