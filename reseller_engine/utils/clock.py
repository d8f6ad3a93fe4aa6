from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the TIMESTAMP columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_minute(value: datetime) -> datetime:
    return value.replace(second=0, microsecond=0)
