import time
from datetime import datetime, timezone


def current_minutes() -> int:
    """Minutes since January 1, 1970, the time unit stored on tickets."""
    return int(time.time() // 60)


def minutes_to_datetime(minutes: int) -> datetime:
    return datetime.fromtimestamp(minutes * 60, tz=timezone.utc)
