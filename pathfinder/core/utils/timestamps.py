import time
from datetime import datetime, timezone


def now_ms() -> int:
    """Wall clock time in integer milliseconds since the epoch."""
    return int(time.time() * 1000)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
