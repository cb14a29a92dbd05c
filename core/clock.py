"""Time helpers. All stored timestamps are naive UTC."""

import time
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def now_ms() -> int:
    """Current time as epoch milliseconds (token expiry unit)"""
    return int(time.time() * 1000)
