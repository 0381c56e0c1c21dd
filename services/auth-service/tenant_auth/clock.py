from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default wall clock; services accept any zero-argument callable instead."""
    return datetime.now(timezone.utc)
