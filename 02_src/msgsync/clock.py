"""Millisecond wall clock shared by the cache, queue and sync manager."""

import time
from typing import Callable

Clock = Callable[[], int]


def now_ms() -> int:
    """Current epoch time in integer milliseconds."""
    return int(time.time() * 1000)
