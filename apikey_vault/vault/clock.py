"""Millisecond wall clock shared by the vault components."""
import time
from typing import Callable

Clock = Callable[[], int]


def now_ms() -> int:
    return time.time_ns() // 1_000_000
