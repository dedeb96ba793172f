"""Validity window arithmetic and the clock the registry reads from."""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Protocol


class Clock(Protocol):
    def now(self) -> int: ...


class SystemClock:
    """Wall-clock unix seconds."""

    def now(self) -> int:
        return int(time.time())


@dataclass
class ManualClock:
    """Clock that only moves when told to; used by tests and replays."""

    current: int = 0

    def now(self) -> int:
        return self.current

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("clock cannot move backwards")
        self.current += seconds
        return self.current


def remaining(expires_at: int, now: int) -> int:
    return max(0, expires_at - now)


__all__ = ["Clock", "ManualClock", "SystemClock", "remaining"]
