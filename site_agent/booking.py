"""Adaptive group booking plan.

A scan run books ``target`` companions.  Each attempt books a group of the
current size; when an attempt fails the group shrinks (10 → 5 → 2 → 1) and
the next attempt is scheduled quickly, when it succeeds the booked count is
subtracted from what is left.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, List, Optional

from automation.messages import MAX_GROUP_SIZE

HISTORY_LIMIT = 20


def reduce_group_size(size: int) -> Optional[int]:
    """Next smaller group size, or ``None`` when ``size`` cannot shrink further."""

    if size > 5:
        return 5
    if size > 2:
        return 2
    if size > 1:
        return 1
    return None


class AttemptOutcome(str, Enum):
    BOOKED = "booked"
    NO_TIME = "no_time"
    CONFIRM_MISSING = "confirm_missing"


@dataclass(slots=True)
class BookingAttempt:
    group_size: int
    outcome: AttemptOutcome
    detail: str = ""
    timestamp: float = field(default_factory=time.time)

    @property
    def succeeded(self) -> bool:
        return self.outcome is AttemptOutcome.BOOKED


@dataclass(slots=True)
class BookingPlan:
    target: int = 1
    group_size: int = 1
    remaining: int = 1
    uses_filter: bool = False
    filter_pending: bool = False
    history: Deque[BookingAttempt] = field(default_factory=lambda: deque(maxlen=HISTORY_LIMIT))

    @classmethod
    def for_group(cls, group_size: Optional[int]) -> "BookingPlan":
        if group_size is None:
            return cls()
        size = max(1, min(int(group_size), MAX_GROUP_SIZE))
        return cls(target=size, group_size=size, remaining=size, uses_filter=True, filter_pending=True)

    @property
    def completed(self) -> bool:
        return self.remaining <= 0

    @property
    def booked(self) -> int:
        return self.target - max(self.remaining, 0)

    def record_success(self, detail: str = "") -> int:
        """Book the current group; returns how many companions are still left."""

        self.history.append(BookingAttempt(self.group_size, AttemptOutcome.BOOKED, detail))
        self.remaining -= self.group_size
        if self.remaining > 0 and self.group_size > self.remaining:
            self.group_size = self.remaining
            self.filter_pending = self.uses_filter
        return max(self.remaining, 0)

    def record_failure(self, outcome: AttemptOutcome, detail: str = "") -> bool:
        """Record a failed attempt; returns ``True`` when the group shrank."""

        self.history.append(BookingAttempt(self.group_size, outcome, detail))
        smaller = reduce_group_size(self.group_size)
        if smaller is None:
            return False
        self.group_size = smaller
        self.filter_pending = self.uses_filter
        return True

    def recent(self) -> List[BookingAttempt]:
        return list(self.history)
