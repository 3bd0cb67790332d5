from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Deque, Optional

HISTORY_WINDOW = timedelta(minutes=31)
CHANGE_WINDOW = timedelta(minutes=30)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def pct_change(old: Optional[float], new: Optional[float]) -> Optional[float]:
    """Percent move from old to new, rounded to 2 decimals."""
    if old is None or new is None or old == 0:
        return None
    return round((new - old) / old * 100, 2)


@dataclass(frozen=True)
class ReferenceSample:
    price: float
    timestamp: datetime


@dataclass(frozen=True)
class ReferenceChanges:
    price: Optional[float] = None
    change: Optional[float] = None
    change30m: Optional[float] = None


class ReferenceTracker:
    """
    Rolling price history of the benchmark coin (BTCUSDT by default).

    History is chronological, so pruning only ever pops from the head.
    """

    def __init__(self, client, symbol: str = "BTCUSDT", clock: Callable[[], datetime] = utc_now):
        self.client = client
        self.symbol = symbol
        self.clock = clock
        self.history: Deque[ReferenceSample] = deque()
        self.last_price: Optional[float] = None

    def update_and_get_price(self) -> Optional[float]:
        price = self.client.fetch_spot_price(self.symbol)
        if price is None:
            return None

        now = self.clock()
        self.history.append(ReferenceSample(price=price, timestamp=now))

        cutoff = now - HISTORY_WINDOW
        while self.history and self.history[0].timestamp < cutoff:
            self.history.popleft()

        return price

    def compute_changes(self) -> ReferenceChanges:
        price = self.update_and_get_price()
        if price is None:
            return ReferenceChanges()

        change = pct_change(self.last_price, price)

        change30m = None
        cutoff = self.clock() - CHANGE_WINDOW
        old = next((s for s in self.history if s.timestamp <= cutoff), None)
        if old is not None:
            change30m = pct_change(old.price, price)

        self.last_price = price
        return ReferenceChanges(price=price, change=change, change30m=change30m)
