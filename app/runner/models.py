# app/runner/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

@dataclass
class PositionState:
    entry_prices: List[float]  # most recent first
    sell_price: float  # fixed at first entry
    buy_time: datetime
    bottom_price: float
    btc_price_at_buy: Optional[float] = None
    message_ids: Dict[str, int] = field(default_factory=dict)  # chat_id -> message_id

    @property
    def first_entry(self) -> float:
        return self.entry_prices[-1]

    @property
    def last_entry(self) -> float:
        return self.entry_prices[0]

    @property
    def message_id(self) -> Optional[int]:
        # first recipient's message
        for mid in self.message_ids.values():
            return mid
        return None

@dataclass
class SignalStore:
    """Per-symbol runtime state owned by the runner."""

    positions: Dict[str, PositionState] = field(default_factory=dict)
    last_notified: Dict[str, datetime] = field(default_factory=dict)
