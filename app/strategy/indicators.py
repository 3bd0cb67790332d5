from __future__ import annotations

from typing import List, Optional


def rsi(closes: List[float], period: int = 14) -> Optional[float]:
    """
    Simple (non-smoothed) RSI over the first `period` points of `closes`.

    Gains and losses are summed over the period-1 transitions between
    closes[0..period-1] and averaged over `period`. Returns None when there are
    fewer than `period` points.
    """
    if len(closes) < period:
        return None
    gains = 0.0
    losses = 0.0
    for i in range(1, period):
        diff = closes[i] - closes[i - 1]
        if diff > 0:
            gains += diff
        else:
            losses -= diff
    avg_gain = gains / period
    avg_loss = losses / period
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100 - (100 / (1 + rs))
