from __future__ import annotations

import logging
import random
import time
from typing import Any, Callable, Optional, TypeVar

import requests

log = logging.getLogger("divergence.binance")

T = TypeVar("T")


def kline_closes(klines: list) -> list[float]:
    """
    Binance kline format:
    [openTime, open, high, low, close, volume, closeTime, ...]
    """
    return [float(k[4]) for k in klines]


def _is_connection_reset(err: BaseException) -> bool:
    seen = set()
    cur: Optional[BaseException] = err
    while cur is not None and id(cur) not in seen:
        seen.add(id(cur))
        if isinstance(cur, ConnectionResetError):
            return True
        if "connection reset" in str(cur).lower():
            return True
        cur = cur.__cause__ or cur.__context__
    return False


class BinanceSpotClient:
    """
    Public (unsigned) Binance spot market data.

    Every read goes through `_with_retries`: a bounded number of attempts, then
    None. Callers treat None as "data unavailable this cycle".
    """

    def __init__(
        self,
        base_url: str = "https://api.binance.com",
        timeout_s: float = 5.0,
        retries: int = 3,
        period: int = 14,
        backoff_s: float = 0.4,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.retries = max(1, int(retries))
        self.period = period
        self.backoff_s = backoff_s
        self.session = session or requests.Session()

    def _with_retries(self, fn: Callable[[], T], what: str) -> Optional[T]:
        for attempt in range(1, self.retries + 1):
            try:
                return fn()
            except Exception as e:
                if _is_connection_reset(e):
                    log.error("Connection reset by peer (%s). Retry after some time.", what)
                if attempt == self.retries:
                    log.error("API call failed after retries: %s (%s: %s)", what, type(e).__name__, e)
                    return None
                log.warning("Retrying API call (%d/%d): %s", attempt, self.retries, what)
                if self.backoff_s > 0:
                    time.sleep(self.backoff_s * (2 ** (attempt - 1)) + random.uniform(0, 0.1))
        return None

    def _get(self, path: str, params: dict | None = None) -> Any:
        r = self.session.get(
            f"{self.base_url}{path}", params=params or {}, timeout=self.timeout_s
        )
        if r.status_code >= 400:
            raise RuntimeError(f"Binance HTTP {r.status_code}: {r.text[:200]}")
        return r.json()

    # ---------------- PUBLIC ----------------

    def klines(self, symbol: str, interval: str = "1m", limit: int = 15) -> list:
        params = {"symbol": symbol.upper(), "interval": interval, "limit": limit}
        data = self._get("/api/v3/klines", params=params)
        if not isinstance(data, list):
            raise ValueError(f"unexpected klines payload: {type(data).__name__}")
        return data

    def last_price(self, symbol: str) -> float:
        data = self._get("/api/v3/ticker/price", params={"symbol": symbol.upper()})
        return float(data["price"])

    def fetch_closing_prices(self, symbol: str, interval: str) -> list[float] | None:
        """period+1 most recent closes, oldest first, or None."""
        return self._with_retries(
            lambda: kline_closes(self.klines(symbol, interval, self.period + 1)),
            f"klines {symbol} {interval}",
        )

    def fetch_spot_price(self, symbol: str) -> float | None:
        return self._with_retries(
            lambda: self.last_price(symbol), f"ticker {symbol}"
        )
