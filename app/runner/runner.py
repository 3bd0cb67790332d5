from __future__ import annotations

import logging
import threading
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from app.core.config import Settings, settings as default_settings
from app.notify.messages import buy_signal_message, target_achieved_message
from app.persistence.audit import Audit
from app.persistence.csv_logs import CsvLog, log_timestamp
from app.persistence.state_store import StateStore
from app.runner.models import PositionState, SignalStore
from app.strategy.indicators import rsi
from app.strategy.reference import ReferenceTracker, pct_change, utc_now

log = logging.getLogger("divergence.runner")


def format_duration(delta: timedelta) -> str:
    total = max(0, int(delta.total_seconds()))
    hours, rem = divmod(total, 3600)
    minutes, seconds = divmod(rem, 60)
    return f"{hours}h {minutes}m {seconds}s"


class SignalRunner:
    """
    Multi-timeframe RSI divergence watcher with synthetic position tracking.

    Per symbol: Watching -> Open (signal fired) -> back to Watching once the
    1m close reaches the sell price. Only one cycle runs at a time.
    """

    def __init__(
        self,
        client,
        notifier,
        reference: ReferenceTracker,
        *,
        settings: Settings = default_settings,
        store: Optional[SignalStore] = None,
        state_store: Optional[StateStore] = None,
        audit: Optional[Audit] = None,
        rsi_log: Optional[CsvLog] = None,
        trade_log: Optional[CsvLog] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.client = client
        self.notifier = notifier
        self.reference = reference
        self.settings = settings
        self.state_store = state_store
        self.audit = audit
        self.rsi_log = rsi_log
        self.trade_log = trade_log
        self.clock = clock

        if store is None:
            store = state_store.load() if state_store is not None else SignalStore()
        self.store = store

        # --- Execution locks (anti-overlap) ---
        self._cycle_lock = threading.Lock()
        self._symbol_locks = defaultdict(threading.Lock)  # symbol -> Lock

    @contextmanager
    def cycle_guard(self, timeout_s: float = 0.0) -> Iterator[bool]:
        """
        Prevent overlapping cycles.
        If another cycle is running, we skip cleanly.
        """
        acquired = self._cycle_lock.acquire(timeout=timeout_s)
        try:
            yield acquired
        finally:
            if acquired:
                self._cycle_lock.release()

    @contextmanager
    def symbol_guard(self, symbol: str, timeout_s: float = 0.0) -> Iterator[bool]:
        lock = self._symbol_locks[(symbol or "").upper()]
        acquired = lock.acquire(timeout=timeout_s) if timeout_s > 0 else lock.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                lock.release()

    # ------------------------------------------------------------------
    # side effects that must never break a cycle
    # ------------------------------------------------------------------
    def record_event(self, event_type: str, symbol: Optional[str], action: str, details: Dict[str, Any]) -> None:
        if self.audit is None:
            return
        try:
            self.audit.event(event_type=event_type, symbol=symbol, action=action, details=details)
        except Exception as e:
            log.error("audit event %s/%s failed: %s", event_type, action, e)

    def _persist(self, symbol: str) -> None:
        if self.state_store is None:
            return
        try:
            pos = self.store.positions.get(symbol)
            if pos is None:
                self.state_store.delete_position(symbol)
            else:
                self.state_store.save_position(symbol, pos)
            when = self.store.last_notified.get(symbol)
            if when is not None:
                self.state_store.save_cooldown(symbol, when)
        except Exception as e:
            log.error("saving state for %s failed: %s", symbol, e)
            self.record_event("ERROR", symbol, "SAVE_STATE_FAILED", {"error": f"{type(e).__name__}: {e}"})

    def _rsi_for(self, symbol: str, interval: str) -> tuple[Optional[List[float]], Optional[float]]:
        closes = self.client.fetch_closing_prices(symbol, interval)
        if not closes:
            return None, None
        return closes, rsi(closes, self.settings.RSI_PERIOD)

    def _edit_all(self, token: str, chat_ids: Sequence[str], pos: PositionState, text: str) -> None:
        for chat_id in chat_ids:
            mid = pos.message_ids.get(str(chat_id))
            if mid is None:
                continue
            self.notifier.edit(token, chat_id, mid, text)

    # ------------------------------------------------------------------
    # evaluation cycle
    # ------------------------------------------------------------------
    def evaluate(self, symbol: str, token: str, chat_ids: Sequence[str]) -> Dict[str, Any]:
        symbol = symbol.upper()
        with self.symbol_guard(symbol) as ok:
            if not ok:
                return {"symbol": symbol, "action": "skipped", "reason": "SYMBOL_BUSY"}
            return self._evaluate(symbol, token, chat_ids)

    def _evaluate(self, symbol: str, token: str, chat_ids: Sequence[str]) -> Dict[str, Any]:
        s = self.settings

        _, rsi15m = self._rsi_for(symbol, "15m")
        prices5m = self.client.fetch_closing_prices(symbol, "5m")
        prices1m = self.client.fetch_closing_prices(symbol, "1m")
        btc = self.reference.compute_changes()

        if not prices5m or not prices1m or rsi15m is None:
            log.info("%s: market data unavailable, skipping cycle", symbol)
            return {"symbol": symbol, "action": "skipped", "reason": "DATA_UNAVAILABLE"}

        rsi5m = rsi(prices5m, s.RSI_PERIOD)
        rsi1m = rsi(prices1m, s.RSI_PERIOD)
        if rsi5m is None or rsi1m is None:
            log.info("%s: not enough candles for RSI, skipping cycle", symbol)
            return {"symbol": symbol, "action": "skipped", "reason": "NOT_ENOUGH_DATA"}

        current_price = prices1m[-1]
        now = self.clock()

        log.info(
            "RSI for %s: 15m = %s, 5m = %s, 1m = %s, Price = %s",
            symbol, rsi15m, rsi5m, rsi1m, current_price,
        )
        if self.rsi_log is not None:
            self.rsi_log.append([log_timestamp(now), symbol, rsi15m, rsi5m, rsi1m, current_price])

        readings = {"rsi15m": rsi15m, "rsi5m": rsi5m, "rsi1m": rsi1m, "price": current_price}

        pos = self.store.positions.get(symbol)
        if pos is not None:
            reentry_level = pos.last_entry * (1 - s.REENTRY_DROP_PCT / 100.0)
            if current_price < pos.sell_price and current_price <= reentry_level:
                pos.entry_prices.insert(0, current_price)
                log.info("%s: re-entry at %s (entries=%d)", symbol, current_price, len(pos.entry_prices))
                self._edit_all(
                    token, chat_ids, pos,
                    buy_signal_message(symbol, pos.entry_prices, pos.sell_price),
                )
                self._persist(symbol)
                self.record_event("SIGNAL", symbol, "REENTRY", {**readings, "entries": list(pos.entry_prices)})
                return {"symbol": symbol, "action": "reentry", **readings}
            return {"symbol": symbol, "action": "hold", **readings}

        fired = (
            rsi15m < s.RSI_THRESHOLD_15M
            and rsi5m > s.RSI_THRESHOLD_5M
            and rsi1m > s.RSI_THRESHOLD_1M
        )
        if not fired:
            return {"symbol": symbol, "action": "watch", **readings}

        last = self.store.last_notified.get(symbol)
        if last is not None and now - last < timedelta(minutes=s.COOLDOWN_MINUTES):
            log.info("%s: signal suppressed, last fired at %s", symbol, last.isoformat())
            self.record_event("SIGNAL", symbol, "COOLDOWN_SKIP", readings)
            return {"symbol": symbol, "action": "cooldown", **readings}

        self.store.last_notified[symbol] = now

        entries = [current_price]
        sell_price = round(current_price * (1 + s.TARGET_PROFIT_PCT / 100.0), 8)
        text = buy_signal_message(symbol, entries, sell_price)

        message_ids: Dict[str, int] = {}
        for chat_id in chat_ids:
            mid = self.notifier.send(token, chat_id, text)
            if mid is not None:
                message_ids[str(chat_id)] = mid

        self.store.positions[symbol] = PositionState(
            entry_prices=entries,
            sell_price=sell_price,
            buy_time=now,
            bottom_price=current_price,
            btc_price_at_buy=btc.price,
            message_ids=message_ids,
        )
        log.info("%s: buy signal at %s, target %s", symbol, current_price, sell_price)
        self._persist(symbol)
        self.record_event(
            "SIGNAL", symbol, "OPEN",
            {**readings, "sell_price": sell_price, "btc_price": btc.price, "notified": len(message_ids)},
        )
        return {"symbol": symbol, "action": "opened", "sell_price": sell_price, **readings}

    def run_once(self, token: str, chat_ids: Sequence[str], symbols: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        with self.cycle_guard() as ok:
            if not ok:
                return {"skipped": True, "reason": "CYCLE_BUSY"}
            results = []
            for sym in symbols if symbols is not None else self.settings.symbols:
                try:
                    results.append(self.evaluate(sym, token, chat_ids))
                except Exception as e:
                    # one broken symbol must not stop the others
                    log.exception("%s: evaluate failed", sym)
                    self.record_event("ERROR", sym, "EVALUATE_FAILED", {"error": f"{type(e).__name__}: {e}"})
                    results.append({"symbol": sym, "action": "error", "error": str(e)})
            return {"skipped": False, "results": results}

    # ------------------------------------------------------------------
    # target-check cycle
    # ------------------------------------------------------------------
    def check_targets(self, token: str, chat_ids: Sequence[str]) -> List[str]:
        """Closes every open position whose target was reached. Returns closed symbols."""
        closed: List[str] = []
        with self.cycle_guard() as ok:
            if not ok:
                return closed
            for symbol in list(self.store.positions):
                with self.symbol_guard(symbol) as sym_ok:
                    if not sym_ok:
                        continue
                    try:
                        if self._check_target(symbol, token, chat_ids):
                            closed.append(symbol)
                    except Exception as e:
                        log.exception("%s: target check failed", symbol)
                        self.record_event("ERROR", symbol, "TARGET_CHECK_FAILED", {"error": f"{type(e).__name__}: {e}"})
        return closed

    def _check_target(self, symbol: str, token: str, chat_ids: Sequence[str]) -> bool:
        pos = self.store.positions.get(symbol)
        if pos is None:
            return False

        prices = self.client.fetch_closing_prices(symbol, "1m")
        btc = self.reference.compute_changes()
        if not prices:
            return False

        current_price = prices[-1]
        if current_price < pos.bottom_price:
            pos.bottom_price = current_price
            self._persist(symbol)

        if current_price < pos.sell_price:
            return False

        now = self.clock()
        duration = format_duration(now - pos.buy_time)
        first_entry = pos.first_entry
        percentage_drop = round((first_entry - pos.bottom_price) / first_entry * 100, 2)
        btc_change = pct_change(pos.btc_price_at_buy, btc.price)

        self._edit_all(
            token, chat_ids, pos,
            target_achieved_message(
                symbol, pos.entry_prices, pos.sell_price, pos.bottom_price, percentage_drop, duration
            ),
        )

        s = self.settings
        if self.trade_log is not None:
            self.trade_log.append(
                [
                    log_timestamp(now),
                    symbol,
                    s.RSI_THRESHOLD_15M,
                    s.RSI_THRESHOLD_5M,
                    s.RSI_THRESHOLD_1M,
                    first_entry,
                    pos.sell_price,
                    duration,
                    pos.bottom_price,
                    f"{percentage_drop:.2f}",
                    btc_change,
                    btc.change30m,
                ]
            )

        del self.store.positions[symbol]
        log.info("%s: target %s achieved in %s (drop %.2f%%)", symbol, pos.sell_price, duration, percentage_drop)
        self._persist(symbol)
        self.record_event(
            "SIGNAL", symbol, "TARGET_ACHIEVED",
            {
                "price": current_price,
                "entries": list(pos.entry_prices),
                "sell_price": pos.sell_price,
                "bottom_price": pos.bottom_price,
                "percentage_drop": percentage_drop,
                "duration": duration,
                "btc_change": btc_change,
                "btc_change30m": btc.change30m,
            },
        )
        return True

    def snapshot(self) -> Dict[str, Any]:
        return {
            "positions": {
                sym: {
                    "entry_prices": list(p.entry_prices),
                    "sell_price": p.sell_price,
                    "buy_time": p.buy_time.isoformat(),
                    "bottom_price": p.bottom_price,
                    "btc_price_at_buy": p.btc_price_at_buy,
                    "message_ids": dict(p.message_ids),
                }
                for sym, p in self.store.positions.items()
            },
            "last_notified": {k: v.isoformat() for k, v in self.store.last_notified.items()},
            "reference": {
                "symbol": self.reference.symbol,
                "last_price": self.reference.last_price,
                "history_len": len(self.reference.history),
            },
        }
