# app/persistence/state_store.py

from __future__ import annotations

import json
from datetime import datetime
from typing import Dict

from app.persistence.db import DB, utc_now_iso
from app.runner.models import PositionState, SignalStore


class StateStore:
    def __init__(self, db: DB):
        self.db = db

    def load(self) -> SignalStore:
        """Open positions + cooldown timestamps as a fresh SignalStore."""
        return SignalStore(positions=self.load_positions(), last_notified=self.load_cooldowns())

    # ---------- POSITIONS ----------
    def load_positions(self) -> Dict[str, PositionState]:
        out: Dict[str, PositionState] = {}

        with self.db.connect() as conn:
            rows = conn.execute("SELECT * FROM position_state").fetchall()

        for r in rows:
            sym = (r["symbol"] or "").upper()
            if not sym:
                continue
            entries = [float(x) for x in json.loads(r["entry_prices_json"] or "[]")]
            if not entries:
                continue

            out[sym] = PositionState(
                entry_prices=entries,
                sell_price=float(r["sell_price"]),
                buy_time=datetime.fromisoformat(r["buy_time"]),
                bottom_price=float(r["bottom_price"]),
                btc_price_at_buy=(
                    float(r["btc_price_at_buy"]) if r["btc_price_at_buy"] is not None else None
                ),
                message_ids={
                    str(k): int(v)
                    for k, v in json.loads(r["message_ids_json"] or "{}").items()
                },
            )

        return out

    def save_position(self, symbol: str, pos: PositionState) -> None:
        """
        UPSERT position (safe across restarts).
        """
        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT INTO position_state(
                    symbol, entry_prices_json, sell_price, buy_time, bottom_price,
                    btc_price_at_buy, message_ids_json, updated_at
                )
                VALUES (?,?,?,?,?,?,?,?)
                ON CONFLICT(symbol) DO UPDATE SET
                    entry_prices_json=excluded.entry_prices_json,
                    sell_price=excluded.sell_price,
                    buy_time=excluded.buy_time,
                    bottom_price=excluded.bottom_price,
                    btc_price_at_buy=excluded.btc_price_at_buy,
                    message_ids_json=excluded.message_ids_json,
                    updated_at=excluded.updated_at
                """,
                (
                    symbol.upper(),
                    json.dumps(list(pos.entry_prices)),
                    float(pos.sell_price),
                    pos.buy_time.isoformat(),
                    float(pos.bottom_price),
                    pos.btc_price_at_buy,
                    json.dumps(pos.message_ids),
                    utc_now_iso(),
                ),
            )

    def delete_position(self, symbol: str) -> None:
        with self.db.connect() as conn:
            conn.execute("DELETE FROM position_state WHERE symbol = ?", (symbol.upper(),))

    # ---------- COOLDOWNS ----------
    def load_cooldowns(self) -> Dict[str, datetime]:
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT symbol, last_notified_at FROM signal_cooldowns"
            ).fetchall()
        return {
            r["symbol"].upper(): datetime.fromisoformat(r["last_notified_at"])
            for r in rows
            if r["symbol"]
        }

    def save_cooldown(self, symbol: str, at: datetime) -> None:
        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT INTO signal_cooldowns(symbol, last_notified_at) VALUES (?,?)
                ON CONFLICT(symbol) DO UPDATE SET last_notified_at=excluded.last_notified_at
                """,
                (symbol.upper(), at.isoformat()),
            )
