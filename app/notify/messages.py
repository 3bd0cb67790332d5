from __future__ import annotations

from typing import List


def _fmt(x: float) -> str:
    # 0.00012300 -> 0.000123, 101.1 -> 101.1
    return f"{x:.8f}".rstrip("0").rstrip(".")


def _entries(entry_prices: List[float]) -> str:
    return "-".join(_fmt(p) for p in entry_prices)


def trade_link(symbol: str) -> str:
    return f"[Binance](https://www.binance.com/en/trade/{symbol})"


def buy_signal_message(symbol: str, entry_prices: List[float], sell_price: float) -> str:
    return (
        "📢 **Buy Signal**\n"
        f"💎 Token: #{symbol}\n"
        f"💰 Entry Prices: {_entries(entry_prices)}\n"
        f"💰 Sell Price: {_fmt(sell_price)}\n"
        "🕒 Timeframes: 1m\n"
        f"💹 Trade Now on: {trade_link(symbol)}\n"
    )


def target_achieved_message(
    symbol: str,
    entry_prices: List[float],
    sell_price: float,
    bottom_price: float,
    percentage_drop: float,
    duration: str,
) -> str:
    return (
        "📢 **Buy Signal**\n"
        f"💎 Token: #{symbol}\n"
        f"💰 Entry Prices: {_entries(entry_prices)}\n"
        f"💰 Sell Price: {_fmt(sell_price)}\n"
        f"📉 Bottom Price: {_fmt(bottom_price)}\n"
        f"📉 Percentage Drop: {percentage_drop:.2f}%\n"
        "✅ Target Achieved\n"
        f"⏱️ Duration: {duration}\n"
        f"💹 Trade Now on: {trade_link(symbol)}\n"
    )
