# app/persistence/csv_logs.py
from __future__ import annotations

import csv
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Sequence

log = logging.getLogger("divergence.csv")

RSI_LOG_HEADER = ["Timestamp", "Symbol", "RSI_15m", "RSI_5m", "RSI_1m", "Current Price"]
BUY_SIGNAL_LOG_HEADER = [
    "Timestamp",
    "Symbol",
    "RSI_15m",
    "RSI_5m",
    "RSI_1m",
    "Buy Price",
    "Sell Price",
    "Duration",
    "Bottom Price",
    "Percentage Drop",
    "BTC Change",
    "BTC 30m Change",
]


def log_timestamp(now: Optional[datetime] = None) -> str:
    """Local wall-clock time; aware datetimes are converted first."""
    return (now or datetime.now()).astimezone().strftime("%Y-%m-%d %H:%M:%S")


class CsvLog:
    """
    Append-only CSV file. The header is written once when the file is created.
    Write failures are logged and swallowed.
    """

    def __init__(self, path: str, header: Sequence[str]):
        self.path = Path(path)
        self.header = list(header)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if not self.path.exists():
                with self.path.open("w", newline="", encoding="utf-8") as f:
                    csv.writer(f).writerow(self.header)
        except OSError as e:
            log.error("Error initializing log file %s: %s", self.path, e)

    def append(self, row: Sequence[Any]) -> bool:
        cells = ["" if v is None else v for v in row]
        try:
            with self.path.open("a", newline="", encoding="utf-8") as f:
                csv.writer(f).writerow(cells)
            return True
        except OSError as e:
            log.error("Error writing to %s: %s", self.path, e)
            return False


def rsi_log(path: str) -> CsvLog:
    return CsvLog(path, RSI_LOG_HEADER)


def buy_signal_log(path: str) -> CsvLog:
    return CsvLog(path, BUY_SIGNAL_LOG_HEADER)
