# app/core/config.py
from __future__ import annotations

import json
import logging
from typing import Any, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

log = logging.getLogger("divergence.config")


def _parse_list(v: Any, upper: bool = True) -> List[str]:
    """
    Accepts:
      - list: ["BTCUSDT","ETHUSDT"]
      - csv:  "BTCUSDT,ETHUSDT"
      - json: '["BTCUSDT","ETHUSDT"]'
    Returns trimmed items (uppercased unless upper=False).
    """
    if v is None:
        return []

    def norm(x: Any) -> str:
        s = str(x).strip()
        return s.upper() if upper else s

    if isinstance(v, (list, tuple)):
        return [norm(x) for x in v if str(x).strip()]
    s = str(v).strip()
    if not s:
        return []
    if s.startswith("["):
        try:
            arr = json.loads(s)
            return [norm(x) for x in arr if str(x).strip()]
        except Exception:
            # fall back to csv parse
            log.warning("could not json-decode list value, parsing as csv")
    return [norm(p) for p in s.split(",") if p.strip()]


class Settings(BaseSettings):
    """Runtime configuration loaded from .env / environment variables."""

    # enable_decoding=False keeps pydantic-settings from json-decoding list fields.
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        enable_decoding=False,
    )

    # --- Market data (public endpoints only) ---
    BINANCE_BASE_URL: str = "https://api.binance.com"
    API_RETRIES: int = 3
    API_TIMEOUT_SECONDS: float = 5.0

    # --- Symbols ---
    TRADE_SYMBOLS: List[str] = Field(default_factory=list)
    MAX_SYMBOLS: int = 50
    REFERENCE_SYMBOL: str = "BTCUSDT"

    # --- Signal ---
    RSI_PERIOD: int = 14
    RSI_THRESHOLD_15M: float = 10.0
    RSI_THRESHOLD_5M: float = 15.0
    RSI_THRESHOLD_1M: float = 25.0
    TARGET_PROFIT_PCT: float = 1.1
    REENTRY_DROP_PCT: float = 1.0
    COOLDOWN_MINUTES: int = 30

    # --- Telegram ---
    TELEGRAM_API_BASE: str = "https://api.telegram.org"
    TELEGRAM_BOT_TOKEN: str = ""
    TELEGRAM_CHAT_IDS: List[str] = Field(default_factory=list)

    # --- Driver cadence ---
    EVALUATE_INTERVAL_SECONDS: int = 60
    TARGET_CHECK_INTERVAL_SECONDS: int = 30

    # --- Output ---
    RSI_LOG_FILE: str = "./rsi_data.csv"
    BUY_SIGNAL_LOG_FILE: str = "./buy_signals.csv"
    DB_PATH: str = "data/bot.db"
    AUDIT_JSONL_PATH: str = "logs/audit.jsonl"
    LOG_LEVEL: str = "INFO"

    @field_validator("TRADE_SYMBOLS", mode="before")
    @classmethod
    def parse_trade_symbols(cls, v: Any) -> List[str]:
        return _parse_list(v)

    @field_validator("TELEGRAM_CHAT_IDS", mode="before")
    @classmethod
    def parse_chat_ids(cls, v: Any) -> List[str]:
        # chat ids can be negative numbers or @channel names; keep case
        return _parse_list(v, upper=False)

    def model_post_init(self, __context: Any) -> None:
        self.REFERENCE_SYMBOL = (self.REFERENCE_SYMBOL or "BTCUSDT").upper().strip()
        self.LOG_LEVEL = (self.LOG_LEVEL or "INFO").upper().strip()
        self.BINANCE_BASE_URL = self.BINANCE_BASE_URL.rstrip("/")
        self.TELEGRAM_API_BASE = self.TELEGRAM_API_BASE.rstrip("/")

    @property
    def symbols(self) -> List[str]:
        """Configured symbols, de-duplicated, capped at MAX_SYMBOLS."""
        seen = set()
        out: List[str] = []
        for s in self.TRADE_SYMBOLS:
            if s not in seen:
                seen.add(s)
                out.append(s)
        return out[: self.MAX_SYMBOLS]

    def validate_runtime(self) -> List[str]:
        """
        Fail-fast validation. Returns warnings (non-fatal).
        Raises ValueError for fatal misconfiguration.
        """
        errors: List[str] = []
        warnings: List[str] = []

        if self.RSI_PERIOD < 2:
            errors.append("RSI_PERIOD must be >= 2.")
        if self.API_RETRIES < 1:
            errors.append("API_RETRIES must be >= 1.")
        if self.API_TIMEOUT_SECONDS <= 0:
            errors.append("API_TIMEOUT_SECONDS must be > 0.")
        if self.TARGET_PROFIT_PCT <= 0:
            errors.append("TARGET_PROFIT_PCT must be > 0.")
        if not (0 < self.REENTRY_DROP_PCT < 100):
            errors.append("REENTRY_DROP_PCT must be between 0 and 100.")
        if self.COOLDOWN_MINUTES < 0:
            errors.append("COOLDOWN_MINUTES must be >= 0.")
        if self.MAX_SYMBOLS <= 0:
            errors.append("MAX_SYMBOLS must be > 0.")
        if self.EVALUATE_INTERVAL_SECONDS <= 0:
            errors.append("EVALUATE_INTERVAL_SECONDS must be > 0.")
        if self.TARGET_CHECK_INTERVAL_SECONDS <= 0:
            errors.append("TARGET_CHECK_INTERVAL_SECONDS must be > 0.")
        if self.LOG_LEVEL not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            errors.append(f"LOG_LEVEL '{self.LOG_LEVEL}' is not a logging level.")

        if not self.TRADE_SYMBOLS:
            warnings.append("TRADE_SYMBOLS is empty. Bot will have nothing to watch.")
        if len(self.TRADE_SYMBOLS) > self.MAX_SYMBOLS:
            warnings.append(
                f"TRADE_SYMBOLS has {len(self.TRADE_SYMBOLS)} entries; only the first "
                f"{self.MAX_SYMBOLS} (MAX_SYMBOLS) are watched."
            )
        if not self.TELEGRAM_BOT_TOKEN:
            warnings.append("TELEGRAM_BOT_TOKEN is empty. Signals will not be delivered.")
        if not self.TELEGRAM_CHAT_IDS:
            warnings.append("TELEGRAM_CHAT_IDS is empty. Signals will not be delivered.")

        if errors:
            msg = "Config validation failed:\n" + "\n".join([f"- {e}" for e in errors])
            raise ValueError(msg)

        return warnings


# Pydantic v2 + postponed annotations safety
Settings.model_rebuild()
settings = Settings()
