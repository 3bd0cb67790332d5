import pytest

from app.core.config import Settings


def _s(**kw):
    return Settings(_env_file=None, **kw)


def test_symbols_parsed_from_csv_and_json():
    assert _s(TRADE_SYMBOLS="solusdt, ethusdt,,").TRADE_SYMBOLS == ["SOLUSDT", "ETHUSDT"]
    assert _s(TRADE_SYMBOLS='["solusdt","xrpusdt"]').TRADE_SYMBOLS == ["SOLUSDT", "XRPUSDT"]


def test_chat_ids_keep_case():
    s = _s(TELEGRAM_CHAT_IDS="-100123, @MyChannel")
    assert s.TELEGRAM_CHAT_IDS == ["-100123", "@MyChannel"]


def test_symbols_deduplicated_and_capped():
    s = _s(TRADE_SYMBOLS="A,B,A,C", MAX_SYMBOLS=2)
    assert s.symbols == ["A", "B"]


def test_defaults_match_signal_rules():
    s = _s()
    assert (s.RSI_THRESHOLD_15M, s.RSI_THRESHOLD_5M, s.RSI_THRESHOLD_1M) == (10.0, 15.0, 25.0)
    assert s.RSI_PERIOD == 14
    assert s.COOLDOWN_MINUTES == 30
    assert s.API_RETRIES == 3
    assert s.REFERENCE_SYMBOL == "BTCUSDT"


@pytest.mark.parametrize(
    "overrides",
    [
        {"RSI_PERIOD": 1},
        {"API_RETRIES": 0},
        {"API_TIMEOUT_SECONDS": 0},
        {"TARGET_PROFIT_PCT": 0},
        {"REENTRY_DROP_PCT": 100},
        {"EVALUATE_INTERVAL_SECONDS": 0},
        {"LOG_LEVEL": "chatty"},
    ],
)
def test_fatal_misconfiguration_raises(overrides):
    s = _s(TRADE_SYMBOLS="SOLUSDT", **overrides)
    with pytest.raises(ValueError):
        s.validate_runtime()


def test_missing_telegram_is_warning_not_error():
    s = _s(TRADE_SYMBOLS="SOLUSDT", TELEGRAM_BOT_TOKEN="", TELEGRAM_CHAT_IDS="")
    warnings = s.validate_runtime()
    assert any("TELEGRAM_BOT_TOKEN" in w for w in warnings)
    assert any("TELEGRAM_CHAT_IDS" in w for w in warnings)


def test_env_is_read(monkeypatch):
    monkeypatch.setenv("TRADE_SYMBOLS", "dogeusdt")
    monkeypatch.setenv("COOLDOWN_MINUTES", "45")
    s = _s()
    assert s.TRADE_SYMBOLS == ["DOGEUSDT"]
    assert s.COOLDOWN_MINUTES == 45
