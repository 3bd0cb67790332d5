from datetime import datetime, timedelta, timezone

import pytest


@pytest.fixture(autouse=True)
def _test_env(monkeypatch, tmp_path):
    """
    Keep tests off the network and out of the working directory.
    """
    monkeypatch.setenv("TRADE_SYMBOLS", "SOLUSDT")
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "")
    monkeypatch.setenv("TELEGRAM_CHAT_IDS", "")
    monkeypatch.setenv("DB_PATH", str(tmp_path / "bot.db"))
    monkeypatch.setenv("RSI_LOG_FILE", str(tmp_path / "rsi_data.csv"))
    monkeypatch.setenv("BUY_SIGNAL_LOG_FILE", str(tmp_path / "buy_signals.csv"))


def rising(last=None, n=15, start=1.0):
    closes = [start + i for i in range(n)]
    if last is not None:
        closes[-1] = last
    return closes


def falling(n=15, start=100.0):
    return [start - i for i in range(n)]


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kw):
        self.now = self.now + timedelta(**kw)


class FakeMarket:
    """
    Default series fire a divergence signal:
    15m falling (RSI 0), 5m and 1m rising (RSI 100), last 1m close = 100.
    The RSI window is the first 14 points, so the last close is free.
    """

    def __init__(self):
        self.closes = {"15m": falling(), "5m": rising(), "1m": rising(last=100.0)}
        self.spot = 50000.0
        self.calls = []

    def set_price(self, price):
        self.closes["1m"] = rising(last=price)

    def fetch_closing_prices(self, symbol, interval):
        self.calls.append((symbol, interval))
        c = self.closes.get(interval)
        return list(c) if c is not None else None

    def fetch_spot_price(self, symbol):
        return self.spot


class FakeNotifier:
    def __init__(self, fail_chats=()):
        self.sent = []
        self.edits = []
        self.fail_chats = set(fail_chats)
        self._next_id = 0

    def send(self, token, chat_id, text):
        if chat_id in self.fail_chats:
            return None
        self._next_id += 1
        self.sent.append((chat_id, self._next_id, text))
        return self._next_id

    def edit(self, token, chat_id, message_id, text):
        self.edits.append((chat_id, message_id, text))
        return True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def market():
    return FakeMarket()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def series():
    return {"rising": rising, "falling": falling}


@pytest.fixture
def make_notifier():
    return FakeNotifier
