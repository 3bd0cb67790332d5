from fastapi.testclient import TestClient

import app.main as main_mod
from app.core.config import Settings
from app.runner.runner import SignalRunner
from app.strategy.reference import ReferenceTracker


def _install_runner(monkeypatch, market, notifier, clock):
    runner = SignalRunner(
        market,
        notifier,
        ReferenceTracker(market, clock=clock),
        settings=Settings(_env_file=None),
        clock=clock,
    )
    monkeypatch.setattr(main_mod, "signal_runner_instance", runner)
    return runner


def test_root_reports_status():
    r = TestClient(main_mod.app).get("/")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_config_masks_token(monkeypatch):
    monkeypatch.setattr(main_mod.settings, "TELEGRAM_BOT_TOKEN", "secret")
    body = TestClient(main_mod.app).get("/config").json()
    assert body["TELEGRAM_BOT_TOKEN"] == "***"


def test_evaluate_then_state_then_targets(monkeypatch, market, notifier, clock):
    _install_runner(monkeypatch, market, notifier, clock)
    monkeypatch.setattr(main_mod.settings, "TELEGRAM_BOT_TOKEN", "t")
    monkeypatch.setattr(main_mod.settings, "TELEGRAM_CHAT_IDS", ["9"])
    api = TestClient(main_mod.app)

    res = api.post("/runner/evaluate", params={"symbol": "solusdt"}).json()
    assert res["action"] == "opened"

    state = api.get("/runner/state").json()
    assert state["positions"]["SOLUSDT"]["entry_prices"] == [100.0]
    assert state["reference"]["last_price"] == 50000.0

    market.set_price(105.0)
    assert api.post("/runner/targets").json() == {"closed": ["SOLUSDT"]}
    assert api.get("/runner/state").json()["positions"] == {}


def test_status_when_idle():
    body = TestClient(main_mod.app).get("/runner/status").json()
    assert body["running"] is False
    assert body["evaluate_cycles"] >= 0


def test_audit_tail_without_audit(monkeypatch, market, notifier, clock):
    _install_runner(monkeypatch, market, notifier, clock)
    assert TestClient(main_mod.app).get("/runner/audit/tail").json() == {"events": []}


def test_evaluate_is_skipped_while_a_cycle_runs(monkeypatch, market, notifier, clock):
    runner = _install_runner(monkeypatch, market, notifier, clock)
    api = TestClient(main_mod.app)

    # stands in for a background cycle holding the lock
    with runner.cycle_guard() as ok:
        assert ok
        res = api.post("/runner/evaluate", params={"symbol": "ethusdt"}).json()

    assert res == {"symbol": "ETHUSDT", "action": "skipped", "reason": "CYCLE_BUSY"}
    assert runner.store.positions == {}
    assert len(runner.reference.history) == 0
    assert notifier.sent == []

    # lock released: the same request now runs
    assert api.post("/runner/evaluate", params={"symbol": "ethusdt"}).json()["action"] == "opened"
