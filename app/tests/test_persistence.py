import csv
import json
from datetime import datetime, timezone

from app.persistence.audit import Audit
from app.persistence.csv_logs import BUY_SIGNAL_LOG_HEADER, CsvLog, buy_signal_log, log_timestamp, rsi_log
from app.persistence.db import DB
from app.persistence.state_store import StateStore
from app.ops.context import cycle_scope
from app.runner.models import PositionState


def test_csv_header_written_once(tmp_path):
    path = tmp_path / "out" / "rsi.csv"
    log1 = rsi_log(str(path))
    log1.append(["2024-01-01 00:00:00", "SOLUSDT", 1.0, 2.0, 3.0, 4.0])
    rsi_log(str(path)).append(["2024-01-01 00:01:00", "SOLUSDT", 1.0, 2.0, 3.0, None])

    with open(path, newline="") as f:
        rows = list(csv.reader(f))
    assert rows[0][0] == "Timestamp"
    assert len(rows) == 3
    assert rows[2][-1] == ""


def test_buy_signal_header(tmp_path):
    path = tmp_path / "buy.csv"
    buy_signal_log(str(path))
    with open(path, newline="") as f:
        assert next(csv.reader(f)) == BUY_SIGNAL_LOG_HEADER


def test_csv_write_failure_is_not_raised(tmp_path):
    # a directory where the file should be
    (tmp_path / "busy.csv").mkdir()
    log = CsvLog(str(tmp_path / "busy.csv"), ["a"])
    assert log.append(["x"]) is False


def test_state_store_roundtrip_and_delete(tmp_path):
    store = StateStore(DB(str(tmp_path / "db" / "bot.db")))
    when = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    pos = PositionState(
        entry_prices=[98.0, 100.0],
        sell_price=101.1,
        buy_time=when,
        bottom_price=97.5,
        btc_price_at_buy=None,
        message_ids={"-100": 5},
    )
    store.save_position("solusdt", pos)
    store.save_cooldown("solusdt", when)

    loaded = store.load()
    assert loaded.positions["SOLUSDT"] == pos
    assert loaded.last_notified == {"SOLUSDT": when}

    pos.bottom_price = 96.0
    store.save_position("SOLUSDT", pos)
    assert store.load_positions()["SOLUSDT"].bottom_price == 96.0

    store.delete_position("SOLUSDT")
    assert store.load_positions() == {}
    # cooldowns expire naturally, they are never deleted
    assert "SOLUSDT" in store.load_cooldowns()


def test_audit_writes_db_and_jsonl(tmp_path):
    db = DB(str(tmp_path / "bot.db"))
    jsonl = tmp_path / "logs" / "audit.jsonl"
    audit = Audit(db, jsonl_path=str(jsonl))

    with cycle_scope("evaluate") as cycle_id:
        audit.event(event_type="SIGNAL", symbol="SOLUSDT", action="OPEN", details={"price": 100.0})

    events = audit.tail(limit=5)
    assert events[0]["action"] == "OPEN"
    assert events[0]["cycle_id"] == cycle_id
    assert events[0]["details"] == {"price": 100.0}

    lines = jsonl.read_text(encoding="utf-8").splitlines()
    assert json.loads(lines[-1])["symbol"] == "SOLUSDT"


def test_cycle_scope_tags_and_restores(tmp_path):
    from app.ops.context import get_cycle_id

    audit = Audit(DB(str(tmp_path / "bot.db")), jsonl_path=str(tmp_path / "a.jsonl"))
    with cycle_scope("targets") as cycle_id:
        assert cycle_id.startswith("targets-")
        audit.event(event_type="SIGNAL", action="TARGET_ACHIEVED")
    assert get_cycle_id() is None
    assert audit.tail(1)[0]["cycle_id"] == cycle_id


def test_log_timestamp_is_local_time():
    when = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert log_timestamp(when) == when.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def test_log_timestamp_defaults_to_now():
    before = datetime.now().replace(microsecond=0)
    stamp = datetime.strptime(log_timestamp(), "%Y-%m-%d %H:%M:%S")
    assert before <= stamp <= datetime.now()
