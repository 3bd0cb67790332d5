import asyncio
import logging
import time
import traceback
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException

from app.core.config import settings
from app.exchange.binance.client import BinanceSpotClient
from app.notify.telegram import TelegramNotifier
from app.ops.context import cycle_scope, set_run_id
from app.persistence.audit import Audit
from app.persistence.csv_logs import buy_signal_log, rsi_log
from app.persistence.db import DB
from app.persistence.state_store import StateStore
from app.runner.runner import SignalRunner
from app.strategy.reference import ReferenceTracker

log = logging.getLogger("divergence.main")

app = FastAPI(title="RSI Divergence Alert Bot")
signal_runner_instance: SignalRunner | None = None

SENSITIVE_KEYS = {"TELEGRAM_BOT_TOKEN"}


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_runner() -> SignalRunner:
    client = BinanceSpotClient(
        base_url=settings.BINANCE_BASE_URL,
        timeout_s=settings.API_TIMEOUT_SECONDS,
        retries=settings.API_RETRIES,
        period=settings.RSI_PERIOD,
    )
    db = DB(settings.DB_PATH)
    return SignalRunner(
        client,
        TelegramNotifier(api_base=settings.TELEGRAM_API_BASE),
        ReferenceTracker(client, symbol=settings.REFERENCE_SYMBOL),
        settings=settings,
        state_store=StateStore(db),
        audit=Audit(db, jsonl_path=settings.AUDIT_JSONL_PATH),
        rsi_log=rsi_log(settings.RSI_LOG_FILE),
        trade_log=buy_signal_log(settings.BUY_SIGNAL_LOG_FILE),
    )


def get_runner() -> SignalRunner:
    global signal_runner_instance
    if signal_runner_instance is None:
        signal_runner_instance = build_runner()
    return signal_runner_instance


@dataclass
class RunnerServiceState:
    running: bool = False
    run_id: Optional[str] = None
    started_at: Optional[str] = None
    last_evaluate_at: Optional[str] = None
    last_target_check_at: Optional[str] = None
    evaluate_cycles: int = 0
    target_cycles: int = 0
    positions_closed: int = 0
    last_error: Optional[str] = None
    task: Optional[asyncio.Task] = None


runner_service = RunnerServiceState()


@app.on_event("startup")
async def _startup_validate_config():
    """Fail-fast config validation at startup."""
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        warnings = settings.validate_runtime()
        for w in warnings:
            log.warning("[CONFIG WARNING] %s", w)
    except ValueError as e:
        # Fail-closed: crash the service rather than running with a broken config
        log.error("%s", e)
        raise


@app.on_event("shutdown")
async def _shutdown_runner():
    runner_service.running = False
    task = runner_service.task
    if task is not None and not task.done():
        task.cancel()


def _evaluate_all(runner: SignalRunner) -> dict:
    return runner.run_once(settings.TELEGRAM_BOT_TOKEN, settings.TELEGRAM_CHAT_IDS)


def _check_targets(runner: SignalRunner) -> list:
    return runner.check_targets(settings.TELEGRAM_BOT_TOKEN, settings.TELEGRAM_CHAT_IDS)


async def runner_loop():
    """
    Evaluates every symbol each EVALUATE_INTERVAL_SECONDS and checks targets
    each TARGET_CHECK_INTERVAL_SECONDS. Blocking cycles run in a worker thread;
    an unhandled exception is recorded and the loop keeps going.
    """
    runner = get_runner()
    next_eval = 0.0
    next_check = 0.0

    while runner_service.running:
        now = time.monotonic()
        work = []
        if now >= next_eval:
            work.append("evaluate")
            next_eval = now + settings.EVALUATE_INTERVAL_SECONDS
        if now >= next_check:
            work.append("targets")
            next_check = now + settings.TARGET_CHECK_INTERVAL_SECONDS

        for kind in work:
            with cycle_scope(kind):
                try:
                    if kind == "evaluate":
                        await asyncio.to_thread(_evaluate_all, runner)
                        runner_service.last_evaluate_at = _utc_now_iso()
                        runner_service.evaluate_cycles += 1
                    else:
                        closed = await asyncio.to_thread(_check_targets, runner)
                        runner_service.last_target_check_at = _utc_now_iso()
                        runner_service.target_cycles += 1
                        runner_service.positions_closed += len(closed)
                    runner_service.last_error = None
                except asyncio.CancelledError:
                    raise
                except Exception:
                    err = traceback.format_exc()
                    runner_service.last_error = err
                    log.error("%s cycle failed:\n%s", kind, err)
                    runner.record_event("ERROR", None, "CYCLE_FAILED", {"kind": kind, "error": err})

        sleep_for = max(0.5, min(next_eval, next_check) - time.monotonic())
        await asyncio.sleep(sleep_for)


@app.get("/")
def root():
    return {
        "status": "ok",
        "exchange": "binance-spot-public",
        "symbols": len(settings.symbols),
        "telegram_token_loaded": bool(settings.TELEGRAM_BOT_TOKEN),
        "chats": len(settings.TELEGRAM_CHAT_IDS),
    }


@app.get("/config")
def config_snapshot():
    snap = settings.model_dump()
    for k in SENSITIVE_KEYS:
        if snap.get(k):
            snap[k] = "***"
    return snap


@app.post("/runner/start")
async def runner_start():
    if runner_service.running:
        return {"status": "already_running", "run_id": runner_service.run_id}

    runner_service.run_id = str(uuid.uuid4())
    set_run_id(runner_service.run_id)
    runner_service.running = True
    runner_service.started_at = _utc_now_iso()
    runner_service.last_error = None
    runner_service.task = asyncio.create_task(runner_loop())
    log.info("[RUN] started run_id=%s", runner_service.run_id)
    return {"status": "started", "run_id": runner_service.run_id}


@app.post("/runner/stop")
async def runner_stop():
    if not runner_service.running:
        return {"status": "not_running"}
    runner_service.running = False
    task = runner_service.task
    if task is not None and not task.done():
        task.cancel()
    log.info("[RUN] stopped run_id=%s", runner_service.run_id)
    return {"status": "stopped", "run_id": runner_service.run_id}


@app.get("/runner/status")
def runner_status():
    return {
        "running": runner_service.running,
        "run_id": runner_service.run_id,
        "started_at": runner_service.started_at,
        "last_evaluate_at": runner_service.last_evaluate_at,
        "last_target_check_at": runner_service.last_target_check_at,
        "evaluate_cycles": runner_service.evaluate_cycles,
        "target_cycles": runner_service.target_cycles,
        "positions_closed": runner_service.positions_closed,
        "last_error": runner_service.last_error,
    }


@app.post("/runner/evaluate")
def runner_evaluate(symbol: str):
    symbol = symbol.strip().upper()
    if not symbol:
        raise HTTPException(status_code=400, detail="symbol is required")
    runner = get_runner()
    # same cycle lock as the background loop, so the reference history has one writer
    with cycle_scope("evaluate"):
        out = runner.run_once(settings.TELEGRAM_BOT_TOKEN, settings.TELEGRAM_CHAT_IDS, symbols=[symbol])
    if out["skipped"]:
        return {"symbol": symbol, "action": "skipped", "reason": out["reason"]}
    return out["results"][0]


@app.post("/runner/targets")
def runner_targets():
    runner = get_runner()
    return {"closed": _check_targets(runner)}


@app.get("/runner/state")
def runner_state():
    return get_runner().snapshot()


@app.get("/runner/audit/tail")
def runner_audit_tail(limit: int = 50):
    runner = get_runner()
    if runner.audit is None:
        return {"events": []}
    return {"events": runner.audit.tail(limit=max(1, min(limit, 500)))}
