# app/persistence/audit.py
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from app.ops.context import get_cycle_id, get_run_id
from app.persistence.db import DB, utc_now_iso

log = logging.getLogger("divergence.audit")


class Audit:
    """
    DB audit is the source of truth.
    Additionally mirrors events to a JSONL file for quick tailing.
    """

    def __init__(self, db: DB, jsonl_path: str = "logs/audit.jsonl"):
        self.db = db
        self.jsonl_path = Path(jsonl_path)

        # ensure logs folder + file exist
        try:
            self.jsonl_path.parent.mkdir(parents=True, exist_ok=True)
            self.jsonl_path.touch(exist_ok=True)
        except OSError as e:
            log.warning("audit jsonl unavailable (%s): %s", self.jsonl_path, e)

    def event(
        self,
        event_type: str,
        run_id: Optional[str] = None,
        cycle_id: Optional[str] = None,
        symbol: Optional[str] = None,
        action: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        run_id = run_id or get_run_id()
        cycle_id = cycle_id or get_cycle_id()
        payload = json.dumps(details or {}, ensure_ascii=False, default=str)

        # 1) DB (source of truth)
        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT INTO events(timestamp_utc, run_id, cycle_id, symbol, event_type, action, details_json)
                VALUES (?,?,?,?,?,?,?)
                """,
                (utc_now_iso(), run_id, cycle_id, symbol, event_type, action, payload),
            )

        # 2) JSONL mirror
        self._write_jsonl(
            {
                "timestamp_utc": utc_now_iso(),
                "event_type": event_type,
                "run_id": run_id,
                "cycle_id": cycle_id,
                "symbol": symbol,
                "action": action,
                "details": details or {},
            }
        )

    def tail(self, limit: int = 50) -> List[Dict[str, Any]]:
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM events ORDER BY id DESC LIMIT ?", (int(limit),)
            ).fetchall()
        out = []
        for r in rows:
            d = dict(r)
            try:
                d["details"] = json.loads(d.pop("details_json") or "{}")
            except ValueError:
                d["details"] = {}
            out.append(d)
        return out

    def _write_jsonl(self, obj: Dict[str, Any]) -> None:
        try:
            self.jsonl_path.parent.mkdir(parents=True, exist_ok=True)
            with self.jsonl_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(obj, ensure_ascii=False, default=str) + "\n")
        except OSError as e:
            # never break a cycle because the audit mirror write failed
            log.warning("audit jsonl write failed: %s", e)
