from __future__ import annotations

import logging
from typing import Any, Optional

import requests

log = logging.getLogger("divergence.telegram")


class TelegramNotifier:
    """
    Thin Bot API wrapper: send a new message or edit an existing one.

    Never raises; a failed send returns None and a failed edit returns False so
    a broken chat never stops a cycle.
    """

    def __init__(
        self,
        api_base: str = "https://api.telegram.org",
        timeout_s: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_base = api_base.rstrip("/")
        self.timeout_s = timeout_s
        self.session = session or requests.Session()

    def _post(self, token: str, method: str, payload: dict) -> Any:
        r = self.session.post(
            f"{self.api_base}/bot{token}/{method}", json=payload, timeout=self.timeout_s
        )
        data = r.json()
        if r.status_code != 200 or not data.get("ok"):
            raise RuntimeError(
                f"Telegram {method} HTTP {r.status_code}: {data.get('description')}"
            )
        return data.get("result")

    def send(self, token: str, chat_id: str, text: str) -> Optional[int]:
        if not token or not chat_id:
            return None
        try:
            result = self._post(
                token,
                "sendMessage",
                {
                    "chat_id": chat_id,
                    "text": text,
                    "parse_mode": "Markdown",
                    "disable_web_page_preview": True,
                },
            )
            return int(result["message_id"])
        except Exception as e:
            log.warning("Telegram send to %s failed: %s", chat_id, e)
            return None

    def edit(self, token: str, chat_id: str, message_id: int, text: str) -> bool:
        if not token or not chat_id or message_id is None:
            return False
        try:
            self._post(
                token,
                "editMessageText",
                {
                    "chat_id": chat_id,
                    "message_id": message_id,
                    "text": text,
                    "parse_mode": "Markdown",
                    "disable_web_page_preview": True,
                },
            )
            return True
        except Exception as e:
            log.warning("Telegram edit of %s/%s failed: %s", chat_id, message_id, e)
            return False
