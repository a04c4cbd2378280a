from __future__ import annotations

import logging
from typing import Any

import requests

from .config import Settings
from .models import TickRecord

logger = logging.getLogger(__name__)


def _tick_failure_count(record: TickRecord) -> int:
    return record.bot_failures + record.stock_failures + record.crypto_failures


def _format_cents(value: int) -> str:
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value) / 100:,.2f}"


def needs_attention(record: TickRecord) -> bool:
    return (
        _tick_failure_count(record) > 0
        or record.deadline_exceeded
        or bool(record.details.get("stage_failures"))
    )


def format_tick_digest(record: TickRecord) -> str:
    lines = [
        "⚠️ Market Tick Digest",
        f"🕒 tick #{record.tick_number} @ {record.timestamp.isoformat()}",
        (
            f"📈 stocks={record.stock_updates} (failed {record.stock_failures}) | "
            f"🪙 crypto={record.crypto_updates} (failed {record.crypto_failures})"
        ),
        (
            f"🤖 bot purchases={record.bot_purchases} (failed {record.bot_failures}) | "
            f"spent={_format_cents(record.total_budget_spent)}"
        ),
    ]
    stage_failures = record.details.get("stage_failures") or []
    if stage_failures:
        lines.append(f"❌ stages failed: {', '.join(str(stage) for stage in stage_failures)}")
    if record.deadline_exceeded:
        skipped = record.details.get("deadline_skipped", 0)
        lines.append(f"⏱️ deadline exceeded, {skipped} instruments kept last price")
    return "\n".join(lines)


class TelegramNotifier:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._session = requests.Session()

    def is_enabled(self) -> bool:
        return (
            self.settings.telegram_enabled
            and bool(self.settings.telegram_bot_token)
            and bool(self.settings.telegram_chat_id)
        )

    def notify_tick(self, record: TickRecord) -> str | None:
        if not self.is_enabled() or not needs_attention(record):
            return None
        status, _ = self._send_message(format_tick_digest(record))
        return status

    def notify_operational_alerts(self, messages: list[str]) -> list[str]:
        if not self.is_enabled() or not messages:
            return []
        statuses: list[str] = []
        for message in messages:
            status, _ = self._send_message(message)
            statuses.append(status)
        return statuses

    def _send_message(self, message: str) -> tuple[str, dict[str, Any]]:
        url = f"https://api.telegram.org/bot{self.settings.telegram_bot_token}/sendMessage"
        payload = {"chat_id": self.settings.telegram_chat_id, "text": message}
        try:
            response = self._session.post(url, json=payload, timeout=15)
            response.raise_for_status()
            body = response.json()
            if not isinstance(body, dict):
                return "sent", {"note": "non_dict_response"}
            return "sent", {"ok": bool(body.get("ok", True))}
        except requests.HTTPError as exc:
            status = exc.response.status_code if exc.response is not None else "unknown"
            logger.warning("telegram_send_failed status=%s", status)
            return "failed", {"error": f"http_{status}"}
        except requests.RequestException:
            logger.warning("telegram_send_failed", exc_info=True)
            return "failed", {"error": "request_exception"}
