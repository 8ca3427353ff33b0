from __future__ import annotations

import asyncio
import html
from typing import Any, Dict

import aiohttp

from core.alerts import TriggeredAlert
from core.decision_engine import Decision, format_decision
from utils.logger import BotLogger, format_context

API_URL = "https://api.telegram.org"


class TelegramNotifier:
    """Notification sink that posts decisions and alerts to a Telegram chat."""

    def __init__(
        self,
        token: str | None,
        chat_id: str | None,
        enabled: bool = False,
        session: aiohttp.ClientSession | None = None,
        logger: BotLogger | None = None,
    ):
        self.token = token
        self.chat_id = chat_id
        self.enabled = enabled and bool(token)
        self.logger = logger or BotLogger(__name__)
        self._session = session
        self._owns_session = session is None
        self._pending: set[asyncio.Task] = set()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def send_message(
        self,
        msg: str,
        chat_id: str | None = None,
        parse_mode: str | None = "HTML",
        disable_web_page_preview: bool = True,
    ) -> bool:
        if not self.enabled:
            return False
        target_chat = chat_id or self.chat_id
        if not target_chat:
            return False
        session = await self._ensure_session()
        url = f"{API_URL}/bot{self.token}/sendMessage"
        payload: Dict[str, Any] = {"chat_id": target_chat, "text": msg}
        if parse_mode:
            payload["parse_mode"] = parse_mode
        if disable_web_page_preview:
            payload["disable_web_page_preview"] = True
        try:
            async with session.post(url, json=payload) as response:
                if response.status != 200:
                    self.logger.warn("telegram send failed", status=response.status)
                    return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            self.logger.warn("telegram send exception", error=str(exc))
            return False
        return True

    async def notify_decision(self, decision: Decision) -> bool:
        text = html.escape(format_decision(decision))
        return await self.send_message(f"<b>Market intel</b>\n{text}")

    async def notify_alert(self, alert: TriggeredAlert) -> bool:
        label = alert.kind.upper()
        return await self.send_message(f"<b>{html.escape(label)}</b>\n{html.escape(alert.message)}")

    def forward_log(self, level: int, msg: str, context: Dict[str, Any]) -> None:
        """Log sink for ``BotLogger.bind_sink``; schedules the send on the running loop."""
        if not self.enabled:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        details = format_context(context)
        text = f"⚠️ {html.escape(msg)}" + (f"\n<code>{html.escape(details)}</code>" if details else "")
        task = loop.create_task(self.send_message(text))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def close(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        if self._session and self._owns_session:
            await self._session.close()
