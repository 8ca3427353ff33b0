from __future__ import annotations

import inspect
from typing import TYPE_CHECKING, Any, Dict, Protocol

from utils.logger import BotLogger

if TYPE_CHECKING:
    from core.alerts import TriggeredAlert
    from core.decision_engine import Decision


class AuditSink(Protocol):
    async def log_decision(self, memo: Dict[str, Any]) -> None: ...

    async def log_heartbeat(self, summary: Dict[str, Any]) -> None: ...


class NotificationSink(Protocol):
    async def notify_decision(self, decision: "Decision") -> bool: ...

    async def notify_alert(self, alert: "TriggeredAlert") -> bool: ...


class LoggingAuditSink:
    """Audit trail that only writes structured log lines."""

    def __init__(self, logger: BotLogger | None = None):
        self.logger = logger or BotLogger(__name__)

    async def log_decision(self, memo: Dict[str, Any]) -> None:
        self.logger.info(
            "decision",
            topic=memo.get("topic"),
            action=memo.get("action"),
            confidence=memo.get("confidence"),
        )

    async def log_heartbeat(self, summary: Dict[str, Any]) -> None:
        self.logger.info("heartbeat", **summary)


async def _call(method, *args) -> Any:
    result = method(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


async def safe_audit_decision(audit: AuditSink | None, decision: "Decision", logger: BotLogger) -> bool:
    if audit is None:
        return False
    try:
        await _call(audit.log_decision, decision.to_memo())
        return True
    except Exception as exc:
        logger.warn("audit sink failed", kind="decision", topic=decision.topic, error=str(exc))
        return False


async def safe_audit_heartbeat(audit: AuditSink | None, summary: Dict[str, Any], logger: BotLogger) -> bool:
    if audit is None:
        return False
    try:
        await _call(audit.log_heartbeat, summary)
        return True
    except Exception as exc:
        logger.warn("audit sink failed", kind="heartbeat", error=str(exc))
        return False


async def safe_notify_decision(notify: NotificationSink | None, decision: "Decision", logger: BotLogger) -> bool:
    if notify is None:
        return False
    try:
        return bool(await _call(notify.notify_decision, decision))
    except Exception as exc:
        logger.warn("notification sink failed", kind="decision", topic=decision.topic, error=str(exc))
        return False


async def safe_notify_alert(notify: NotificationSink | None, alert: "TriggeredAlert", logger: BotLogger) -> bool:
    if notify is None:
        return False
    try:
        return bool(await _call(notify.notify_alert, alert))
    except Exception as exc:
        logger.warn("notification sink failed", kind="alert", key=alert.key, error=str(exc))
        return False


__all__ = [
    "AuditSink",
    "NotificationSink",
    "LoggingAuditSink",
    "safe_audit_decision",
    "safe_audit_heartbeat",
    "safe_notify_decision",
    "safe_notify_alert",
]
