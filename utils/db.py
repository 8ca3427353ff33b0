from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional
from urllib.parse import urlparse

import aiosqlite

from core.errors import PersistenceFailure
from core.models import NormalizedMarket
from utils.config_loader import DatabaseConfig
from utils.logger import BotLogger


def sqlite_path(dsn: str) -> str:
    """``sqlite+aiosqlite:///data/x.db`` -> ``data/x.db``; four slashes keep an absolute path."""
    if dsn.startswith("sqlite"):
        path = urlparse(dsn).path or "market_intel.db"
        if path.startswith("/"):
            path = path[1:]
        return path or "market_intel.db"
    return dsn


class Database:
    """Single aiosqlite connection guarded by a lock."""

    def __init__(self, config: DatabaseConfig, logger: BotLogger | None = None):
        self.config = config
        self.logger = logger or BotLogger(__name__)
        self.backend = config.backend.lower()
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        self.last_write_ts: Optional[datetime] = None
        self.connected: bool = False

    async def init(self) -> None:
        if not self.backend.startswith("sqlite"):
            raise ValueError(f"Unsupported database backend {self.backend}")
        path = sqlite_path(self.config.dsn)
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(path)
        self._conn.row_factory = aiosqlite.Row
        self.connected = True
        self.logger.info("database initialized", backend=self.backend, path=path)

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
        self.connected = False

    async def execute(self, sql: str, params: Dict[str, Any] | None = None) -> int:
        async with self._lock:
            if self._conn is None:
                raise PersistenceFailure("database not initialized")
            try:
                cursor = await self._conn.execute(sql, params or {})
                await self._conn.commit()
            except aiosqlite.Error as exc:
                raise PersistenceFailure("sqlite write failed", original=exc) from exc
            self.last_write_ts = datetime.now(tz=timezone.utc)
            return cursor.rowcount

    async def executemany(self, sql: str, rows: Iterable[Dict[str, Any]]) -> None:
        async with self._lock:
            if self._conn is None:
                raise PersistenceFailure("database not initialized")
            try:
                await self._conn.executemany(sql, list(rows))
                await self._conn.commit()
            except aiosqlite.Error as exc:
                raise PersistenceFailure("sqlite write failed", original=exc) from exc
            self.last_write_ts = datetime.now(tz=timezone.utc)

    async def fetchall(self, sql: str, params: Dict[str, Any] | None = None) -> List[Dict[str, Any]]:
        async with self._lock:
            if self._conn is None:
                raise PersistenceFailure("database not initialized")
            cursor = await self._conn.execute(sql, params or {})
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]


class SqliteAuditSink:
    """Append-only audit trail in the ``audit_log`` table."""

    def __init__(
        self,
        db: Database,
        logger: BotLogger | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.db = db
        self.logger = logger or BotLogger(__name__)
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

    async def _insert(self, kind: str, payload: Dict[str, Any], topic: str | None = None, action: str | None = None) -> None:
        await self.db.execute(
            """
            INSERT INTO audit_log (kind, topic, action, payload, created_at)
            VALUES (:kind, :topic, :action, :payload, :created_at)
            """,
            {
                "kind": kind,
                "topic": topic,
                "action": action,
                "payload": json.dumps(payload, default=str, ensure_ascii=False),
                "created_at": self._clock().isoformat(),
            },
        )

    async def log_decision(self, memo: Dict[str, Any]) -> None:
        await self._insert("decision", memo, topic=memo.get("topic"), action=memo.get("action"))

    async def log_heartbeat(self, summary: Dict[str, Any]) -> None:
        await self._insert("heartbeat", summary)

    async def recent(self, kind: str | None = None, limit: int = 50) -> List[Dict[str, Any]]:
        if kind:
            rows = await self.db.fetchall(
                "SELECT * FROM audit_log WHERE kind = :kind ORDER BY id DESC LIMIT :limit",
                {"kind": kind, "limit": limit},
            )
        else:
            rows = await self.db.fetchall(
                "SELECT * FROM audit_log ORDER BY id DESC LIMIT :limit",
                {"limit": limit},
            )
        for row in rows:
            row["payload"] = json.loads(row["payload"])
        return rows


class SnapshotRecorder:
    """Stores market price snapshots and prunes rows past the retention window."""

    def __init__(
        self,
        db: Database,
        retention_hours: float = 48.0,
        logger: BotLogger | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.db = db
        self.retention = timedelta(hours=retention_hours)
        self.logger = logger or BotLogger(__name__)
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

    async def record(self, markets: Iterable[NormalizedMarket]) -> int:
        captured_at = self._clock()
        rows = [
            {
                "venue": m.venue,
                "market_id": m.market_id,
                "title": m.title,
                "yes_price": m.yes_price,
                "no_price": m.no_price,
                "volume": m.volume,
                "liquidity": m.liquidity,
                "captured_at": captured_at.isoformat(),
            }
            for m in markets
        ]
        if rows:
            await self.db.executemany(
                """
                INSERT INTO price_snapshots (
                    venue, market_id, title, yes_price, no_price, volume, liquidity, captured_at
                ) VALUES (
                    :venue, :market_id, :title, :yes_price, :no_price, :volume, :liquidity, :captured_at
                )
                """,
                rows,
            )
        pruned = await self.prune(captured_at)
        self.logger.debug("price snapshot stored", rows=len(rows), pruned=pruned)
        return len(rows)

    async def prune(self, now: datetime | None = None) -> int:
        cutoff = (now or self._clock()) - self.retention
        return await self.db.execute(
            "DELETE FROM price_snapshots WHERE captured_at < :cutoff",
            {"cutoff": cutoff.isoformat()},
        )

    async def history(self, venue: str, market_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        return await self.db.fetchall(
            """
            SELECT venue, market_id, yes_price, no_price, volume, liquidity, captured_at
            FROM price_snapshots
            WHERE venue = :venue AND market_id = :market_id
            ORDER BY captured_at DESC
            LIMIT :limit
            """,
            {"venue": venue, "market_id": market_id, "limit": limit},
        )


__all__ = ["Database", "SqliteAuditSink", "SnapshotRecorder", "sqlite_path"]
