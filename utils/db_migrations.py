from __future__ import annotations

from pathlib import Path
from typing import List

import aiosqlite

from utils.config_loader import DatabaseConfig
from utils.db import sqlite_path
from utils.logger import BotLogger


async def apply_migrations(
    config: DatabaseConfig,
    base_path: Path | None = None,
    logger: BotLogger | None = None,
) -> List[str]:
    """Apply pending ``migrations/sqlite/*.sql`` files in name order; returns the versions applied."""
    logger = logger or BotLogger("migrations")
    root = base_path or Path(__file__).resolve().parent.parent
    backend = config.backend.lower()
    if not backend.startswith("sqlite"):
        logger.warn("no migrations applied for backend", backend=backend)
        return []
    return await _apply_sqlite(config, root / "migrations" / "sqlite", logger)


async def _apply_sqlite(config: DatabaseConfig, path: Path, logger: BotLogger) -> List[str]:
    db_path = sqlite_path(config.dsn)
    if not path.exists():
        logger.warn("sqlite migrations path missing", path=str(path))
        return []
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    newly_applied: List[str] = []
    async with aiosqlite.connect(db_path) as conn:
        await conn.execute(
            "CREATE TABLE IF NOT EXISTS schema_migrations (version TEXT PRIMARY KEY, applied_at TEXT NOT NULL)"
        )
        applied = await _fetch_applied(conn)
        for file in _ordered_sql(path):
            version = file.stem
            if version in applied:
                continue
            await conn.executescript(file.read_text(encoding="utf-8"))
            await conn.execute(
                "INSERT INTO schema_migrations(version, applied_at) VALUES (?, datetime('now'))",
                (version,),
            )
            newly_applied.append(version)
        await conn.commit()
    logger.info("sqlite migrations applied", path=str(path), applied=newly_applied)
    return newly_applied


async def _fetch_applied(conn: aiosqlite.Connection) -> set[str]:
    cursor = await conn.execute("SELECT version FROM schema_migrations")
    rows = await cursor.fetchall()
    return {row[0] for row in rows}


def _ordered_sql(path: Path) -> List[Path]:
    return sorted([p for p in path.glob("*.sql") if p.is_file()], key=lambda p: p.name)
