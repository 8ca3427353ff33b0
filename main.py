from __future__ import annotations

import asyncio
import logging
import signal
from contextlib import suppress
from pathlib import Path
from typing import List, Optional

import aiohttp

from core.alerts import AlertChecker, AlertDeduper, PriceAlertRule
from core.arbitrage import ArbitrageDetector
from core.calibration import CalibrationLedger, CalibrationStore
from core.consensus import ConsensusAggregator
from core.decision_engine import DecisionEngine
from core.heartbeat import Heartbeat, SchedulerStateStore
from core.market_fetcher import MarketFetcher
from core.matching.matcher import SimilarityMatcher
from core.matching.synonyms import SynonymTable
from telegram.notifier import TelegramNotifier
from utils.config_loader import ConfigLoader, Settings
from utils.db import Database, SnapshotRecorder, SqliteAuditSink
from utils.db_migrations import apply_migrations
from utils.logger import BotLogger
from utils.ttl_cache import TTLCache
from venues import VenueAdapter
from venues.base_client import BaseVenueClient
from venues.manifold import DEFAULT_MANIFOLD_URL, ManifoldVenue
from venues.polymarket import DEFAULT_GAMMA_URL, PolymarketVenue
from venues.rate_limiter import RateLimiter

ADAPTERS = {
    "polymarket": (PolymarketVenue, DEFAULT_GAMMA_URL),
    "manifold": (ManifoldVenue, DEFAULT_MANIFOLD_URL),
}


def build_adapters(
    settings: Settings,
    session: aiohttp.ClientSession,
    logger: BotLogger,
) -> List[VenueAdapter]:
    adapters: List[VenueAdapter] = []
    for name in settings.enabled_venues():
        entry = ADAPTERS.get(name)
        if entry is None:
            logger.warn("no adapter bundled for venue; skipping", venue=name)
            continue
        cls, default_url = entry
        cfg = settings.venues[name]
        client: BaseVenueClient = cls(
            base_url=cfg.base_url or default_url,
            session=session,
            rate_limit=RateLimiter(cfg.requests_per_minute, cfg.burst),
            logger=logger,
            page_size=cfg.page_size,
        )
        adapters.append(client)
    return adapters


async def main() -> None:
    loader = ConfigLoader()
    settings = loader.load_settings()

    log_file: Optional[Path] = Path(settings.logging.file) if settings.logging.file else None
    logger = BotLogger("market_intel", level=getattr(logging, settings.logging.level, logging.INFO), log_file=log_file)

    await apply_migrations(settings.database, logger=logger)
    db = Database(settings.database, logger=logger)
    await db.init()

    notifier = TelegramNotifier(
        token=settings.telegram.token,
        chat_id=settings.telegram.chat_id,
        enabled=settings.telegram.enabled,
        logger=logger,
    )
    if settings.telegram.forward_errors and notifier.enabled:
        logger.bind_sink(notifier.forward_log)

    session = aiohttp.ClientSession()
    matcher = SimilarityMatcher(SynonymTable(), settings.matching)
    fetcher = MarketFetcher(
        build_adapters(settings, session, logger),
        cache=TTLCache(ttl=settings.storage.cache_ttl_sec),
        timeouts={name: cfg.timeout_sec for name, cfg in settings.venues.items()},
        logger=logger,
    )
    ledger = CalibrationLedger(
        CalibrationStore(settings.storage.calibration_path),
        settings.calibration,
        logger=logger,
    )
    heartbeat = Heartbeat(
        config=settings.heartbeat,
        fetcher=fetcher,
        detector=ArbitrageDetector(matcher, settings.arbitrage, settings.fees(), logger=logger),
        consensus=ConsensusAggregator(settings.consensus, settings.reliability(), logger=logger),
        engine=DecisionEngine(settings.decision, logger=logger),
        state_store=SchedulerStateStore(settings.storage.state_path, logger=logger),
        ledger=ledger,
        snapshots=SnapshotRecorder(db, settings.heartbeat.snapshot_retention_hours, logger=logger),
        alert_checker=AlertChecker(
            [PriceAlertRule.from_config(rule) for rule in settings.alerts.price_rules],
            matcher,
            logger=logger,
        ),
        deduper=AlertDeduper(settings.alerts.cooldowns_sec, logger=logger),
        audit=SqliteAuditSink(db, logger=logger),
        notify=notifier if notifier.enabled else None,
        logger=logger,
    )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_event.set)

    logger.info(
        "market intel started",
        venues=settings.enabled_venues(),
        topics=settings.heartbeat.topics,
        tick_sec=settings.heartbeat.tick_interval_sec,
    )
    try:
        await heartbeat.run_forever(stop_event)
    finally:
        logger.info("shutting down...")
        await notifier.close()
        await session.close()
        await db.close()


def run() -> None:
    with suppress(KeyboardInterrupt):
        asyncio.run(main())


if __name__ == "__main__":
    run()
