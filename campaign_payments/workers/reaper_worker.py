"""
Reaper background worker.

Calls CampaignReaper.run_once on a fixed interval: releases stalled
runs, executes due scheduled campaigns, expires split campaigns and
purges retired ones.
"""
import argparse
import asyncio
import signal
from typing import Any, Optional

import structlog

from campaign_payments.config import Settings, get_settings
from campaign_payments.core.orchestrator import CampaignOrchestrator
from campaign_payments.core.reaper import CampaignReaper
from campaign_payments.database.connection import close_db, get_session_factory, init_db
from campaign_payments.infrastructure.ledger import SQLAlchemyLedger
from campaign_payments.infrastructure.sql_store import SQLAlchemyCampaignStore
from campaign_payments.integrations.gateway import StripeGateway
from campaign_payments.monitoring.logging import setup_logging

logger = structlog.get_logger(__name__)


def build_reaper(settings: Optional[Settings] = None) -> CampaignReaper:
    """Wire a reaper against the configured database and Stripe."""
    settings = settings or get_settings()
    session_factory = get_session_factory()
    orchestrator = CampaignOrchestrator(
        store=SQLAlchemyCampaignStore(session_factory),
        gateway=StripeGateway(),
        ledger=SQLAlchemyLedger(session_factory),
        settings=settings,
    )
    return CampaignReaper(orchestrator)


async def run_reaper_cycle(reaper: CampaignReaper) -> bool:
    """
    Run one reaper pass.

    Returns:
        bool: False if the pass failed; the worker keeps running either way
    """
    try:
        await reaper.run_once()
    except Exception as e:
        logger.error("reaper_cycle_failed", error=str(e), exc_info=True)
        return False
    return True


async def start_reaper_worker(interval_seconds: Optional[float] = None, once: bool = False) -> None:
    """
    Start the reaper worker.

    Args:
        interval_seconds: Seconds between passes (settings default)
        once: Run a single pass and exit
    """
    settings = get_settings()
    setup_logging(settings)
    interval = interval_seconds or settings.reaper_interval_seconds

    logger.info("reaper_worker_starting", interval_seconds=interval, once=once)

    await init_db()
    reaper = build_reaper(settings)
    running = True

    def signal_handler(sig: int, frame: Any) -> None:
        nonlocal running
        logger.info("reaper_worker_shutdown_signal_received", signal=sig)
        running = False

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        while running:
            await run_reaper_cycle(reaper)
            if once:
                break

            # Sleep in short steps so a shutdown signal is noticed promptly
            remaining = interval
            while remaining > 0 and running:
                step = min(remaining, 1.0)
                await asyncio.sleep(step)
                remaining -= step
    finally:
        await close_db()
        logger.info("reaper_worker_stopped")


def main() -> None:
    parser = argparse.ArgumentParser(description="Campaign reaper worker")
    parser.add_argument(
        "--interval", type=float, default=None, help="Seconds between reaper passes"
    )
    parser.add_argument("--once", action="store_true", help="Run a single pass and exit")
    args = parser.parse_args()

    asyncio.run(start_reaper_worker(interval_seconds=args.interval, once=args.once))


if __name__ == "__main__":
    main()
