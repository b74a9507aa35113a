# compensation-core/worker.py
"""
Compensation worker - main entry point.
Registers event handlers and runs the period-close scheduler.
"""
import asyncio
import logging
import sys

from config import Config, ConfigurationError
from core.db import setup_database, dispose_engine
from background.compensation_scheduler import CompensationScheduler
from compensation.events.setup import (
    setup_compensation_event_handlers,
    teardown_compensation_event_handlers,
)

logger = logging.getLogger(__name__)


def configure_logging():
    logging.basicConfig(
        level=getattr(logging, Config.get(Config.LOG_LEVEL, "INFO"), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
        ]
    )


async def initialize_worker() -> CompensationScheduler:
    """
    Load configuration, prepare the database and start background jobs.

    Returns:
        Running CompensationScheduler
    """
    logger.info("=" * 60)
    logger.info("COMPENSATION WORKER INITIALIZATION")
    logger.info("=" * 60)

    # STEP 1: Database
    logger.info("💾 Setting up database...")
    setup_database()
    logger.info("✓ Database ready")

    # STEP 2: Event handlers
    logger.info("🎲 Setting up compensation event handlers...")
    setup_compensation_event_handlers()
    logger.info("✓ Event handlers registered")

    # STEP 3: Scheduler
    logger.info("🚀 Starting scheduler...")
    scheduler = CompensationScheduler()
    await scheduler.start()

    logger.info("✅ INITIALIZATION COMPLETE")
    return scheduler


async def main():
    """Main entry point."""
    scheduler = None
    try:
        scheduler = await initialize_worker()
        await asyncio.Event().wait()
    except asyncio.CancelledError:
        logger.info("⚠️ Worker cancelled")
    finally:
        if scheduler is not None:
            await scheduler.stop()
        teardown_compensation_event_handlers()
        dispose_engine()
        logger.info("👋 Worker shutdown complete")


if __name__ == '__main__':
    try:
        Config.initialize_from_env()
    except ConfigurationError as e:
        print(f"❌ Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    configure_logging()

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("⚠️ Worker stopped by user")
