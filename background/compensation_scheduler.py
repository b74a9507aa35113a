# background/compensation_scheduler.py
"""
Compensation Scheduler - period closes and housekeeping.
Uses APScheduler for task scheduling.
"""
import logging
from datetime import datetime, timezone
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import Config
from core.db import get_db_session_ctx
from compensation.services.matching_bonus_service import MatchingBonusService
from compensation.types import Period
from compensation.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


class CompensationScheduler:
    """
    Background scheduler for matching bonus period closes.

    Jobs:
    - Daily close: every day at 00:00
    - Weekly close: Monday at 00:05
    - Monthly close: 1st of month at 00:10
    - Period rollover and carry-forward purge: every hour

    Every close matches whatever unmatched volume and carry exist at that
    moment; the period only labels the run and its ledger references. The
    daily close at 00:00 has usually consumed the legs already, so the
    weekly and monthly closes mostly pay volume recorded in the minutes
    since, plus carry-forward a fresh weekly or monthly window frees up.
    """

    def __init__(self, timezone_name: Optional[str] = None):
        self.isRunning = False

        self.scheduler = AsyncIOScheduler(
            timezone=timezone_name or Config.get(Config.SCHEDULER_TIMEZONE, "UTC"),
            job_defaults={
                'coalesce': True,  # Combine missed runs into one
                'max_instances': 1,  # Only one instance of each job at a time
                'misfire_grace_time': 300
            }
        )

        self.stats = {
            "tasksExecuted": 0,
            "errors": 0,
            "lastError": None,
            "startedAt": None,
            "lastExecutedAt": None,
            "lastClose": {},
        }

    def registerJobs(self):
        """Add all jobs to the APScheduler instance (idempotent)."""
        self.scheduler.add_job(
            func=self._safe_close_wrapper,
            args=[Period.DAY],
            trigger=CronTrigger(hour=0, minute=0),
            id='daily_close',
            name='Daily matching close (00:00)',
            replace_existing=True
        )
        logger.info("✓ Job registered: Daily close (00:00)")

        self.scheduler.add_job(
            func=self._safe_close_wrapper,
            args=[Period.WEEK],
            trigger=CronTrigger(day_of_week='mon', hour=0, minute=5),
            id='weekly_close',
            name='Weekly matching close (Mon 00:05)',
            replace_existing=True
        )
        logger.info("✓ Job registered: Weekly close (Mon 00:05)")

        self.scheduler.add_job(
            func=self._safe_close_wrapper,
            args=[Period.MONTH],
            trigger=CronTrigger(day=1, hour=0, minute=10),
            id='monthly_close',
            name='Monthly matching close (1st 00:10)',
            replace_existing=True
        )
        logger.info("✓ Job registered: Monthly close (1st 00:10)")

        self.scheduler.add_job(
            func=self._safe_housekeeping_wrapper,
            trigger=IntervalTrigger(hours=1),
            id='housekeeping',
            name='Period rollover and carry-forward purge',
            replace_existing=True
        )
        logger.info("✓ Job registered: Housekeeping (every 1 hour)")

    async def start(self):
        """Start scheduler with all jobs."""
        if self.isRunning:
            logger.warning("Compensation Scheduler already running")
            return

        logger.info("Starting Compensation Scheduler")

        self.isRunning = True
        self.stats["startedAt"] = datetime.now(timezone.utc)

        self.registerJobs()
        self.scheduler.start()

        logger.info(f"✅ Compensation Scheduler started, active jobs: {len(self.scheduler.get_jobs())}")

    async def stop(self):
        """Stop scheduler gracefully."""
        if not self.isRunning:
            return

        logger.info("Stopping Compensation Scheduler...")
        self.isRunning = False

        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)

        logger.info("✓ Compensation Scheduler stopped")

    # ═══════════════════════════════════════════════════════════════════
    # SAFE WRAPPERS (error handling for APScheduler jobs)
    # ═══════════════════════════════════════════════════════════════════

    async def _safe_close_wrapper(self, period: Period):
        try:
            await self.executePeriodClose(period)
        except Exception as e:
            logger.error(f"Error in {period.value} close job: {e}", exc_info=True)
            self.stats["errors"] += 1
            self.stats["lastError"] = str(e)

    async def _safe_housekeeping_wrapper(self):
        try:
            await self.executeHousekeeping()
        except Exception as e:
            logger.error(f"Error in housekeeping job: {e}", exc_info=True)
            self.stats["errors"] += 1
            self.stats["lastError"] = str(e)

    # ═══════════════════════════════════════════════════════════════════
    # TASKS
    # ═══════════════════════════════════════════════════════════════════

    async def executePeriodClose(self, period: Period) -> dict:
        """
        Roll over finished windows, then run matching for every eligible node.

        `period` does not select volume: a weekly or monthly close right after
        the daily one finds the legs the daily run left, usually nothing.
        """
        logger.info(f"Executing {period.value} close at {timeMachine.now.isoformat()}")

        with get_db_session_ctx() as session:
            service = MatchingBonusService(session)
            await service.resetExpiredPeriods()
            summary = await service.runMatchingForAll(period)

        if summary["errors"]:
            logger.error(
                f"{period.value} close: {len(summary['errors'])} nodes halted: "
                f"{[e['nodeId'] for e in summary['errors']]}"
            )

        self.stats["tasksExecuted"] += 1
        self.stats["lastExecutedAt"] = datetime.now(timezone.utc)
        self.stats["lastClose"][period.value] = {
            "at": timeMachine.now.isoformat(),
            "processed": summary["processed"],
            "matched": summary["matched"],
            "totalPayout": str(summary["totalPayout"]),
            "errors": len(summary["errors"]),
        }
        return summary

    async def executeHousekeeping(self) -> dict:
        """Roll over finished windows and drop expired carry-forward."""
        with get_db_session_ctx() as session:
            service = MatchingBonusService(session)
            reset = await service.resetExpiredPeriods()
            purged = await service.purgeExpiredCarryForward()

        self.stats["tasksExecuted"] += 1
        self.stats["lastExecutedAt"] = datetime.now(timezone.utc)
        return {"countersReset": reset, "carryForwardPurged": purged}

    def getStatus(self) -> dict:
        """Get scheduler status."""
        jobs_info = []
        if self.scheduler.running:
            for job in self.scheduler.get_jobs():
                jobs_info.append({
                    "id": job.id,
                    "name": job.name,
                    "next_run": job.next_run_time.isoformat() if job.next_run_time else None
                })

        return {
            "isRunning": self.isRunning,
            "schedulerRunning": self.scheduler.running,
            "currentTime": timeMachine.now.isoformat(),
            "isTestMode": timeMachine.isTestMode,
            "stats": self.stats,
            "jobs": jobs_info
        }


# Global scheduler instance (created by the entry point)
scheduler: Optional[CompensationScheduler] = None
