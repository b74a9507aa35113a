# compensation/utils/time_machine.py
"""
Virtual time for testing and scheduled period closes.
Every timestamp the core stores or compares comes from here.
"""
from datetime import datetime, timezone
from typing import Optional
import logging

logger = logging.getLogger(__name__)


class TimeMachine:
    """Switchable clock: real UTC time, or a fixed virtual time for tests."""

    def __init__(self):
        self._virtualTime: Optional[datetime] = None

    @property
    def now(self) -> datetime:
        if self._virtualTime is not None:
            return self._virtualTime
        return datetime.now(timezone.utc)

    @property
    def isTestMode(self) -> bool:
        return self._virtualTime is not None

    @property
    def currentMonth(self) -> str:
        return self.now.strftime('%Y-%m')

    def setTime(self, dt: datetime):
        """Freeze time at dt (naive values are treated as UTC)."""
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        self._virtualTime = dt
        logger.info(f"Virtual time set to {dt.isoformat()}")

    def resetToRealTime(self):
        self._virtualTime = None
        logger.info("Time machine reset to real time")


timeMachine = TimeMachine()
