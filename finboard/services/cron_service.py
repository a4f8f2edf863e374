"""
APScheduler-based CronService for materializing recurring transactions.

Runs `process_all_owners` once at startup and then daily at CRON_HOUR:CRON_MINUTE.
Each cursor move is a conditional write, so overlapping runs (or a user's
"create now" racing the job) never duplicate a transaction.
"""

import logging
from datetime import date, datetime

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from ..core import config
from . import recurring_service

logger = logging.getLogger("finboard.scheduler")


class CronService:
    """Background scheduler for recurring jobs."""

    def __init__(self, hour: int = config.CRON_HOUR, minute: int = config.CRON_MINUTE) -> None:
        self._scheduler: BackgroundScheduler | None = None
        self._hour = hour
        self._minute = minute
        self._daily_job_id = "process_recurring_daily"
        self._startup_job_id = "process_recurring_startup"

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> None:
        if self._scheduler is not None:
            logger.info("CronService already started; ignoring duplicate start.")
            return

        scheduler = BackgroundScheduler()

        # Immediate run on startup
        scheduler.add_job(
            self.run_once,
            id=self._startup_job_id,
            next_run_time=datetime.now(),
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=3600,
        )

        scheduler.add_job(
            self.run_once,
            id=self._daily_job_id,
            trigger=CronTrigger(hour=self._hour, minute=self._minute),
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=3600,
        )

        scheduler.start()
        self._scheduler = scheduler
        logger.info(
            "CronService started: startup and daily (%02d:%02d) recurring jobs scheduled.",
            self._hour,
            self._minute,
        )

    def stop(self) -> None:
        if self._scheduler is None:
            return
        try:
            self._scheduler.shutdown(wait=False)
            logger.info("CronService stopped.")
        finally:
            self._scheduler = None

    @staticmethod
    def run_once(as_of: date | None = None) -> int:
        """Process every owner's due rules; the wall clock is read here and nowhere deeper."""
        try:
            result = recurring_service.process_all_owners(as_of or date.today())
        except Exception:
            logger.exception("process_all_owners failed")
            return 0
        logger.info(
            "process_all_owners executed: created=%s conflicts=%s deactivated=%s",
            result.processed_count,
            result.conflicts,
            len(result.deactivated_rule_ids),
        )
        return result.processed_count
