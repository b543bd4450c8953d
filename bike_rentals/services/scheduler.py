"""
APScheduler Service
Runs the hold expiry sweeper in the background
"""
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from bike_rentals.config import settings
from bike_rentals.services.sweeper import run_sweep

logger = logging.getLogger(__name__)

HOLD_SWEEP_JOB_ID = "hold_expiry_sweep"


class SchedulerService:
    """Service to manage background scheduler tasks"""

    def __init__(self, interval_seconds: int | None = None):
        self.interval_seconds = interval_seconds or settings.sweep_interval_seconds
        self.scheduler = BackgroundScheduler()
        self._setup_jobs()

    def _setup_jobs(self):
        # One sweep at a time; missed ticks collapse into the next
        self.scheduler.add_job(
            run_sweep,
            IntervalTrigger(seconds=self.interval_seconds),
            id=HOLD_SWEEP_JOB_ID,
            name="Cancel expired holds",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    def start(self):
        """Start the scheduler"""
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Scheduler started; sweeping holds every %ss", self.interval_seconds)

    def stop(self):
        """Stop the scheduler"""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")


# Global scheduler instance
_scheduler_service = None


def get_scheduler() -> SchedulerService:
    """Get or create scheduler instance"""
    global _scheduler_service
    if _scheduler_service is None:
        _scheduler_service = SchedulerService()
    return _scheduler_service


def start_scheduler():
    get_scheduler().start()


def stop_scheduler():
    get_scheduler().stop()
