"""
Scheduler for Gallery Uploader.
Runs the upload dispatcher's tick on a fixed interval in a background thread.
"""

from datetime import datetime
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .logger import get_logger

logger = get_logger(__name__)

TICK_JOB_ID = 'upload_tick'


class TickScheduler:
    """Manages the periodic dispatcher job."""

    def __init__(self):
        """Initialize scheduler."""
        self.scheduler = BackgroundScheduler()
        self.is_running = False

    def add_tick_job(
        self,
        tick_func: Callable[[], None],
        interval_seconds: float = 1.0,
        run_immediately: bool = True
    ) -> None:
        """Schedule the dispatcher tick.

        Only one tick runs at a time; missed ticks are coalesced rather than
        replayed.

        Args:
            tick_func: Function to call on each tick
            interval_seconds: Tick interval in seconds
            run_immediately: Fire the first tick right away
        """
        kwargs = {}
        if run_immediately:
            kwargs['next_run_time'] = datetime.now()

        self.scheduler.add_job(
            func=tick_func,
            trigger=IntervalTrigger(seconds=interval_seconds),
            id=TICK_JOB_ID,
            name='Dispatch Upload Queue',
            max_instances=1,
            coalesce=True,
            replace_existing=True,
            **kwargs
        )

        logger.info(f"Scheduled upload dispatch every {interval_seconds}s")

    def start(self) -> None:
        """Start the scheduler."""
        if self.is_running:
            logger.warning("Scheduler already running")
            return

        self.scheduler.start()
        self.is_running = True

        jobs = self.scheduler.get_jobs()
        logger.debug(f"Scheduler started with {len(jobs)} jobs")

    def stop(self, wait: bool = True) -> None:
        """Stop the scheduler.

        Args:
            wait: Block until a running tick has returned
        """
        if not self.is_running:
            return

        self.scheduler.shutdown(wait=wait)
        self.is_running = False

        logger.debug("Scheduler stopped")
