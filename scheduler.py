import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import sessionmaker

from config import Settings
from database import session_scope
from recurrence import RecurringEngine

logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self, session_factory: sessionmaker, settings: Settings) -> None:
        self.session_factory = session_factory
        self.interval_minutes = settings.scheduler_interval_minutes
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def run_job(self, source: str = "manual") -> int:
        logger.info(f"scheduler_run: source={source}")
        with session_scope(self.session_factory) as session:
            fired = RecurringEngine(session).apply_due()
        logger.info(f"scheduler_run: source={source} fired={len(fired)}")
        return len(fired)

    def start(self) -> None:
        self.run_job("startup")

        trigger = IntervalTrigger(minutes=self.interval_minutes)
        self.scheduler.add_job(
            self.run_job,
            trigger,
            args=["interval"],
            id="recurring_catch_up",
            replace_existing=True,
            misfire_grace_time=300,
            coalesce=True,
            max_instances=1,
        )

        self.scheduler.start()
        logger.info(
            f"Scheduler started with a {self.interval_minutes} minute recurring catch-up"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
