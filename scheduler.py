import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session, sessionmaker

from config import Settings
from database import session_scope
from recurrence import local_now
from services import ReminderService


logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self, settings: Settings, session_factory: sessionmaker[Session]) -> None:
        self.settings = settings
        self.session_factory = session_factory
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> int:
        logger.info(f"scheduler_run: source={source}")
        with session_scope(self.session_factory) as session:
            reminders = ReminderService(session, timezone=self.settings.timezone)
            count = reminders.dispatch_due(now=local_now(self.settings.timezone))
        logger.info(f"scheduler_run: source={source} reminders_dispatched={count}")
        return count

    def start(self) -> None:
        self._run_job("startup")

        trigger = IntervalTrigger(minutes=self.settings.reminder_interval_minutes)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["interval"],
            id="reminders_dispatch",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info(
            "Scheduler started with reminder dispatch every "
            f"{self.settings.reminder_interval_minutes} minutes"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
