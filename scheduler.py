import logging
from contextlib import AbstractContextManager
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from config import get_settings
from database import session_scope
from rollover import NO_OP, RolloverEngine, RolloverResult, format_rollover_summary


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

MONTHLY_JOB_ID = "rollover_monthly"
SAFETY_JOB_ID = "rollover_hourly_safety"


class SchedulerManager:
    def __init__(
        self,
        session_factory: Callable[[], AbstractContextManager[Session]] = session_scope,
    ) -> None:
        settings = get_settings()
        self.session_factory = session_factory
        self.rollover_hour = settings.rollover_hour
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def run_rollover(self, source: str = "manual") -> Optional[RolloverResult]:
        logger.info(f"rollover_run: source={source}")
        with self.session_factory() as session:
            result = RolloverEngine(session).run()
        if result is NO_OP:
            logger.info(f"rollover_run: source={source} result=no_op")
            return None
        logger.info(
            f"rollover_run: source={source} "
            f"processed={result.total_envelopes_processed}\n"
            f"{format_rollover_summary(result)}"
        )
        return result

    def start(self) -> None:
        # Catch up on a month missed while the process was down.
        self.run_rollover("startup")

        self.scheduler.add_job(
            self.run_rollover,
            CronTrigger(day=1, hour=self.rollover_hour, minute=5),
            args=["monthly_first"],
            id=MONTHLY_JOB_ID,
            replace_existing=True,
            misfire_grace_time=3600,
        )
        # No-op unless the monthly job was missed.
        self.scheduler.add_job(
            self.run_rollover,
            IntervalTrigger(hours=1),
            args=["hourly_safety_net"],
            id=SAFETY_JOB_ID,
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info(
            f"Scheduler started: monthly rollover on day 1 at "
            f"{self.rollover_hour:02d}:05 with hourly safety net"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
