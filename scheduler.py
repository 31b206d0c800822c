import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select

from config import get_settings
from database import session_scope
from errors import NotFoundError
from models import LinkedAccount
from sync import SyncEngine


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self) -> None:
        self.settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=self.settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        logger.info(f"scheduler_run: source={source}")
        with session_scope() as session:
            owners = session.scalars(
                select(LinkedAccount.user_id)
                .where(LinkedAccount.sync_enabled.is_(True))
                .distinct()
            ).all()

        synced = updated = failures = 0
        for user_id in owners:
            with session_scope() as session:
                try:
                    result = SyncEngine(session, user_id).sync()
                except NotFoundError:
                    continue
            synced += result.synced
            updated += result.updated
            failures += len(result.errors)
        logger.info(
            f"scheduler_run: source={source} owners={len(owners)} synced={synced} "
            f"updated={updated} account_errors={failures}"
        )

    def start(self) -> None:
        if self.settings.auto_sync_hours <= 0:
            logger.info("Scheduler disabled (BUDGET_AUTO_SYNC_HOURS=0)")
            return

        trigger = IntervalTrigger(hours=self.settings.auto_sync_hours)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["interval"],
            id="bank_sync",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info(
            f"Scheduler started with bank sync every {self.settings.auto_sync_hours}h"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
