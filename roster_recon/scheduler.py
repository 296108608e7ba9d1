import logging
import threading

from apscheduler.schedulers.blocking import BlockingScheduler
from sqlalchemy.orm import Session, sessionmaker

from roster_recon.config import Settings
from roster_recon.orchestrator import CancellationToken
from roster_recon.pipeline import ReconciliationRunner, RunOutcome


logger = logging.getLogger(__name__)

JOB_ID = "daily_reconciliation"


class ReconciliationJob:
    """Scheduled reconciliation that can be cancelled while a run is in flight."""

    def __init__(self, settings: Settings, session_factory: sessionmaker[Session]) -> None:
        self.settings = settings
        self.session_factory = session_factory
        self._lock = threading.Lock()
        self._active: CancellationToken | None = None
        self._stopping = False

    def __call__(self) -> RunOutcome | None:
        with self._lock:
            if self._stopping:
                logger.info("scheduled reconciliation skipped; scheduler is stopping")
                return None
            token = CancellationToken()
            self._active = token

        try:
            runner = ReconciliationRunner(self.settings, self.session_factory)
            outcome = runner.run(trigger_source="scheduled", export=True, cancel_token=token)
        finally:
            with self._lock:
                self._active = None

        extra = {"run_id": outcome.run_id, "status": outcome.status}
        if outcome.status == "failed":
            logger.error("scheduled reconciliation failed", extra={**extra, "error": outcome.error})
        else:
            logger.info(
                "scheduled reconciliation finished",
                extra={**extra, "errors_path": outcome.errors_path, "log_path": outcome.log_path},
            )
        return outcome

    def cancel(self) -> None:
        with self._lock:
            self._stopping = True
            if self._active is not None:
                logger.warning("cancelling in-flight scheduled reconciliation")
                self._active.cancel()


def start_scheduler(settings: Settings, session_factory: sessionmaker[Session], *, run_now: bool = False) -> None:
    job = ReconciliationJob(settings, session_factory)
    scheduler = BlockingScheduler(timezone="UTC")
    # One pass at a time; missed firings collapse into a single catch-up run.
    scheduler.add_job(
        job,
        "cron",
        hour=settings.schedule_hour_utc,
        minute=settings.schedule_minute_utc,
        id=JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    logger.info(
        "scheduler started",
        extra={
            "schedule_hour_utc": settings.schedule_hour_utc,
            "schedule_minute_utc": settings.schedule_minute_utc,
            "entity_types": [entity_type.value for entity_type in settings.entity_types],
        },
    )

    if run_now:
        job()

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        job.cancel()
        scheduler.shutdown(wait=True)
        logger.info("scheduler stopped")
