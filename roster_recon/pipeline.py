from dataclasses import dataclass
from datetime import UTC, date, datetime
import logging
from pathlib import Path

from sqlalchemy.orm import Session, sessionmaker

from roster_recon.config import Settings
from roster_recon.errors import EntityFetchError, ReconciliationAbortedError
from roster_recon.jsonl_store import JsonlEntityStore
from roster_recon.orchestrator import CancellationToken, MigrationOrchestrator
from roster_recon.ports import EntityStore
from roster_recon.reports import write_exports
from roster_recon.run_store import (
    create_run,
    get_run,
    load_run_result,
    mark_run_failed,
    mark_run_finished,
    mark_run_running,
)
from roster_recon.schemas import Actor, PreflightReport, RunResult


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunOutcome:
    run_id: int
    trigger_source: str
    status: str
    result: RunResult | None
    error: str | None = None
    errors_path: str | None = None
    log_path: str | None = None


def build_store(settings: Settings) -> JsonlEntityStore:
    actor = Actor(name=settings.actor_name, role=settings.actor_role) if settings.actor_name else None
    return JsonlEntityStore(settings.data_dir, actor=actor)


class ReconciliationRunner:
    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker[Session],
        store: EntityStore | None = None,
    ) -> None:
        self.settings = settings
        self.session_factory = session_factory
        self.store = store if store is not None else build_store(settings)

    def build_orchestrator(self) -> MigrationOrchestrator:
        return MigrationOrchestrator.from_store(
            self.store,
            entity_types=self.settings.entity_types,
            fetch_retries=self.settings.fetch_retries,
            retry_backoff_seconds=self.settings.retry_backoff_seconds,
            type_workers=self.settings.type_workers,
        )

    def run(
        self,
        *,
        trigger_source: str = "manual",
        export: bool = False,
        cancel_token: CancellationToken | None = None,
    ) -> RunOutcome:
        with self.session_factory() as db:
            run = create_run(db, trigger_source=trigger_source)
            mark_run_running(db, run)

            try:
                result = self.build_orchestrator().run_migration(cancel_token)
            except Exception as exc:
                partial = exc.partial_result if isinstance(exc, EntityFetchError) else None
                error = str(exc) or exc.__class__.__name__
                mark_run_failed(db, run, error=error, partial_result=partial)
                if isinstance(exc, ReconciliationAbortedError):
                    logger.exception("reconciliation run aborted", extra={"run_id": run.id})
                else:
                    logger.exception("reconciliation run crashed", extra={"run_id": run.id})
                return RunOutcome(
                    run_id=run.id,
                    trigger_source=trigger_source,
                    status=run.status,
                    result=partial,
                    error=error,
                )

            mark_run_finished(db, run, result)
            logger.info("reconciliation run stored", extra={"run_id": run.id, "status": run.status})

        errors_path = log_path = None
        if export:
            errors_path, log_path = self._export(result)

        return RunOutcome(
            run_id=run.id,
            trigger_source=trigger_source,
            status=run.status,
            result=result,
            errors_path=errors_path,
            log_path=log_path,
        )

    def check(self) -> PreflightReport:
        return self.build_orchestrator().check()

    def export(self, run_id: int, *, on: date | None = None) -> tuple[str, str]:
        with self.session_factory() as db:
            run = get_run(db, run_id)
            if run is None:
                raise LookupError(f"reconciliation run not found: {run_id}")
            if run.status in ("queued", "running"):
                raise LookupError(f"reconciliation run has not finished: {run_id}")
            result = load_run_result(db, run_id)
        return self._export(result, on=on)

    def _export(self, result: RunResult, *, on: date | None = None) -> tuple[str, str]:
        export_date = on or datetime.now(UTC).date()
        errors_path, log_path = write_exports(result, Path(self.settings.output_dir), on=export_date)
        return str(errors_path), str(log_path)
