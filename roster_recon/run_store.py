from datetime import UTC

from sqlalchemy.orm import Session

from roster_recon.db_models import ErrorEntryRow, ReconciliationRun, RunLogEntry, TypeStatistics, utc_now
from roster_recon.schemas import (
    Actor,
    EntityType,
    ErrorEntry,
    LogEntry,
    RunResult,
    RunStatistics,
    RunStatus,
)


def get_run(db: Session, run_id: int) -> ReconciliationRun | None:
    return db.get(ReconciliationRun, run_id)


def create_run(db: Session, *, trigger_source: str) -> ReconciliationRun:
    run = ReconciliationRun(trigger_source=trigger_source, status="queued")
    db.add(run)
    db.commit()
    db.refresh(run)
    return run


def mark_run_running(db: Session, run: ReconciliationRun) -> None:
    run.status = "running"
    run.started_at = utc_now()
    run.error = None
    db.commit()


def _store_result(db: Session, run: ReconciliationRun, result: RunResult) -> None:
    if result.actor is not None:
        run.actor_name = result.actor.name
        run.actor_role = result.actor.role

    for position, (entity_type, stats) in enumerate(result.stats_by_type.items()):
        db.add(
            TypeStatistics(
                run=run,
                position=position,
                entity_type=entity_type.value,
                total=stats.total,
                updated=stats.updated,
                skipped=stats.skipped,
                errors=stats.errors,
            )
        )
    for position, entry in enumerate(result.errors):
        db.add(
            ErrorEntryRow(
                run=run,
                position=position,
                entity_type=entry.entity_type.value,
                record_id=entry.id,
                name=entry.name,
                message=entry.message,
            )
        )
    for position, log_entry in enumerate(result.log):
        db.add(
            RunLogEntry(
                run=run,
                position=position,
                logged_at=log_entry.timestamp.astimezone(UTC).replace(tzinfo=None),
                message=log_entry.message,
            )
        )


def mark_run_finished(db: Session, run: ReconciliationRun, result: RunResult) -> None:
    _store_result(db, run, result)
    run.status = result.status.value
    run.completed_at = utc_now()
    run.error = None
    db.commit()


def mark_run_failed(db: Session, run: ReconciliationRun, *, error: str, partial_result: RunResult | None = None) -> None:
    # Fatal aborts keep whatever was reconciled before the failing fetch.
    if partial_result is not None:
        _store_result(db, run, partial_result)
    run.status = "failed"
    run.error = error
    run.completed_at = utc_now()
    db.commit()


def load_run_result(db: Session, run_id: int) -> RunResult | None:
    run = get_run(db, run_id)
    if run is None:
        return None

    status = RunStatus(run.status)
    actor = Actor(name=run.actor_name, role=run.actor_role or "") if run.actor_name else None
    return RunResult(
        stats_by_type={
            EntityType(row.entity_type): RunStatistics(
                total=row.total,
                updated=row.updated,
                skipped=row.skipped,
                errors=row.errors,
            )
            for row in run.type_statistics
        },
        errors=[
            ErrorEntry(
                entity_type=EntityType(row.entity_type),
                id=row.record_id,
                name=row.name,
                message=row.message,
            )
            for row in run.error_entries
        ],
        log=[LogEntry(timestamp=row.logged_at.replace(tzinfo=UTC), message=row.message) for row in run.log_entries],
        status=status,
        actor=actor,
    )
