import json
from pathlib import Path

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from factories import write_entities
from roster_recon.db_models import ErrorEntryRow, ReconciliationRun, RunLogEntry, TypeStatistics
from roster_recon.errors import UpdateError
from roster_recon.jsonl_store import JsonlEntityStore
from roster_recon.orchestrator import CancellationToken
from roster_recon.pipeline import ReconciliationRunner
from roster_recon.run_store import create_run, load_run_result, mark_run_running
from roster_recon.schemas import EntityType, RunStatus


def write_store(root: Path) -> Path:
    data_dir = root / "data" / "store"
    write_entities(
        data_dir,
        EntityType.STUDENT,
        [
            {"id": "S-1", "name": "Ann ", "email": "ann@x.com", "roll_number": "R1", "class_name": "5A", "is_active": True},
            {"id": "S-2", "name": "Ben", "email": "ben@x.com", "roll_number": "R2", "class_name": "5A", "is_active": True},
            {"id": "S-3", "name": "", "email": "bad-email", "roll_number": "R3", "class_name": "5B", "is_active": True},
        ],
    )
    write_entities(
        data_dir,
        EntityType.TEACHER,
        [
            {"id": "T-1", "name": "Tom", "email": " tom@x.com", "subject_ids": ["math"], "is_active": True},
        ],
    )
    return data_dir


def test_full_run_lifecycle_and_idempotency(runner: ReconciliationRunner, temp_workspace: Path) -> None:
    data_dir = write_store(temp_workspace)

    first = runner.run(export=True)
    second = runner.run()

    assert first.status == "completed"
    assert first.result is not None
    assert first.result.stats_by_type[EntityType.STUDENT].to_dict() == {
        "total": 3,
        "updated": 1,
        "skipped": 1,
        "errors": 1,
    }
    assert first.result.stats_by_type[EntityType.TEACHER].updated == 1

    assert second.status == "completed"
    assert second.run_id != first.run_id
    assert second.result is not None
    assert all(stats.updated == 0 for stats in second.result.stats_by_type.values())

    students = [json.loads(line) for line in (data_dir / "students.jsonl").read_text(encoding="utf-8").splitlines()]
    assert students[0]["name"] == "Ann"
    assert students[0]["father_name"] == ""
    teachers = [json.loads(line) for line in (data_dir / "teachers.jsonl").read_text(encoding="utf-8").splitlines()]
    assert teachers[0]["email"] == "tom@x.com"

    assert first.errors_path is not None and Path(first.errors_path).exists()
    assert first.log_path is not None and Path(first.log_path).exists()
    assert Path(first.errors_path).read_text(encoding="utf-8").splitlines()[0] == "Type,ID,Name,Error"

    with runner.session_factory() as db:
        run = db.execute(select(ReconciliationRun).where(ReconciliationRun.id == first.run_id)).scalar_one()
        assert run.status == "completed"
        assert run.actor_name == "Root Admin"
        assert run.completed_at is not None

        stats = db.execute(select(TypeStatistics).where(TypeStatistics.run_id == run.id)).scalars().all()
        assert sorted(row.entity_type for row in stats) == ["student", "teacher"]

        errors = db.execute(select(ErrorEntryRow).where(ErrorEntryRow.run_id == run.id)).scalars().all()
        assert [(row.entity_type, row.record_id) for row in errors] == [("student", "S-3")]

        log_rows = db.execute(select(RunLogEntry).where(RunLogEntry.run_id == run.id)).scalars().all()
        assert len(log_rows) == len(first.result.log)


def test_stored_run_round_trips_for_export(runner: ReconciliationRunner, temp_workspace: Path) -> None:
    write_store(temp_workspace)
    outcome = runner.run()
    assert outcome.result is not None

    with runner.session_factory() as db:
        stored = load_run_result(db, outcome.run_id)

    assert stored is not None
    assert stored.errors == outcome.result.errors
    assert stored.summary() == outcome.result.summary()
    assert [entry.message for entry in stored.log] == [entry.message for entry in outcome.result.log]

    errors_path, log_path = runner.export(outcome.run_id)
    assert Path(errors_path).name.startswith("migration-errors-")
    assert len(Path(errors_path).read_text(encoding="utf-8").splitlines()) == 2
    assert Path(log_path).read_text(encoding="utf-8").splitlines()[0].endswith("Starting data migration")


def test_missing_data_dir_marks_run_failed(runner: ReconciliationRunner, temp_workspace: Path) -> None:
    (temp_workspace / "data" / "store").rmdir()

    outcome = runner.run()

    assert outcome.status == "failed"
    assert outcome.result is None
    assert outcome.error is not None and "Cannot connect to backend" in outcome.error

    with runner.session_factory() as db:
        run = db.execute(select(ReconciliationRun).where(ReconciliationRun.id == outcome.run_id)).scalar_one()
        assert run.status == "failed"
        stats = db.execute(select(TypeStatistics).where(TypeStatistics.run_id == run.id)).scalars().all()
        assert stats == []


def test_corrupt_entity_file_aborts_and_keeps_partial_counts(
    runner: ReconciliationRunner, temp_workspace: Path
) -> None:
    data_dir = write_store(temp_workspace)
    (data_dir / "teachers.jsonl").write_text("{not json\n", encoding="utf-8")

    outcome = runner.run()

    assert outcome.status == "failed"
    assert outcome.result is not None
    assert outcome.result.stats_by_type[EntityType.STUDENT].total == 3

    with runner.session_factory() as db:
        stats = db.execute(
            select(TypeStatistics).where(
                TypeStatistics.run_id == outcome.run_id,
                TypeStatistics.entity_type == "student",
            )
        ).scalar_one()
        assert stats.updated == 1


def test_cancelled_run_is_stored_as_cancelled(runner: ReconciliationRunner, temp_workspace: Path) -> None:
    write_store(temp_workspace)
    token = CancellationToken()
    token.cancel()

    outcome = runner.run(cancel_token=token)

    assert outcome.status == "cancelled"
    assert outcome.result is not None
    assert all(stats.total == 0 for stats in outcome.result.stats_by_type.values())


def test_store_update_of_unknown_record_raises(temp_workspace: Path) -> None:
    data_dir = write_store(temp_workspace)
    store = JsonlEntityStore(data_dir)

    with pytest.raises(UpdateError, match="student not found: S-404"):
        store.apply(EntityType.STUDENT, "S-404", {"name": "Ghost"})


def test_failed_run_keeps_failed_status_when_loaded_and_exported(
    runner: ReconciliationRunner, temp_workspace: Path
) -> None:
    data_dir = write_store(temp_workspace)
    (data_dir / "teachers.jsonl").write_text("{not json\n", encoding="utf-8")
    outcome = runner.run()

    with runner.session_factory() as db:
        stored = load_run_result(db, outcome.run_id)

    assert stored is not None
    assert stored.status is RunStatus.FAILED
    assert stored.stats_by_type[EntityType.STUDENT].updated == 1
    assert stored.log[-1].message.startswith("Migration aborted: Failed to fetch teacher records")

    errors_path, log_path = runner.export(outcome.run_id)
    assert Path(errors_path).read_text(encoding="utf-8").splitlines()[1].startswith('"student","S-3"')
    assert "Migration aborted" in Path(log_path).read_text(encoding="utf-8")


def test_unexpected_error_marks_run_failed(
    monkeypatch, runner: ReconciliationRunner, temp_workspace: Path
) -> None:
    write_store(temp_workspace)

    class ExplodingOrchestrator:
        def run_migration(self, cancel_token=None):
            raise RuntimeError("boom")

    monkeypatch.setattr(runner, "build_orchestrator", lambda: ExplodingOrchestrator())

    outcome = runner.run()

    assert outcome.status == "failed"
    assert outcome.result is None
    assert outcome.error == "boom"
    with runner.session_factory() as db:
        run = db.execute(select(ReconciliationRun).where(ReconciliationRun.id == outcome.run_id)).scalar_one()
        assert run.status == "failed"
        assert run.error == "boom"
        assert run.completed_at is not None


def test_export_refuses_unknown_and_unfinished_runs(runner: ReconciliationRunner) -> None:
    with runner.session_factory() as db:
        run = create_run(db, trigger_source="manual")
        mark_run_running(db, run)

    with pytest.raises(LookupError, match="has not finished"):
        runner.export(run.id)
    with pytest.raises(LookupError, match="not found: 404"):
        runner.export(404)


def test_ledger_rows_require_an_existing_run(runner: ReconciliationRunner) -> None:
    with runner.session_factory() as db:
        db.add(
            TypeStatistics(
                run_id=9999,
                position=0,
                entity_type="student",
                total=0,
                updated=0,
                skipped=0,
                errors=0,
            )
        )
        with pytest.raises(IntegrityError):
            db.commit()
