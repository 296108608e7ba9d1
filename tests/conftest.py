from collections.abc import Generator
from pathlib import Path

import pytest

from factories import StepClock
from roster_recon.config import Settings
from roster_recon.database import build_session_factory
from roster_recon.pipeline import ReconciliationRunner
from roster_recon.schemas import EntityType


@pytest.fixture()
def clock() -> StepClock:
    return StepClock()


@pytest.fixture()
def temp_workspace(tmp_path: Path) -> Path:
    (tmp_path / "data" / "store").mkdir(parents=True, exist_ok=True)
    (tmp_path / "outputs").mkdir(parents=True, exist_ok=True)
    return tmp_path


@pytest.fixture()
def test_settings(temp_workspace: Path) -> Settings:
    return Settings(
        app_name="roster-recon",
        database_url=f"sqlite:///{temp_workspace / 'test.db'}",
        log_level="INFO",
        data_dir=str(temp_workspace / "data" / "store"),
        output_dir=str(temp_workspace / "outputs"),
        entity_types=(EntityType.STUDENT, EntityType.TEACHER),
        fetch_retries=1,
        retry_backoff_seconds=0,
        type_workers=1,
        actor_name="Root Admin",
        actor_role="super_admin",
        schedule_hour_utc=2,
        schedule_minute_utc=0,
    )


@pytest.fixture()
def runner(test_settings: Settings) -> Generator[ReconciliationRunner, None, None]:
    session_factory = build_session_factory(test_settings.database_url)
    yield ReconciliationRunner(test_settings, session_factory)
