from dataclasses import dataclass
import os

from dotenv import load_dotenv

from roster_recon.schemas import EntityType


load_dotenv()


@dataclass(frozen=True)
class Settings:
    app_name: str
    database_url: str
    log_level: str
    data_dir: str
    output_dir: str
    entity_types: tuple[EntityType, ...]
    fetch_retries: int
    retry_backoff_seconds: float
    type_workers: int
    actor_name: str
    actor_role: str
    schedule_hour_utc: int
    schedule_minute_utc: int


def parse_entity_types(raw: str) -> tuple[EntityType, ...]:
    names = [part.strip().lower() for part in raw.split(",") if part.strip()]
    if not names:
        raise ValueError("ENTITY_TYPES must name at least one entity type")

    entity_types: list[EntityType] = []
    for name in names:
        try:
            entity_type = EntityType(name)
        except ValueError:
            raise ValueError(f"unknown entity type in ENTITY_TYPES: {name!r}") from None
        if entity_type not in entity_types:
            entity_types.append(entity_type)
    return tuple(entity_types)


def get_settings() -> Settings:
    return Settings(
        app_name=os.getenv("APP_NAME", "roster-recon"),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./reconciliation.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        data_dir=os.getenv("DATA_DIR", "./data/store"),
        output_dir=os.getenv("OUTPUT_DIR", "./outputs"),
        entity_types=parse_entity_types(os.getenv("ENTITY_TYPES", "student,teacher")),
        fetch_retries=int(os.getenv("FETCH_RETRIES", "1")),
        retry_backoff_seconds=float(os.getenv("RETRY_BACKOFF_SECONDS", "1")),
        type_workers=max(1, int(os.getenv("TYPE_WORKERS", "1"))),
        actor_name=os.getenv("ACTOR_NAME", ""),
        actor_role=os.getenv("ACTOR_ROLE", "admin"),
        schedule_hour_utc=int(os.getenv("SCHEDULE_HOUR_UTC", "2")),
        schedule_minute_utc=int(os.getenv("SCHEDULE_MINUTE_UTC", "0")),
    )
