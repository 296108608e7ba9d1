from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class EntityType(str, Enum):
    STUDENT = "student"
    TEACHER = "teacher"


class RunStatus(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class Actor:
    name: str
    role: str


@dataclass(frozen=True)
class Record:
    entity_type: EntityType
    id: str
    fields: Mapping[str, object]

    @property
    def name(self) -> str:
        value = self.fields.get("name")
        return "" if value is None else str(value)


@dataclass(frozen=True)
class ValidationResult:
    issues: tuple[str, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.issues


@dataclass
class RunStatistics:
    total: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0

    @property
    def resolved(self) -> int:
        return self.updated + self.skipped + self.errors

    @property
    def pending(self) -> int:
        return self.total - self.resolved

    @property
    def is_balanced(self) -> bool:
        return self.total == self.resolved

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
        }


@dataclass(frozen=True)
class ErrorEntry:
    entity_type: EntityType
    id: str
    name: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {
            "type": self.entity_type.value,
            "id": self.id,
            "name": self.name,
            "error": self.message,
        }


@dataclass(frozen=True)
class LogEntry:
    timestamp: datetime
    message: str

    def __str__(self) -> str:
        return f"[{self.timestamp.isoformat(timespec='seconds')}] {self.message}"


@dataclass(frozen=True)
class TypeCheck:
    entity_type: EntityType
    count: int
    sample_id: str | None = None
    sample_issues: tuple[str, ...] = ()


@dataclass(frozen=True)
class PreflightReport:
    actor: Actor
    checks: tuple[TypeCheck, ...]


@dataclass
class RunResult:
    stats_by_type: dict[EntityType, RunStatistics] = field(default_factory=dict)
    errors: list[ErrorEntry] = field(default_factory=list)
    log: list[LogEntry] = field(default_factory=list)
    status: RunStatus = RunStatus.COMPLETED
    actor: Actor | None = None

    def summary(self) -> dict[str, object]:
        return {
            "stats": {entity_type.value: stats.to_dict() for entity_type, stats in self.stats_by_type.items()},
            "errors": [entry.to_dict() for entry in self.errors],
        }
