from datetime import UTC, datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


def utc_now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


class ReconciliationRun(Base):
    __tablename__ = "reconciliation_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    trigger_source: Mapped[str] = mapped_column(String(32), default="manual")
    status: Mapped[str] = mapped_column(String(32), default="queued")
    actor_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    actor_role: Mapped[str | None] = mapped_column(String(64), nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    type_statistics: Mapped[list["TypeStatistics"]] = relationship(
        back_populates="run", cascade="all, delete-orphan", order_by="TypeStatistics.position"
    )
    error_entries: Mapped[list["ErrorEntryRow"]] = relationship(
        back_populates="run", cascade="all, delete-orphan", order_by="ErrorEntryRow.position"
    )
    log_entries: Mapped[list["RunLogEntry"]] = relationship(
        back_populates="run", cascade="all, delete-orphan", order_by="RunLogEntry.position"
    )


class TypeStatistics(Base):
    __tablename__ = "type_statistics"
    __table_args__ = (UniqueConstraint("run_id", "entity_type", name="uq_run_entity_type"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[int] = mapped_column(ForeignKey("reconciliation_runs.id", ondelete="CASCADE"), index=True)
    position: Mapped[int] = mapped_column(Integer)
    entity_type: Mapped[str] = mapped_column(String(32))
    total: Mapped[int] = mapped_column(Integer, default=0)
    updated: Mapped[int] = mapped_column(Integer, default=0)
    skipped: Mapped[int] = mapped_column(Integer, default=0)
    errors: Mapped[int] = mapped_column(Integer, default=0)

    run: Mapped[ReconciliationRun] = relationship(back_populates="type_statistics")


class ErrorEntryRow(Base):
    __tablename__ = "error_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[int] = mapped_column(ForeignKey("reconciliation_runs.id", ondelete="CASCADE"), index=True)
    position: Mapped[int] = mapped_column(Integer)
    entity_type: Mapped[str] = mapped_column(String(32))
    record_id: Mapped[str] = mapped_column(String(128))
    name: Mapped[str] = mapped_column(Text)
    message: Mapped[str] = mapped_column(Text)

    run: Mapped[ReconciliationRun] = relationship(back_populates="error_entries")


class RunLogEntry(Base):
    __tablename__ = "run_log_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[int] = mapped_column(ForeignKey("reconciliation_runs.id", ondelete="CASCADE"), index=True)
    position: Mapped[int] = mapped_column(Integer)
    logged_at: Mapped[datetime] = mapped_column(DateTime)
    message: Mapped[str] = mapped_column(Text)

    run: Mapped[ReconciliationRun] = relationship(back_populates="log_entries")
