from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
import logging
import threading

from roster_recon.errors import EntityFetchError, ReconciliationAbortedError, RetryExhaustedError
from roster_recon.ports import ConnectivityCheck, CurrentActor, EntitySource, EntityStore, Updater
from roster_recon.retry import run_with_retries
from roster_recon.rules import needs_update, normalize, validate
from roster_recon.schemas import (
    Actor,
    EntityType,
    ErrorEntry,
    LogEntry,
    PreflightReport,
    Record,
    RunResult,
    RunStatistics,
    RunStatus,
    TypeCheck,
)


logger = logging.getLogger(__name__)

DEFAULT_ENTITY_TYPES = (EntityType.STUDENT, EntityType.TEACHER)


def utc_now() -> datetime:
    return datetime.now(UTC)


def _is_retryable(exc: Exception) -> bool:
    # Malformed payloads do not recover on retry.
    return not isinstance(exc, (ValueError, TypeError))


class CancellationToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class RecordOutcome(str, Enum):
    UPDATED = "updated"
    SKIPPED = "skipped"
    INVALID = "invalid"
    FAILED = "failed"


@dataclass
class _TypeOutcome:
    entity_type: EntityType
    stats: RunStatistics = field(default_factory=RunStatistics)
    errors: list[ErrorEntry] = field(default_factory=list)
    log: list[LogEntry] = field(default_factory=list)


class MigrationOrchestrator:
    def __init__(
        self,
        source: EntitySource,
        updater: Updater,
        connectivity: ConnectivityCheck,
        actors: CurrentActor,
        *,
        entity_types: Sequence[EntityType] = DEFAULT_ENTITY_TYPES,
        fetch_retries: int = 0,
        retry_backoff_seconds: float = 0.0,
        type_workers: int = 1,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.source = source
        self.updater = updater
        self.connectivity = connectivity
        self.actors = actors
        self.entity_types = tuple(entity_types)
        self.fetch_retries = fetch_retries
        self.retry_backoff_seconds = retry_backoff_seconds
        self.type_workers = max(1, type_workers)
        self.clock = clock

    @classmethod
    def from_store(cls, store: EntityStore, **kwargs) -> "MigrationOrchestrator":
        return cls(store, store, store, store, **kwargs)

    def run_migration(self, cancel_token: CancellationToken | None = None) -> RunResult:
        token = cancel_token or CancellationToken()
        result = RunResult(stats_by_type={entity_type: RunStatistics() for entity_type in self.entity_types})
        self._log(result.log, "Starting data migration")

        result.actor = self._check_preconditions()
        self._log(result.log, f"Running migration as: {result.actor.name} ({result.actor.role})")

        try:
            for outcome in self._process_types(token):
                self._merge(result, outcome)
        except EntityFetchError as exc:
            result.status = RunStatus.FAILED
            self._log(result.log, f"Migration aborted: {exc}")
            exc.partial_result = result
            raise

        if token.cancelled:
            result.status = RunStatus.CANCELLED
            self._log(result.log, "Migration cancelled")
        else:
            self._log(result.log, "Migration completed")

        logger.info(
            "reconciliation run finished",
            extra={"status": result.status.value, "errors": len(result.errors)},
        )
        return result

    def check(self) -> PreflightReport:
        """Verify the store is reachable and validate one sample record per type without applying updates."""
        actor = self._check_preconditions()
        checks: list[TypeCheck] = []
        for entity_type in self.entity_types:
            records = self._fetch(entity_type)
            if not records:
                checks.append(TypeCheck(entity_type=entity_type, count=0))
                continue
            sample = records[0]
            checks.append(
                TypeCheck(
                    entity_type=entity_type,
                    count=len(records),
                    sample_id=sample.id,
                    sample_issues=validate(sample).issues,
                )
            )
        logger.info("preflight check passed", extra={"actor": actor.name, "types": len(checks)})
        return PreflightReport(actor=actor, checks=tuple(checks))

    def _check_preconditions(self) -> Actor:
        try:
            connected = self.connectivity.ping()
        except Exception as exc:
            logger.exception("connectivity check raised")
            raise ReconciliationAbortedError(
                "Cannot connect to backend. Please check your connection and login."
            ) from exc
        if not connected:
            raise ReconciliationAbortedError("Cannot connect to backend. Please check your connection and login.")

        try:
            actor = self.actors.current_actor()
        except Exception as exc:
            logger.exception("current actor lookup raised")
            raise ReconciliationAbortedError("Cannot get current user. Please login again.") from exc
        if actor is None:
            raise ReconciliationAbortedError("Cannot get current user. Please login again.")
        return actor

    def _process_types(self, token: CancellationToken) -> Iterable[_TypeOutcome]:
        abort = CancellationToken()
        if self.type_workers == 1 or len(self.entity_types) == 1:
            for entity_type in self.entity_types:
                yield self._process_type(entity_type, token, abort)
            return

        # Each worker owns one type's statistics; results merge in configured order.
        with ThreadPoolExecutor(max_workers=self.type_workers) as executor:
            futures = [
                executor.submit(self._process_type, entity_type, token, abort) for entity_type in self.entity_types
            ]
            first_error: EntityFetchError | None = None
            for future in futures:
                try:
                    outcome = future.result()
                except EntityFetchError as exc:
                    if first_error is None:
                        first_error = exc
                    continue
                # Types that ran alongside a failed fetch may have applied updates; keep their counts.
                yield outcome
            if first_error is not None:
                raise first_error

    def _process_type(
        self,
        entity_type: EntityType,
        token: CancellationToken,
        abort: CancellationToken,
    ) -> _TypeOutcome:
        outcome = _TypeOutcome(entity_type=entity_type)
        if token.cancelled or abort.cancelled:
            return outcome

        self._log(outcome.log, f"Fetching {entity_type.value} records")
        try:
            records = self._fetch(entity_type)
        except EntityFetchError:
            abort.cancel()
            raise
        outcome.stats.total = len(records)
        self._log(outcome.log, f"Found {len(records)} {entity_type.value} records")
        logger.info("fetched records", extra={"entity_type": entity_type.value, "count": len(records)})

        for record in records:
            if abort.cancelled:
                self._log(
                    outcome.log,
                    f"Stopped {entity_type.value} processing after a failed fetch with "
                    f"{outcome.stats.pending} records pending",
                )
                break
            if token.cancelled:
                self._log(
                    outcome.log,
                    f"Cancelled {entity_type.value} processing with {outcome.stats.pending} records pending",
                )
                break
            state = self._reconcile_record(record, outcome)
            logger.debug(
                "record reconciled",
                extra={"entity_type": entity_type.value, "record_id": record.id, "outcome": state.value},
            )

        self._log(
            outcome.log,
            "{entity_type} done: total={total} updated={updated} skipped={skipped} errors={errors}".format(
                entity_type=entity_type.value, **outcome.stats.to_dict()
            ),
        )
        return outcome

    def _fetch(self, entity_type: EntityType) -> list[Record]:
        try:
            return run_with_retries(
                lambda: list(self.source.fetch_all(entity_type)),
                max_retries=self.fetch_retries,
                backoff_seconds=self.retry_backoff_seconds,
                label=f"fetch {entity_type.value}",
                should_retry=_is_retryable,
            )
        except RetryExhaustedError as exc:
            raise EntityFetchError(
                f"Failed to fetch {entity_type.value} records: {exc.__cause__ or exc}",
                entity_type=entity_type,
            ) from exc

    def _reconcile_record(self, record: Record, outcome: _TypeOutcome) -> RecordOutcome:
        validation = validate(record)
        if not validation.is_valid:
            self._fail(record, outcome, f"Validation failed: {', '.join(validation.issues)}")
            return RecordOutcome.INVALID

        if not needs_update(record):
            outcome.stats.skipped += 1
            return RecordOutcome.SKIPPED

        try:
            self.updater.apply(record.entity_type, record.id, normalize(record))
        except Exception as exc:
            self._fail(record, outcome, str(exc) or "Unknown error")
            return RecordOutcome.FAILED

        outcome.stats.updated += 1
        self._log(outcome.log, f"Updated {record.entity_type.value}: {record.name} ({record.id})")
        return RecordOutcome.UPDATED

    def _fail(self, record: Record, outcome: _TypeOutcome, message: str) -> None:
        outcome.errors.append(
            ErrorEntry(entity_type=record.entity_type, id=record.id, name=record.name, message=message)
        )
        outcome.stats.errors += 1
        self._log(outcome.log, f"Error on {record.entity_type.value} {record.id}: {message}")
        logger.warning(
            "record reconciliation failed",
            extra={"entity_type": record.entity_type.value, "record_id": record.id, "error": message},
        )

    def _merge(self, result: RunResult, outcome: _TypeOutcome) -> None:
        result.stats_by_type[outcome.entity_type] = outcome.stats
        result.errors.extend(outcome.errors)
        result.log.extend(outcome.log)

    def _log(self, log: list[LogEntry], message: str) -> None:
        log.append(LogEntry(timestamp=self.clock(), message=message))
