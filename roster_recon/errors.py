from roster_recon.schemas import EntityType, RunResult


class ReconciliationError(RuntimeError):
    pass


class ReconciliationAbortedError(ReconciliationError):
    """Fatal precondition failure; the run stops before or between entity types."""


class EntityFetchError(ReconciliationAbortedError):
    def __init__(
        self,
        message: str,
        *,
        entity_type: EntityType,
        partial_result: RunResult | None = None,
    ) -> None:
        super().__init__(message)
        self.entity_type = entity_type
        self.partial_result = partial_result


class UpdateError(ReconciliationError):
    pass


class RetryExhaustedError(ReconciliationError):
    pass
