"""Boundaries between the reconciliation engine and the entity store."""

from collections.abc import Mapping, Sequence
from typing import Protocol, runtime_checkable

from roster_recon.schemas import Actor, EntityType, Record


@runtime_checkable
class EntitySource(Protocol):
    def fetch_all(self, entity_type: EntityType) -> Sequence[Record]:
        """Return every record of one entity type in a single logical call."""
        ...


@runtime_checkable
class Updater(Protocol):
    def apply(self, entity_type: EntityType, record_id: str, fields: Mapping[str, object]) -> None:
        """Replace a record's fields with the normalized set; raise on failure."""
        ...


@runtime_checkable
class ConnectivityCheck(Protocol):
    def ping(self) -> bool:
        ...


@runtime_checkable
class CurrentActor(Protocol):
    def current_actor(self) -> Actor | None:
        ...


class EntityStore(EntitySource, Updater, ConnectivityCheck, CurrentActor, Protocol):
    pass
