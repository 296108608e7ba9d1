from collections.abc import Mapping
import json
import logging
from pathlib import Path
import threading

from roster_recon.errors import UpdateError
from roster_recon.schemas import Actor, EntityType, Record


logger = logging.getLogger(__name__)


def read_jsonl(path: Path) -> list[dict[str, object]]:
    if not path.exists():
        raise FileNotFoundError(f"entity file not found: {path}")

    rows: list[dict[str, object]] = []
    with path.open("r", encoding="utf-8") as infile:
        for line in infile:
            line = line.strip()
            if not line:
                continue
            rows.append(json.loads(line))
    return rows


def write_jsonl(path: Path, rows: list[dict[str, object]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as outfile:
        for row in rows:
            outfile.write(json.dumps(row, sort_keys=True))
            outfile.write("\n")


class JsonlEntityStore:
    """Entity store kept as one JSONL file per entity type under ``data_dir``."""

    def __init__(self, data_dir: str | Path, actor: Actor | None = None) -> None:
        self.data_dir = Path(data_dir)
        self.actor = actor
        self._lock = threading.Lock()

    def path_for(self, entity_type: EntityType) -> Path:
        return self.data_dir / f"{entity_type.value}s.jsonl"

    def ping(self) -> bool:
        return self.data_dir.is_dir()

    def current_actor(self) -> Actor | None:
        return self.actor

    def fetch_all(self, entity_type: EntityType) -> list[Record]:
        path = self.path_for(entity_type)
        if not path.exists():
            logger.info("no entity file, treating as empty", extra={"path": str(path)})
            return []

        records: list[Record] = []
        for row in read_jsonl(path):
            record_id = row.get("id")
            if record_id is None:
                raise ValueError(f"{path} contains a row without an id")
            fields = {key: value for key, value in row.items() if key != "id"}
            records.append(Record(entity_type=entity_type, id=str(record_id), fields=fields))
        return records

    def apply(self, entity_type: EntityType, record_id: str, fields: Mapping[str, object]) -> None:
        path = self.path_for(entity_type)
        with self._lock:
            try:
                rows = read_jsonl(path)
            except (FileNotFoundError, json.JSONDecodeError) as exc:
                raise UpdateError(str(exc)) from exc

            for row in rows:
                if str(row.get("id")) == record_id:
                    row.update(fields)
                    break
            else:
                raise UpdateError(f"{entity_type.value} not found: {record_id}")

            write_jsonl(path, rows)
