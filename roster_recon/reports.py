from collections.abc import Iterable
from datetime import date
from pathlib import Path

from roster_recon.schemas import ErrorEntry, LogEntry, RunResult


ERROR_TABLE_HEADER = "Type,ID,Name,Error"


def _quote(value: object) -> str:
    text = "" if value is None else str(value)
    return '"' + text.replace('"', '""') + '"'


def to_error_table(errors: Iterable[ErrorEntry]) -> str:
    lines = [ERROR_TABLE_HEADER]
    for entry in errors:
        lines.append(",".join(_quote(value) for value in (entry.entity_type.value, entry.id, entry.name, entry.message)))
    return "\n".join(lines)


def to_log_text(log: Iterable[LogEntry]) -> str:
    return "\n".join(str(entry) for entry in log)


def error_table_filename(on: date) -> str:
    return f"migration-errors-{on.isoformat()}.csv"


def log_filename(on: date) -> str:
    return f"migration-log-{on.isoformat()}.txt"


def write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as outfile:
        outfile.write(content)


def write_exports(result: RunResult, output_dir: Path, *, on: date) -> tuple[Path, Path]:
    errors_path = output_dir / error_table_filename(on)
    log_path = output_dir / log_filename(on)

    write_text(errors_path, to_error_table(result.errors))
    write_text(log_path, to_log_text(result.log))
    return errors_path, log_path
