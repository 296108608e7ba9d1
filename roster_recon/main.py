import argparse
import logging

from roster_recon.config import get_settings
from roster_recon.database import build_session_factory
from roster_recon.errors import ReconciliationAbortedError
from roster_recon.pipeline import ReconciliationRunner, RunOutcome
from roster_recon.scheduler import start_scheduler
from roster_recon.schemas import PreflightReport


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reconcile roster records against their canonical form")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="run one reconciliation pass")
    run_parser.add_argument("--export", action="store_true", help="write the error table and run log")
    run_parser.add_argument(
        "--trigger-source",
        default="manual",
        choices=["manual", "scheduled"],
        help="Metadata label for how this run was triggered",
    )

    export_parser = subparsers.add_parser("export", help="export the ledger and log of a stored run")
    export_parser.add_argument("--run-id", required=True, type=int, help="id of a stored reconciliation run")

    subparsers.add_parser("check", help="verify the store and validate one sample record per type, without updating")

    schedule_parser = subparsers.add_parser("schedule", help="start daily scheduler")
    schedule_parser.add_argument("--run-now", action="store_true", help="also run once immediately")

    return parser.parse_args()


def format_outcome(outcome: RunOutcome) -> str:
    parts = [f"run_id={outcome.run_id}", f"trigger={outcome.trigger_source}", f"status={outcome.status}"]
    if outcome.result is not None:
        for entity_type, stats in outcome.result.stats_by_type.items():
            parts.append(
                "{name}={total}/{updated}/{skipped}/{errors}".format(name=entity_type.value, **stats.to_dict())
            )
        parts.append(f"errors={len(outcome.result.errors)}")
    if outcome.error:
        parts.append(f'error="{outcome.error}"')
    if outcome.errors_path:
        parts.append(f"error_table={outcome.errors_path}")
    if outcome.log_path:
        parts.append(f"log={outcome.log_path}")
    return " ".join(parts)


def format_report(report: PreflightReport) -> list[str]:
    lines = [f'connected=yes actor="{report.actor.name} ({report.actor.role})"']
    for check in report.checks:
        if check.sample_id is None:
            lines.append(f"{check.entity_type.value} records={check.count} sample=none")
            continue
        issues = f'"{", ".join(check.sample_issues)}"' if check.sample_issues else "none"
        lines.append(f"{check.entity_type.value} records={check.count} sample={check.sample_id} issues={issues}")
    return lines


def main() -> None:
    args = parse_args()
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    session_factory = build_session_factory(settings.database_url)
    if args.command == "schedule":
        start_scheduler(settings, session_factory, run_now=args.run_now)
        return

    runner = ReconciliationRunner(settings, session_factory)
    if args.command == "check":
        try:
            report = runner.check()
        except ReconciliationAbortedError as exc:
            print(f'status=failed error="{exc}"')
            raise SystemExit(1) from exc
        print("\n".join(format_report(report)))
        return

    if args.command == "export":
        try:
            errors_path, log_path = runner.export(args.run_id)
        except LookupError as exc:
            print(str(exc))
            raise SystemExit(1) from exc
        print(f"run_id={args.run_id} error_table={errors_path} log={log_path}")
        return

    outcome = runner.run(trigger_source=args.trigger_source, export=args.export)
    print(format_outcome(outcome))
    if outcome.status == "failed":
        raise SystemExit(1)


if __name__ == "__main__":
    main()
