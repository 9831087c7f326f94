"""
Operator CLI for stuck appointments.

    python scripts/retrigger.py status <appointment_id>
    python scripts/retrigger.py files <appointment_id> [--reset-failed]
    python scripts/retrigger.py summary <appointment_id> [--force]

Runs the recovery operations in-process against DATABASE_URL.
"""
import argparse
import json
import logging
import os
import sys

sys.path.append(os.getcwd())

from packages.db.database import init_db
from packages.shared.errors import MissingInputError
from apps.worker.recovery import appointment_diagnostics, retrigger_file_processing, retrigger_summary


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Re-run pipeline stages for an appointment")
    sub = parser.add_subparsers(dest="command", required=True)

    status = sub.add_parser("status", help="Show pipeline state")
    status.add_argument("appointment_id")

    files = sub.add_parser("files", help="Re-run document extraction")
    files.add_argument("appointment_id")
    files.add_argument("--reset-failed", action="store_true", help="Retry files that failed permanently")

    summary = sub.add_parser("summary", help="Re-run clinical summary generation")
    summary.add_argument("appointment_id")
    summary.add_argument("--force", action="store_true", help="Delete the existing summary first")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    init_db()

    try:
        if args.command == "status":
            print(json.dumps(appointment_diagnostics(args.appointment_id), indent=2, default=str))
            return 0
        if args.command == "files":
            result = retrigger_file_processing(args.appointment_id, reset_failed=args.reset_failed)
        else:
            result = retrigger_summary(args.appointment_id, force=args.force)
    except MissingInputError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 2

    print(json.dumps(result.to_body(), indent=2, default=str))
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
