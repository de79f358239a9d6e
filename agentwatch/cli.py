"""Command-line entry point for the session engine.

Usage:
  agentwatch list [--active] [--json] [--status S] [--type T] [--limit N]
  agentwatch get SESSION_ID [--json]
  agentwatch mark-zombies [--dry-run]
  agentwatch mark-interrupted [--dry-run]
  agentwatch mark-old-completed [--before YYYY-MM-DD] [--dry-run]
  agentwatch set-status JOB_FILE STATUS
  agentwatch cleanup [--inactive-minutes N]
  agentwatch archive SESSION_ID [SESSION_ID ...]
  agentwatch kill SESSION_ID [--force]
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import date
from typing import Any

from agentwatch import config, observability
from agentwatch.config import EngineSettings
from agentwatch.date_utils import format_duration, utc_now
from agentwatch.engine import SessionEngine
from agentwatch.errors import AgentwatchError, FrontmatterParseError
from agentwatch.models import Session, RepairReport


def _age(session: Session) -> str:
    activity = session.activity_time
    if activity is None:
        return "-"
    return format_duration((utc_now() - activity).total_seconds())


def _print_table(sessions: list[Session]) -> None:
    if not sessions:
        print("No sessions found.")
        return
    rows = [
        (
            s.id[:24],
            s.status,
            s.type,
            "/".join(part for part in (s.repo, s.branch) if part) or "-",
            s.job_title or s.plan_name or "-",
            _age(s),
        )
        for s in sessions
    ]
    headers = ("ID", "STATUS", "TYPE", "REPO/BRANCH", "JOB", "AGE")
    widths = [max(len(h), *(len(r[i]) for r in rows)) for i, h in enumerate(headers)]
    print("  ".join(h.ljust(w) for h, w in zip(headers, widths)))
    for row in rows:
        print("  ".join(value.ljust(w) for value, w in zip(row, widths)))


def _dump(payload: Any) -> None:
    print(json.dumps(payload, indent=2))


def _print_report(label: str, report: RepairReport) -> None:
    prefix = "[dry-run] " if report.dry_run else ""
    print(
        f"{prefix}{label}: found {report.found}, updated {report.updated}, "
        f"skipped {report.skipped}, failed {report.failed}"
    )
    for path in report.paths:
        marker = " (failed)" if path in report.failed_paths else ""
        print(f"  {path}{marker}")


def _confirm(prompt: str) -> bool:
    try:
        answer = input(prompt)
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def _parse_day(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date {value!r} (use YYYY-MM-DD)") from None


async def _run(args: argparse.Namespace) -> int:
    engine = SessionEngine(EngineSettings(debug=args.debug or config.DEBUG))
    try:
        if args.command == "list":
            sessions = await engine.get_all_sessions(hide_completed=args.active)
            if args.status:
                sessions = [s for s in sessions if s.status == args.status]
            if args.type:
                sessions = [s for s in sessions if s.type == args.type]
            if args.limit and args.limit > 0:
                sessions = sessions[: args.limit]
            if args.json:
                _dump([s.model_dump(mode="json") for s in sessions])
            else:
                _print_table(sessions)
            return 0

        if args.command == "get":
            session = await engine.get_session(args.session_id)
            if session is None:
                print(f"Session not found: {args.session_id}", file=sys.stderr)
                return 1
            if args.json:
                _dump(session.model_dump(mode="json"))
            else:
                for key, value in session.model_dump(mode="json").items():
                    if value not in ("", None, 0, False):
                        print(f"{key}: {value}")
            return 0

        if args.command == "mark-zombies":
            report = await engine.mark_zombies_interrupted(dry_run=args.dry_run)
            _print_report("Zombie jobs", report)
            return 1 if report.failed else 0

        if args.command == "mark-interrupted":
            report = await engine.mark_interrupted_jobs(dry_run=args.dry_run)
            _print_report("Interrupted jobs", report)
            return 1 if report.failed else 0

        if args.command == "mark-old-completed":
            report = await engine.mark_old_completed(args.before, dry_run=args.dry_run)
            _print_report("Old jobs", report)
            return 1 if report.failed else 0

        if args.command == "set-status":
            try:
                old_status = await engine.set_job_status(args.job_file, args.status)
            except (ValueError, FileNotFoundError, FrontmatterParseError) as e:
                print(f"Error: {e}", file=sys.stderr)
                return 1
            print(f"{args.job_file}: {old_status or '(none)'} → {args.status}")
            return 0

        if args.command == "cleanup":
            report = await engine.cleanup_dead_sessions(args.inactive_minutes)
            await engine.drain()
            if report.total == 0:
                print("No sessions needed cleanup.")
            else:
                print(
                    f"Cleaned up {report.total}: interrupted {report.interrupted}, "
                    f"completed {report.completed}, removed directories {report.reaped_directories}, "
                    f"completion triggers {report.completion_triggers}, "
                    f"zombie job(s) {report.zombies}"
                )
            return 0

        if args.command == "archive":
            count = await engine.archive_sessions(args.session_ids)
            print(f"Archived {count} session(s).")
            return 0

        if args.command == "kill":
            if not args.force and not _confirm(f"Kill session {args.session_id}? [y/N] "):
                print("Kill cancelled.")
                return 0
            if await engine.kill_session(args.session_id):
                print(f"Killed session {args.session_id}.")
            else:
                print(f"Session {args.session_id} was not running; removed its directory.")
            return 0
    except AgentwatchError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await engine.close()
    return 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="agentwatch", description="Track AI agent sessions and jobs.")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p_list = sub.add_parser("list", help="List sessions")
    p_list.add_argument("--active", action="store_true", help="Hide completed, failed, error and interrupted")
    p_list.add_argument("--json", action="store_true", help="Emit JSON")
    p_list.add_argument("--status", default="", help="Only sessions with this status")
    p_list.add_argument("--type", default="", help="Only sessions of this type")
    p_list.add_argument("--limit", type=int, default=0, help="Maximum rows")

    p_get = sub.add_parser("get", help="Show one session")
    p_get.add_argument("session_id")
    p_get.add_argument("--json", action="store_true", help="Emit JSON")

    p_zombies = sub.add_parser("mark-zombies", help="Mark chat jobs without a live session interrupted")
    p_zombies.add_argument("--dry-run", action="store_true")

    p_interrupted = sub.add_parser("mark-interrupted", help="Mark lock-backed jobs with a dead lock interrupted")
    p_interrupted.add_argument("--dry-run", action="store_true")

    p_old = sub.add_parser("mark-old-completed", help="Mark jobs started before a date completed")
    p_old.add_argument("--before", type=_parse_day, default=None, help="Cutoff date YYYY-MM-DD (default: today)")
    p_old.add_argument("--dry-run", action="store_true")

    p_status = sub.add_parser("set-status", help="Rewrite a job file's status")
    p_status.add_argument("job_file")
    p_status.add_argument("status")

    p_cleanup = sub.add_parser("cleanup", help="Settle dead and inactive sessions")
    p_cleanup.add_argument(
        "--inactive-minutes",
        type=int,
        default=None,
        help=f"Inactivity threshold (default: {config.INACTIVITY_MINUTES})",
    )

    p_archive = sub.add_parser("archive", help="Hide sessions from listings")
    p_archive.add_argument("session_ids", nargs="+")

    p_kill = sub.add_parser("kill", help="Terminate a live session and remove its directory")
    p_kill.add_argument("session_id")
    p_kill.add_argument("--force", action="store_true", help="Skip the confirmation prompt")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    debug = args.debug or config.DEBUG
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    observability.initialize()
    try:
        return asyncio.run(_run(args))
    finally:
        observability.shutdown()


if __name__ == "__main__":
    sys.exit(main())
