"""Operator tooling for running the tee-time lottery of one date.

Examples::

    python scripts/run_lottery.py --club demo-club windows 2026-10-20
    python scripts/run_lottery.py --club demo-club preview 2026-10-20 --json
    python scripts/run_lottery.py --club demo-club finalize 2026-10-20 --start \\
        --override "group:3=Member guest exception approved"
    python scripts/run_lottery.py --club demo-club preview 2026-10-20 \\
        --move entry:7=12 --move group:3=none
    python scripts/run_lottery.py --club demo-club status 2026-10-20
"""

from __future__ import annotations

import argparse
import json
import logging
from datetime import date

from teelottery.config import configure_logging
from teelottery.context import ClubContext
from teelottery.db.engine import get_sessionmaker, make_engine
from teelottery.db.utils import session_scope
from teelottery.errors import LotteryError
from teelottery.lottery import AssignmentMove
from teelottery.models import LotteryDate, LotteryDateStatus
from teelottery.workflows import (
    adjust_lottery_assignment,
    finalize_lottery,
    get_lottery_status,
    get_lottery_windows,
    preview_lottery,
    start_lottery_processing,
)

logger = logging.getLogger("run_lottery")


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from exc


def _parse_override(value: str) -> tuple[str, str]:
    unit_key, sep, reason = value.partition("=")
    if not sep or not unit_key.strip() or not reason.strip():
        raise argparse.ArgumentTypeError("overrides look like UNIT_KEY=reason")
    return unit_key.strip(), reason.strip()


def _parse_move(value: str) -> AssignmentMove:
    unit_key, sep, target = value.partition("=")
    target = target.strip()
    if not sep or not unit_key.strip() or not target:
        raise argparse.ArgumentTypeError("moves look like UNIT_KEY=BLOCK_ID or UNIT_KEY=none")
    if target.lower() == "none":
        return AssignmentMove(unit_key.strip(), None)
    try:
        return AssignmentMove(unit_key.strip(), int(target))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"block id must be an integer, got {target!r}") from exc


def _reviewed_preview(session, context: ClubContext, args):
    preview = preview_lottery(session, context, args.date)
    if args.move:
        preview = adjust_lottery_assignment(
            session, context, args.date, preview.assignment, args.move
        )
    return preview


def _emit(data, as_json: bool) -> None:
    if as_json:
        print(json.dumps(data, indent=2, sort_keys=True))
        return
    for key, value in data.items():
        print(f"{key}: {value}")


def cmd_windows(session, context: ClubContext, args) -> int:
    windows = get_lottery_windows(session, context, args.date)
    if not windows:
        logger.warning("No lottery on %s (no regular teesheet)", args.date)
        return 1
    for window in windows:
        print(f"{window.value:<10} {window.label:<10} {window.time_range:<22} {window.description}")
    return 0


def cmd_preview(session, context: ClubContext, args) -> int:
    preview = _reviewed_preview(session, context, args)
    if args.json:
        _emit(preview.to_dict(), True)
        return 0
    _emit(preview.stats, False)
    for placement in preview.assignment.placements:
        print(
            f"  {placement.unit.key:<12} -> block {placement.slot_id} "
            f"({placement.window.value}, {placement.match.value})"
        )
    for unit in preview.assignment.unassigned:
        print(f"  {unit.key:<12} -> unassigned")
    return 0


def cmd_finalize(session, context: ClubContext, args) -> int:
    control = LotteryDate.get(session, context.club_id, args.date)
    if args.start and (control is None or control.status == LotteryDateStatus.PENDING):
        start_lottery_processing(session, context, args.date)
    assignment = _reviewed_preview(session, context, args).assignment if args.move else None
    report = finalize_lottery(
        session, context, args.date, assignment, overrides=dict(args.override or [])
    )
    if report.already_completed:
        logger.info("Lottery for %s was already completed", args.date)
    _emit(report.to_dict(), args.json)
    return 0


def cmd_status(session, context: ClubContext, args) -> int:
    _emit(get_lottery_status(session, context, args.date), args.json)
    return 0


COMMANDS = {
    "windows": cmd_windows,
    "preview": cmd_preview,
    "finalize": cmd_finalize,
    "status": cmd_status,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the tee-time lottery for a date.")
    parser.add_argument("--club", required=True, help="club id the command acts on")
    parser.add_argument("--actor", default="ops-cli", help="admin id recorded on audit rows")
    parser.add_argument("--database-url", help="override DB_URL")
    parser.add_argument("--log-level", help="override LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("windows", "show the preference windows of the date"),
        ("preview", "compute the tentative assignment without writing"),
        ("finalize", "book the assignment and complete the date"),
        ("status", "show processing state and submission counts"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("date", type=_parse_date)
        cmd.add_argument("--json", action="store_true", help="print JSON")
        if name in ("preview", "finalize"):
            cmd.add_argument(
                "--move",
                action="append",
                type=_parse_move,
                metavar="UNIT_KEY=BLOCK_ID",
                help="move a unit to another block, or unassign it with =none (repeatable)",
            )
        if name == "finalize":
            cmd.add_argument(
                "--start",
                action="store_true",
                help="move a PENDING date to PROCESSING first",
            )
            cmd.add_argument(
                "--override",
                action="append",
                type=_parse_override,
                metavar="UNIT_KEY=REASON",
                help="force a restricted unit through (repeatable)",
            )
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    context = ClubContext.admin(args.club, actor_id=args.actor)
    Session = get_sessionmaker(make_engine(database_url=args.database_url))
    try:
        with session_scope(Session) as session:
            return COMMANDS[args.command](session, context, args)
    except LotteryError as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
