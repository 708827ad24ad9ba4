"""timesheet: sprint timesheet CLI for Jira.

Usage:
    timesheet [--json] [--verbose] [--board BOARD] COMMAND

Commands:
    whoami                      Show the authenticated Jira user
    sprint                      Show the active sprint grid (hours per day)
    log ISSUE DATE HOURS        Set your total hours on ISSUE for DATE
    transitions ISSUE           List allowed status transitions
    transition ISSUE ID         Apply a status transition
"""

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import Any

from .config import ConfigError, Settings
from .jira import JiraError
from .session import Session
from .sprint import LoadCancelled
from .worklogs import SECONDS_PER_HOUR


def _get_session(args: argparse.Namespace) -> Session:
    """Create a Session from CLI args + env vars + config file."""
    return Session(Settings.load(board_id=args.board))


def _run(args: argparse.Namespace, action: Callable[[Session], Awaitable[Any]]) -> Any:
    """Run ``action`` against a fresh session, exiting 1 on failure."""

    async def runner() -> Any:
        async with _get_session(args) as session:
            return await action(session)

    try:
        return asyncio.run(runner())
    except (ConfigError, JiraError, LoadCancelled, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def _output(data: object, *, json_mode: bool) -> None:
    """Print output as JSON or human-readable text."""
    if json_mode:
        print(json.dumps(data, indent=2, default=str))
    elif isinstance(data, list):
        for item in data:
            if isinstance(item, dict):
                _print_row(item)
            else:
                print(item)
    elif isinstance(data, dict):
        _print_row(data)
    else:
        print(data)


def _print_row(d: dict) -> None:
    """Print a dict as a compact key=value line."""
    parts = [f"{k}={v}" for k, v in d.items() if v is not None]
    print("  ".join(parts))


def _hours(seconds: int) -> str:
    if not seconds:
        return "-"
    return f"{seconds / SECONDS_PER_HOUR:g}"


# --- Commands ---


def cmd_whoami(args: argparse.Namespace) -> None:
    user = _run(args, lambda s: s.login())
    _output(
        {
            "accountId": user.account_id,
            "displayName": user.display_name,
            "timeZone": user.timezone,
        },
        json_mode=args.json,
    )


def cmd_sprint(args: argparse.Namespace) -> None:
    load = _run(args, lambda s: s.load_sprint())
    if args.json:
        data = load.to_dict()
        data["dayTotals"] = load.day_totals()
        data["totalSeconds"] = load.total_seconds
        _output(data, json_mode=True)
        return

    sprint = load.sprint
    print(f"{sprint.name}  ({sprint.start_key} .. {sprint.end_key})")
    if not load.issues:
        print("No issues assigned to you in this sprint.")
        return

    days = [d[5:] for d in load.dates]
    print(f"{'Issue':<12} {'Status':<14} " + " ".join(f"{d:>5}" for d in days) + "  Total")
    print("-" * (29 + 6 * len(days) + 7))
    totals = load.issue_totals()
    for issue in load.issues:
        logged = load.worklogs.get(issue.key, {})
        cells = " ".join(f"{_hours(logged.get(d, 0)):>5}" for d in load.dates)
        marker = " !" if issue.key in load.errors else ""
        print(
            f"{issue.key:<12} {issue.status[:14]:<14} {cells}  "
            f"{_hours(totals.get(issue.key, 0))}{marker}"
        )
    day_totals = load.day_totals()
    cells = " ".join(f"{_hours(day_totals.get(d, 0)):>5}" for d in load.dates)
    print(f"{'Total':<27} {cells}  {_hours(load.total_seconds)}")
    for key, error in load.errors.items():
        print(f"! {key}: {error}", file=sys.stderr)


def cmd_log(args: argparse.Namespace) -> None:
    result = _run(
        args,
        lambda s: s.reconciler.set_target_hours(args.issue, args.date, args.hours),
    )
    if args.json:
        _output(result.to_dict(), json_mode=True)
    elif not result.updated:
        print(f"{args.issue} on {args.date} already at {_hours(result.seconds)}h.")
    else:
        print(f"{args.issue} on {args.date}: {_hours(result.seconds)}h")
        for op in result.operations:
            _print_row({"op": op.kind, "worklog": op.worklog_id, "seconds": op.seconds})


def cmd_transitions(args: argparse.Namespace) -> None:
    transitions = _run(args, lambda s: s.ordered_transitions(args.issue))
    if args.json:
        _output([t.to_dict() for t in transitions], json_mode=True)
        return
    if not transitions:
        print(f"No transitions available for {args.issue}.")
        return
    for t in transitions:
        print(f"{t.id:<6} {t.name:<24} -> {t.to.name}")


def cmd_transition(args: argparse.Namespace) -> None:
    status, category = _run(
        args, lambda s: s.transitions.transition_issue(args.issue, args.transition_id)
    )
    _output(
        {"key": args.issue, "status": status, "statusCategory": category},
        json_mode=args.json,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="timesheet",
        description="Sprint timesheet for Jira",
    )
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )
    parser.add_argument("--board", help="Board id (default: $JIRA_BOARD_ID)")

    sub = parser.add_subparsers(dest="command", help="Command")

    whoami = sub.add_parser("whoami", help="Show the authenticated user")
    whoami.set_defaults(func=cmd_whoami)

    sprint = sub.add_parser("sprint", help="Show the active sprint grid")
    sprint.set_defaults(func=cmd_sprint)

    log = sub.add_parser("log", help="Set total hours for an issue on a day")
    log.add_argument("issue", help="Issue key, e.g. PROJ-12")
    log.add_argument("date", help="Day (YYYY-MM-DD)")
    log.add_argument("hours", type=float, help="Target hours (0 clears the day)")
    log.set_defaults(func=cmd_log)

    transitions = sub.add_parser("transitions", help="List allowed transitions")
    transitions.add_argument("issue")
    transitions.set_defaults(func=cmd_transitions)

    transition = sub.add_parser("transition", help="Apply a transition")
    transition.add_argument("issue")
    transition.add_argument("transition_id", help="Transition id")
    transition.set_defaults(func=cmd_transition)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)
    args.func(args)


if __name__ == "__main__":
    main()
