"""Command-line entry point: list, name, and resume recorded sessions.

Examples:
    rollout-resume list -n 25 --json
    rollout-resume name 1a2b3c4d "Bug triage"
    rollout-resume name ~/.codex/sessions/2025/08/28/rollout-....jsonl "Hotfix"
    rollout-resume            # same as `rollout-resume resume`
"""

import argparse
import json
import logging
import os
import sys
from typing import Optional, Sequence

from . import config
from .logging_setup import configure_logging
from .rollout import SessionStateSnapshot, append_state_line
from .sessions import (
    SessionLookupError,
    compact_time,
    discover,
    relative_time,
    resolve_session_path,
    shorten_path,
)

logger = logging.getLogger(__name__)


def _dim(s: str) -> str:
    return f"\x1b[2m{s}\x1b[0m" if sys.stdout.isatty() else s


def list_cmd(args: argparse.Namespace) -> int:
    limit = args.limit or config.list_limit()
    entries = discover(args.home, limit)

    if args.json:
        out = [
            {
                "id": str(e.id),
                "timestamp": e.timestamp.isoformat(),
                "name": e.name,
                "title": e.title,
                "path": str(e.path),
                "working_path": str(e.cwd),
                "last_modified": int(e.mtime),
            }
            for e in entries
        ]
        print(json.dumps(out, indent=2))
        return 0

    for e in entries:
        print(f"{compact_time(e.timestamp)}  {e.id8}  {e.title}")
        meta = [f"cwd: {shorten_path(e.cwd)}", f"last: {relative_time(e.mtime)}"]
        print(_dim(f"    {'  •  '.join(meta)}"))
        print(_dim(f"    └ {shorten_path(e.path)}"))
    return 0


def name_cmd(args: argparse.Namespace) -> int:
    path = resolve_session_path(args.home, args.id_or_path)
    append_state_line(path, SessionStateSnapshot(name=args.name))
    logger.info("named %s: %s", path, args.name)
    print(f"named: {path}")
    return 0


def resume_cmd(args: argparse.Namespace) -> int:
    from .ui import run_picker

    limit = args.limit or config.picker_limit()
    cwd = args.cwd or os.getcwd()
    chosen = run_picker(args.home, limit, cwd)
    if chosen is not None:
        print(chosen)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rollout-resume",
        description="Inspect, rename and resume recorded sessions (rollouts).",
    )
    parser.add_argument("--home", help="Rollout home directory (default: $ROLLOUT_RESUME_HOME or ~/.codex).")
    sub = parser.add_subparsers(dest="command")

    p_list = sub.add_parser("list", help="List recent sessions (newest first).")
    p_list.add_argument("-n", "--limit", type=int, help="Maximum number of sessions to show.")
    p_list.add_argument("--json", action="store_true", help="Output as a JSON array.")
    p_list.set_defaults(func=list_cmd)

    p_name = sub.add_parser("name", help="Assign or update a human-friendly name for a session.")
    p_name.add_argument("id_or_path", help="Session id (full or prefix) or a path to the .jsonl file.")
    p_name.add_argument("name", help="The name to assign.")
    p_name.set_defaults(func=name_cmd)

    p_resume = sub.add_parser("resume", help="Pick a session interactively and print its path.")
    p_resume.add_argument("-n", "--limit", type=int, help="Maximum number of sessions to load.")
    p_resume.add_argument("--cwd", help="Working directory to compare sessions against (default: current).")
    p_resume.set_defaults(func=resume_cmd)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        args = parser.parse_args([*(sys.argv[1:] if argv is None else argv), "resume"])
    args.home = config.resolve_home(args.home)

    configure_logging(args.home, stderr=args.command != "resume")
    try:
        return args.func(args)
    except SessionLookupError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        logger.debug("%s failed: %s", args.command, e)
        print(f"error: {e}", file=sys.stderr)
        return 1


def cli() -> None:
    """Console script entry point."""
    raise SystemExit(main())


if __name__ == "__main__":  # pragma: no cover - module execution guard
    cli()
