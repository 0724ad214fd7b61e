"""Session discovery, titles, filtering, and display helpers."""

import logging
import os
import subprocess
import time
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Iterator
from urllib.parse import urlparse

from .config import sessions_dir
from .rollout import GitInfo, RolloutError, parse_timestamp, scan_rollout

logger = logging.getLogger(__name__)

ROLLOUT_PREFIX = "rollout-"
ROLLOUT_SUFFIX = ".jsonl"
TITLE_MAX_CHARS = 80
TRUNCATION_MARKER = "…"
NO_TITLE = "(no title)"


@dataclass
class SessionEntry:
    """One discovered session. Rebuilt on every scan, never live-synced."""
    id: uuid.UUID
    timestamp: datetime
    title: str
    path: Path
    cwd: Path
    name: str | None = None
    instructions: str | None = None
    git: GitInfo | None = None
    size: int = 0
    mtime: float = 0.0
    approx_turns: int = 0
    duration_secs: int | None = None

    @property
    def id8(self) -> str:
        return str(self.id)[:8]

    @property
    def branch(self) -> str | None:
        return self.git.branch if self.git else None

    @property
    def repo_host(self) -> str | None:
        if self.git and self.git.repository_url:
            return repo_host_from_url(self.git.repository_url)
        return None


# ── Utilities ──────────────────────────────────────────────


def shorten_path(path: str | os.PathLike) -> str:
    path = str(path)
    home = str(Path.home())
    if path.startswith(home):
        return "~" + path[len(home):]
    return path


def _plural(n: int, word: str) -> str:
    return f"{n} {word}{'s' if n != 1 else ''}"


def relative_time(mtime: float) -> str:
    delta = int(time.time() - mtime)
    if delta < 60:
        return "just now"

    minutes = delta // 60
    hours = delta // 3600
    days = delta // 86400

    if delta < 3600:
        return f"{_plural(minutes, 'minute')} ago"
    elif delta < 86400:
        return f"{_plural(hours, 'hour')} ago"
    return f"{_plural(days, 'day')} ago"


def human_duration(secs: int) -> str:
    if secs < 90:
        return f"{secs}s"
    if secs < 90 * 60:
        return f"{secs // 60}m"
    if secs < 48 * 3600:
        return f"{secs // 3600}h"
    return f"{secs // 86400}d"


def compact_time(dt: datetime) -> str:
    """Local `YYYY-MM-DD HH:MM`."""
    return dt.astimezone().strftime("%Y-%m-%d %H:%M")


def repo_host_from_url(url: str) -> str | None:
    parsed = urlparse(url)
    if parsed.scheme and parsed.hostname:
        return parsed.hostname
    # scp-style: git@github.com:org/repo.git
    left, sep, _ = url.partition(":")
    if sep and "@" in left:
        return left.rsplit("@", 1)[1] or None
    return None


def resolve_title(name: str | None, instructions: str | None) -> str:
    """State name, else first non-blank instructions line (capped), else a placeholder."""
    if name and name.strip():
        return name.strip()
    for line in (instructions or "").splitlines():
        line = line.strip()
        if line:
            if len(line) > TITLE_MAX_CHARS:
                return line[:TITLE_MAX_CHARS] + TRUNCATION_MARKER
            return line
    return NO_TITLE


# ── Session discovery ──────────────────────────────────────


def is_rollout_file(path: Path) -> bool:
    return path.name.startswith(ROLLOUT_PREFIX) and path.name.endswith(ROLLOUT_SUFFIX)


def iter_rollout_files(home: Path) -> Iterator[Path]:
    root = sessions_dir(home)
    if not root.is_dir():
        return
    for path in sorted(root.rglob(f"{ROLLOUT_PREFIX}*{ROLLOUT_SUFFIX}")):
        if path.is_file() and is_rollout_file(path):
            yield path


def read_entry(path: Path) -> SessionEntry:
    """Parse one rollout into an entry.

    Raises RolloutError for a bad header, ValueError for an unparseable
    timestamp, OSError when the file can't be read.
    """
    scan = scan_rollout(path)
    meta = scan.meta
    created = parse_timestamp(meta.timestamp)
    stat = path.stat()
    return SessionEntry(
        id=meta.id,
        timestamp=created,
        title=resolve_title(scan.state.name, meta.instructions),
        path=path,
        cwd=meta.cwd,
        name=scan.state.name,
        instructions=meta.instructions,
        git=meta.git,
        size=stat.st_size,
        mtime=stat.st_mtime,
        approx_turns=scan.opaque_records,
        duration_secs=max(0, int(stat.st_mtime - created.timestamp())),
    )


def sort_entries(entries: list[SessionEntry]) -> list[SessionEntry]:
    """Newest first. Stable, so equal timestamps keep discovery order."""
    return sorted(entries, key=lambda e: e.timestamp, reverse=True)


def discover(home: Path, limit: int | None = None) -> list[SessionEntry]:
    """Find every parseable rollout under <home>/sessions, newest first."""
    entries = []
    for path in iter_rollout_files(home):
        try:
            entries.append(read_entry(path))
        except (RolloutError, ValueError, OSError) as e:
            logger.debug("skipping %s: %s", path, e)
    entries = sort_entries(entries)
    if limit is not None:
        entries = entries[:limit]
    return entries


class SessionLookupError(Exception):
    """A session identifier could not be resolved to exactly one rollout."""


class SessionNotFoundError(SessionLookupError):
    pass


class AmbiguousSessionError(SessionLookupError):
    pass


def resolve_session_path(home: Path, id_or_path: str) -> Path:
    """Accept a rollout path or a (full or prefix) session id."""
    as_path = Path(id_or_path).expanduser()
    if as_path.exists():
        return as_path

    prefix = id_or_path.lower()
    matches = [
        e for e in discover(home)
        if str(e.id).startswith(prefix) or e.id.hex.startswith(prefix)
    ]
    if not matches:
        raise SessionNotFoundError(f"no session found matching id prefix: {id_or_path}")
    if len(matches) > 1:
        raise AmbiguousSessionError(
            f"multiple sessions match prefix {id_or_path}; please be more specific"
        )
    return matches[0].path


# ── Filtering ──────────────────────────────────────────────


@dataclass(frozen=True)
class DayHeader:
    """Non-selectable separator row."""
    label: str
    day: date


@dataclass(frozen=True)
class EntryRow:
    entry: SessionEntry
    match_indices: tuple[int, ...] | None = None


def filter_haystack(entry: SessionEntry) -> str:
    return "\n".join([
        entry.title.lower(),
        (entry.branch or "").lower(),
        (entry.repo_host or "").lower(),
        str(entry.path).lower(),
    ])


def free_text_query(filter_text: str) -> str:
    """Tokens with a colon are reserved for field filters and never fuzzy-matched."""
    return " ".join(t for t in filter_text.split() if ":" not in t)


def fuzzy_match(haystack: str, needle: str) -> tuple[list[int], int] | None:
    """Case-insensitive ordered subsequence match.

    Returns (matched indices into `haystack`, score) or None. Whitespace in the
    needle is ignored; a lower score means a tighter match.
    """
    wanted = [c.lower() for c in needle if not c.isspace()]
    if not wanted:
        return None
    indices = []
    pos = 0
    for i, ch in enumerate(haystack):
        if ch.lower() == wanted[pos]:
            indices.append(i)
            pos += 1
            if pos == len(wanted):
                span = indices[-1] - indices[0] + 1
                return indices, span - len(wanted)
    return None


def filter_entries(entries: list[SessionEntry], filter_text: str = "") -> list[EntryRow]:
    """Exact substring filter for inclusion, fuzzy title match for highlights only."""
    needle = filter_text.strip().lower()
    query = free_text_query(filter_text.strip())
    rows = []
    for entry in entries:
        if needle and needle not in filter_haystack(entry):
            continue
        indices = None
        if query:
            found = fuzzy_match(entry.title, query)
            if found:
                indices = tuple(found[0])
        rows.append(EntryRow(entry, indices))
    return rows


def day_header(day: date, today: date) -> str:
    if day == today:
        return "Today"
    if (today - day).days == 1:
        return "Yesterday"
    return day.isoformat()


def group_by_day(rows: list[EntryRow], today: date | None = None) -> list[DayHeader | EntryRow]:
    """Insert a DayHeader before the first entry of each local calendar day."""
    today = today or datetime.now().astimezone().date()
    out: list[DayHeader | EntryRow] = []
    last_day = None
    for row in rows:
        day = row.entry.timestamp.astimezone().date()
        if day != last_day:
            out.append(DayHeader(day_header(day, today), day))
            last_day = day
        out.append(row)
    return out


# ── Display ────────────────────────────────────────────────


def row_prefix(entry: SessionEntry) -> str:
    """Time and short id that lead the primary line; the title starts right after."""
    return f"{compact_time(entry.timestamp)}  {entry.id8}  "


def build_row_text(entry: SessionEntry) -> tuple[str, str]:
    """Primary and secondary display lines for a session row."""
    badge = ""
    if entry.branch:
        badge += f" [{entry.branch}]"
    if entry.approx_turns > 0:
        badge += f" #{entry.approx_turns}"
    if entry.duration_secs is not None:
        badge += f"  {human_duration(entry.duration_secs)}"

    primary = row_prefix(entry) + entry.title
    if badge.strip():
        primary = f"{primary}  {badge}"

    parts = []
    if entry.repo_host:
        parts.append(entry.repo_host)
    if entry.git and entry.git.commit_hash:
        parts.append(entry.git.commit_hash[:7])
    parts.append(shorten_path(entry.path))
    return primary, " ".join(parts)


# ── Git ────────────────────────────────────────────────────


def _git(args: list[str], cwd: str | os.PathLike) -> str | None:
    try:
        result = subprocess.run(
            ["git", *args],
            capture_output=True, text=True, cwd=cwd, timeout=5,
        )
    except (subprocess.SubprocessError, OSError):
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def collect_git_info(cwd: str | os.PathLike) -> GitInfo | None:
    """Branch, HEAD commit and origin URL of the repository at `cwd`, if any."""
    if not os.path.isdir(cwd):
        return None
    if _git(["rev-parse", "--is-inside-work-tree"], cwd) != "true":
        return None
    branch = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd)
    return GitInfo(
        branch=branch if branch != "HEAD" else None,
        commit_hash=_git(["rev-parse", "HEAD"], cwd),
        repository_url=_git(["config", "--get", "remote.origin.url"], cwd),
    )
