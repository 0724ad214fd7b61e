"""Append-only rollout logs: header/state records, folding, and appends.

A rollout is newline-delimited JSON. The first line is the session header
(SessionMeta); later lines are either state records, marked with
``"record_type": "state"``, or conversation events this module never looks
inside.
"""

import json
import logging
import os
import re
import uuid
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from .config import sessions_dir

logger = logging.getLogger(__name__)

STATE_RECORD_TYPE = "state"

_FRACTION = re.compile(r"\.(\d+)")


class RolloutError(Exception):
    """Base class for rollout log failures."""


class RolloutParseError(RolloutError):
    """The file has no valid session header on its first line."""


def _opt_str(value) -> str | None:
    return value if isinstance(value, str) else None


def parse_timestamp(ts: str) -> datetime:
    """Parse an RFC3339 timestamp. Naive values are taken as UTC."""
    # fromisoformat wants microseconds: pad or cut the fraction to six digits.
    ts = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), ts, count=1)
    dt = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_timestamp(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ── Records ────────────────────────────────────────────────


@dataclass(frozen=True)
class GitInfo:
    branch: str | None = None
    commit_hash: str | None = None
    repository_url: str | None = None

    @classmethod
    def from_json(cls, obj) -> "GitInfo | None":
        if not isinstance(obj, dict):
            return None
        return cls(
            branch=_opt_str(obj.get("branch")),
            commit_hash=_opt_str(obj.get("commit_hash")),
            repository_url=_opt_str(obj.get("repository_url")),
        )

    def to_json(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}


@dataclass(frozen=True)
class SessionMeta:
    """Session header, written once as the first line of a rollout."""
    id: uuid.UUID
    timestamp: str
    cwd: Path
    instructions: str | None = None
    git: GitInfo | None = None

    @classmethod
    def new(cls, cwd: str | os.PathLike, instructions: str | None = None,
            git: GitInfo | None = None) -> "SessionMeta":
        return cls(
            id=uuid.uuid4(),
            timestamp=format_timestamp(datetime.now(timezone.utc)),
            cwd=Path(cwd),
            instructions=instructions,
            git=git,
        )

    @classmethod
    def from_json(cls, obj) -> "SessionMeta":
        if not isinstance(obj, dict):
            raise RolloutParseError("header is not a JSON object")
        raw_id, ts, cwd = obj.get("id"), obj.get("timestamp"), obj.get("cwd")
        if not isinstance(raw_id, str) or not isinstance(ts, str) or not isinstance(cwd, str):
            raise RolloutParseError("header is missing id, timestamp or cwd")
        try:
            session_id = uuid.UUID(raw_id)
        except ValueError as e:
            raise RolloutParseError(f"invalid session id {raw_id!r}") from e
        return cls(
            id=session_id,
            timestamp=ts,
            cwd=Path(cwd),
            instructions=_opt_str(obj.get("instructions")),
            git=GitInfo.from_json(obj.get("git")),
        )

    def to_json(self) -> dict:
        out = {"id": str(self.id), "timestamp": self.timestamp, "cwd": str(self.cwd)}
        if self.instructions is not None:
            out["instructions"] = self.instructions
        if self.git is not None:
            out["git"] = self.git.to_json()
        return out

    @property
    def created_at(self) -> datetime:
        return parse_timestamp(self.timestamp)


@dataclass(frozen=True)
class SessionStateSnapshot:
    """Mutable session overlay. Every field is optional; None means "not set here"."""
    name: str | None = None

    @classmethod
    def from_json(cls, obj: dict) -> "SessionStateSnapshot":
        return cls(name=_opt_str(obj.get("name")))

    def to_json(self) -> dict:
        out = {"record_type": STATE_RECORD_TYPE}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is not None:
                out[f.name] = value
        return out

    def merged(self, newer: "SessionStateSnapshot") -> "SessionStateSnapshot":
        """Per-field last-write-wins: fields unset in `newer` keep our value."""
        values = {}
        for f in fields(self):
            value = getattr(newer, f.name)
            values[f.name] = value if value is not None else getattr(self, f.name)
        return SessionStateSnapshot(**values)


@dataclass(frozen=True)
class HeaderRecord:
    meta: SessionMeta


@dataclass(frozen=True)
class StateRecord:
    state: SessionStateSnapshot


@dataclass(frozen=True)
class OpaqueRecord:
    raw: str


RolloutRecord = HeaderRecord | StateRecord | OpaqueRecord


def decode_header(line: str) -> HeaderRecord:
    try:
        obj = json.loads(line)
    except json.JSONDecodeError as e:
        raise RolloutParseError(f"header is not valid JSON: {e}") from e
    return HeaderRecord(SessionMeta.from_json(obj))


def decode_line(line: str) -> RolloutRecord:
    """Decode a non-header line. Anything that isn't a state record is opaque."""
    try:
        obj = json.loads(line)
    except json.JSONDecodeError:
        return OpaqueRecord(line)
    if isinstance(obj, dict) and obj.get("record_type") == STATE_RECORD_TYPE:
        return StateRecord(SessionStateSnapshot.from_json(obj))
    return OpaqueRecord(line)


def fold_states(states: Iterable[SessionStateSnapshot]) -> SessionStateSnapshot:
    folded = SessionStateSnapshot()
    for state in states:
        folded = folded.merged(state)
    return folded


# ── Reading ────────────────────────────────────────────────


@dataclass(frozen=True)
class RolloutScan:
    meta: SessionMeta
    state: SessionStateSnapshot
    opaque_records: int


def scan_rollout(path: Path) -> RolloutScan:
    """Read header, fold state records and count the other records in one pass.

    A final line without a terminator is still being written; it is ignored.
    """
    with open(path, encoding="utf-8", errors="replace") as fh:
        first = fh.readline()
        if not first.strip():
            raise RolloutParseError(f"{path}: missing session header")
        header = decode_header(first)

        state = SessionStateSnapshot()
        opaque = 0
        for line in fh:
            if not line.endswith("\n"):
                break
            if not line.strip():
                continue
            record = decode_line(line)
            if isinstance(record, StateRecord):
                state = state.merged(record.state)
            else:
                opaque += 1

    return RolloutScan(meta=header.meta, state=state, opaque_records=opaque)


def read_session_header_and_state(path: Path) -> tuple[SessionMeta, SessionStateSnapshot]:
    scan = scan_rollout(path)
    return scan.meta, scan.state


# ── Writing ────────────────────────────────────────────────


def _encode(obj: dict) -> str:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"))


def _ends_with_newline(path: Path) -> bool:
    with open(path, "rb") as fh:
        fh.seek(0, os.SEEK_END)
        if fh.tell() == 0:
            return True
        fh.seek(-1, os.SEEK_END)
        return fh.read(1) == b"\n"


def append_state_line(path: Path, state: SessionStateSnapshot) -> None:
    """Append one state record as a single write. The file must already exist."""
    line = _encode(state.to_json()) + "\n"
    fd = os.open(path, os.O_WRONLY | os.O_APPEND)
    with os.fdopen(fd, "a", encoding="utf-8") as fh:
        # A torn tail from a crashed writer gets terminated so our record
        # lands on its own line.
        if not _ends_with_newline(path):
            line = "\n" + line
        fh.write(line)
    logger.debug("appended state %s to %s", state, path)


def rollout_path_for(home: Path, meta: SessionMeta) -> Path:
    created = meta.created_at.astimezone(timezone.utc)
    day_dir = sessions_dir(home) / f"{created:%Y}" / f"{created:%m}" / f"{created:%d}"
    return day_dir / f"rollout-{created:%Y-%m-%dT%H-%M-%S}-{meta.id}.jsonl"


def create_rollout(home: Path, meta: SessionMeta) -> Path:
    """Start a new rollout containing only the header line. Never overwrites."""
    path = rollout_path_for(home, meta)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "x", encoding="utf-8") as fh:
        fh.write(_encode(meta.to_json()) + "\n")
    logger.info("created rollout %s", path)
    return path
