"""Shared fixtures: a throwaway rollout home and a rollout file factory."""

import json
import uuid
from pathlib import Path

import pytest


def write_rollout(
    home: Path,
    timestamp: str,
    *,
    instructions: str | None = None,
    names: tuple[str, ...] = (),
    cwd: str = "/work/project",
    git: dict | None = None,
    events: int = 0,
    session_id: str | None = None,
    subdir: str = "2025/08/28",
) -> Path:
    """Write a rollout: header, `events` opaque message lines, then one state line per name."""
    sid = session_id or str(uuid.uuid4())
    day_dir = home / "sessions" / subdir
    day_dir.mkdir(parents=True, exist_ok=True)
    path = day_dir / f"rollout-{timestamp.replace(':', '-')}-{sid}.jsonl"

    header = {"id": sid, "timestamp": timestamp, "cwd": cwd}
    if instructions is not None:
        header["instructions"] = instructions
    if git is not None:
        header["git"] = git
    lines = [json.dumps(header)]
    for i in range(events):
        lines.append(json.dumps({
            "type": "message",
            "role": "user",
            "content": [{"type": "input_text", "text": f"turn {i}"}],
        }))
    for name in names:
        lines.append(json.dumps({"record_type": "state", "name": name}))
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def home(tmp_path: Path) -> Path:
    h = tmp_path / "codex-home"
    h.mkdir()
    return h


@pytest.fixture
def make_rollout(home: Path):
    def _make(timestamp: str, **kwargs) -> Path:
        return write_rollout(home, timestamp, **kwargs)
    return _make
