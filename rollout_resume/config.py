"""Home directory and environment-driven settings."""

import os
from pathlib import Path

DEFAULT_HOME = Path.home() / ".codex"
SESSIONS_SUBDIR = "sessions"

LIST_LIMIT_DEFAULT = 10
PICKER_LIMIT_DEFAULT = 200


def resolve_home(override: str | os.PathLike | None = None) -> Path:
    """Return the rollout home: explicit override, then ROLLOUT_RESUME_HOME, then ~/.codex."""
    if override:
        return Path(override).expanduser()
    env = os.getenv("ROLLOUT_RESUME_HOME")
    if env:
        return Path(env).expanduser()
    return DEFAULT_HOME


def sessions_dir(home: Path) -> Path:
    return home / SESSIONS_SUBDIR


def get_int_env(name: str, *, default: int, min_value: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError:
        return default
    if parsed < min_value:
        return default
    return parsed


def list_limit() -> int:
    return get_int_env("ROLLOUT_RESUME_LIST_LIMIT", default=LIST_LIMIT_DEFAULT)


def picker_limit() -> int:
    return get_int_env("ROLLOUT_RESUME_PICKER_LIMIT", default=PICKER_LIMIT_DEFAULT)
