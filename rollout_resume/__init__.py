"""rollout-resume — browse, rename, delete and resume recorded agent sessions."""

from .local_exec import (
    InterruptController,
    ProcessGroupController,
    RunningFlagController,
    make_interrupt_controller,
    run_command,
)
from .picker import KeyPress, Mode, Redraw, Resize, SessionPicker, run_event_loop
from .rollout import (
    GitInfo,
    RolloutError,
    RolloutParseError,
    SessionMeta,
    SessionStateSnapshot,
    append_state_line,
    create_rollout,
    read_session_header_and_state,
)
from .sessions import (
    AmbiguousSessionError,
    SessionEntry,
    SessionLookupError,
    SessionNotFoundError,
    discover,
    filter_entries,
    group_by_day,
    resolve_session_path,
    resolve_title,
)

__all__ = [
    "AmbiguousSessionError",
    "GitInfo",
    "InterruptController",
    "KeyPress",
    "Mode",
    "ProcessGroupController",
    "Redraw",
    "Resize",
    "RolloutError",
    "RolloutParseError",
    "RunningFlagController",
    "SessionEntry",
    "SessionLookupError",
    "SessionMeta",
    "SessionNotFoundError",
    "SessionPicker",
    "SessionStateSnapshot",
    "append_state_line",
    "create_rollout",
    "discover",
    "filter_entries",
    "group_by_day",
    "make_interrupt_controller",
    "read_session_header_and_state",
    "resolve_session_path",
    "resolve_title",
    "run_command",
    "run_event_loop",
]
