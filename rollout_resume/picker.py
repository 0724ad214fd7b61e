"""Resume picker state machine.

Toolkit-independent: the controller consumes one key (named the way Textual
names keys) or resize at a time and exposes rows, a scroll window and footer
hints for whatever front end draws them. `run_event_loop` drives it from any
ordered event source; `ui.SessionPickerApp` drives it from Textual.

Keys:
    up/down, pageup/pagedown, home/end   move (skips day headers, wraps)
    /                                    filter
    r                                    rename selected session
    d                                    delete selected session (confirm with Enter)
    u                                    undo last delete
    y / c / i                            copy path / id / 8-char id
    enter                                resume (confirms on cwd mismatch)
    escape / ctrl+c                      back out of a mode, or cancel
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum, auto
from pathlib import Path
from typing import Callable, Iterable

from .rollout import RolloutError, SessionStateSnapshot, append_state_line
from .sessions import (
    DayHeader,
    EntryRow,
    SessionEntry,
    filter_entries,
    group_by_day,
    read_entry,
    resolve_title,
    shorten_path,
    sort_entries,
)

logger = logging.getLogger(__name__)

DEFAULT_VISIBLE_ROWS = 10

MOVEMENT_KEYS = frozenset({"up", "down", "pageup", "pagedown", "home", "end"})
CANCEL_KEYS = frozenset({"escape", "ctrl+c"})


class Mode(Enum):
    BROWSING = auto()
    FILTERING = auto()
    RENAMING = auto()
    CONFIRM_DELETE = auto()
    CONFIRM_RESUME = auto()


def backup_path_for(path: Path) -> Path:
    """Sibling `<stem>.deleted`, then `<stem>.deleted.1`, `.2`, ... on collision."""
    backup = path.with_name(f"{path.stem}.deleted")
    n = 0
    while backup.exists():
        n += 1
        backup = path.with_name(f"{path.stem}.deleted.{n}")
    return backup


@dataclass
class ScrollState:
    selected_idx: int | None = None
    scroll_top: int = 0

    def ensure_visible(self, total: int, visible: int) -> None:
        if self.selected_idx is None or total == 0:
            self.scroll_top = 0
            return
        visible = max(1, min(visible, total))
        if self.selected_idx < self.scroll_top:
            self.scroll_top = self.selected_idx
        elif self.selected_idx >= self.scroll_top + visible:
            self.scroll_top = self.selected_idx - visible + 1
        self.scroll_top = max(0, min(self.scroll_top, total - visible))


@dataclass
class PickerState:
    mode: Mode = Mode.BROWSING
    scroll: ScrollState = field(default_factory=ScrollState)
    visible_rows: int = DEFAULT_VISIBLE_ROWS
    filter_text: str = ""
    rename_buffer: str = ""
    confirm_delete_path: Path | None = None
    confirm_resume_path: Path | None = None
    last_deleted: tuple[Path, Path] | None = None  # (deleted_path, backup_path)
    action_hint: str | None = None


class SessionPicker:
    """Single-threaded controller over a list of discovered sessions."""

    def __init__(
        self,
        entries: Iterable[SessionEntry],
        current_cwd: str | Path,
        *,
        visible_rows: int = DEFAULT_VISIBLE_ROWS,
        current_repo_host: str | None = None,
        today: date | None = None,
    ) -> None:
        self.entries: list[SessionEntry] = sort_entries(list(entries))
        self.current_cwd = Path(current_cwd)
        self.current_repo_host = current_repo_host
        self.state = PickerState(visible_rows=max(1, visible_rows))
        self.rows: list[DayHeader | EntryRow] = []
        self.done = False
        self.outcome: Path | None = None
        self.resumed_title: str | None = None
        self._today = today
        self._clipboard: str | None = None
        self._redraw = True
        self.rebuild()
        self._select_initial()

    # ── Rows and selection ─────────────────────────────────

    @property
    def mode(self) -> Mode:
        return self.state.mode

    def is_selectable(self, idx: int) -> bool:
        return 0 <= idx < len(self.rows) and isinstance(self.rows[idx], EntryRow)

    def selected_row(self) -> EntryRow | None:
        idx = self.state.scroll.selected_idx
        if idx is None or not self.is_selectable(idx):
            return None
        return self.rows[idx]

    def selected_entry(self) -> SessionEntry | None:
        row = self.selected_row()
        return row.entry if row else None

    def selected_path(self) -> Path | None:
        entry = self.selected_entry()
        return entry.path if entry else None

    def visible_window(self) -> list[tuple[int, DayHeader | EntryRow]]:
        top = self.state.scroll.scroll_top
        end = top + self.state.visible_rows
        return list(enumerate(self.rows))[top:end]

    def _index_of(self, path: Path) -> int | None:
        for i, row in enumerate(self.rows):
            if isinstance(row, EntryRow) and row.entry.path == path:
                return i
        return None

    def _nearest_selectable(self, idx: int) -> int | None:
        if not self.rows:
            return None
        idx = max(0, min(idx, len(self.rows) - 1))
        for i in range(idx, len(self.rows)):
            if self.is_selectable(i):
                return i
        for i in range(idx - 1, -1, -1):
            if self.is_selectable(i):
                return i
        return None

    def _set_selection(self, idx: int | None) -> None:
        self.state.scroll.selected_idx = idx
        self.state.scroll.ensure_visible(len(self.rows), self.state.visible_rows)

    def _select_initial(self) -> None:
        for i, row in enumerate(self.rows):
            if isinstance(row, EntryRow) and row.entry.cwd == self.current_cwd:
                self._set_selection(i)
                return
        self._set_selection(self._nearest_selectable(0))

    def rebuild(self) -> None:
        """Re-filter and re-group, keeping the selected session selected if it survived."""
        previous = self.selected_path()
        old_idx = self.state.scroll.selected_idx or 0
        self.rows = group_by_day(filter_entries(self.entries, self.state.filter_text), self._today)
        idx = self._index_of(previous) if previous is not None else None
        if idx is None:
            idx = self._nearest_selectable(old_idx)
        self._set_selection(idx)
        self._request_redraw()

    # ── Movement ───────────────────────────────────────────

    def _step(self, delta: int) -> None:
        n = len(self.rows)
        if not any(self.is_selectable(i) for i in range(n)):
            return
        idx = self.state.scroll.selected_idx
        if idx is None:
            idx = -1 if delta > 0 else n
        for _ in range(n):
            idx = (idx + delta) % n
            if self.is_selectable(idx):
                break
        self.state.scroll.selected_idx = idx

    def move_up(self) -> None:
        self._step(-1)

    def move_down(self) -> None:
        self._step(1)

    def page_up(self) -> None:
        for _ in range(self.state.visible_rows):
            self._step(-1)

    def page_down(self) -> None:
        for _ in range(self.state.visible_rows):
            self._step(1)

    def home(self) -> None:
        self.state.scroll.selected_idx = self._nearest_selectable(0)

    def end(self) -> None:
        for i in range(len(self.rows) - 1, -1, -1):
            if self.is_selectable(i):
                self.state.scroll.selected_idx = i
                return
        self.state.scroll.selected_idx = None

    def _move(self, key: str) -> None:
        {
            "up": self.move_up,
            "down": self.move_down,
            "pageup": self.page_up,
            "pagedown": self.page_down,
            "home": self.home,
            "end": self.end,
        }[key]()
        self.state.scroll.ensure_visible(len(self.rows), self.state.visible_rows)

    # ── Events ─────────────────────────────────────────────

    def resize(self, rows: int) -> None:
        """Recompute the visible window; the selection itself never moves."""
        self.state.visible_rows = max(1, rows)
        self.state.scroll.ensure_visible(len(self.rows), self.state.visible_rows)
        self._request_redraw()

    def handle_key(self, key: str, character: str | None = None) -> None:
        if self.done:
            return
        self.state.action_hint = None
        mode = self.state.mode

        if key in CANCEL_KEYS:
            self._cancel()
        elif key in MOVEMENT_KEYS:
            if mode not in (Mode.FILTERING, Mode.RENAMING):
                self._move(key)
        elif key == "enter":
            self._enter()
        elif key == "backspace":
            self._backspace()
        elif character and character.isprintable():
            self._character(character)
        self._request_redraw()

    def _cancel(self) -> None:
        mode = self.state.mode
        self.state.mode = Mode.BROWSING
        if mode == Mode.RENAMING:
            self.state.rename_buffer = ""
        elif mode == Mode.FILTERING:
            self.state.filter_text = ""
            self.rebuild()
        elif mode == Mode.CONFIRM_DELETE:
            self.state.confirm_delete_path = None
        elif mode == Mode.CONFIRM_RESUME:
            self.state.confirm_resume_path = None
        else:
            self._finish(None)

    def _backspace(self) -> None:
        if self.state.mode == Mode.FILTERING:
            self.state.filter_text = self.state.filter_text[:-1]
            self.rebuild()
        elif self.state.mode == Mode.RENAMING:
            self.state.rename_buffer = self.state.rename_buffer[:-1]

    def _character(self, ch: str) -> None:
        mode = self.state.mode
        if mode == Mode.FILTERING:
            self.state.filter_text += ch
            self.rebuild()
        elif mode == Mode.RENAMING:
            self.state.rename_buffer += ch
        elif mode == Mode.CONFIRM_DELETE and ch == "u":
            self.state.confirm_delete_path = None
            self.state.mode = Mode.BROWSING
            self.undo_delete()
        elif mode != Mode.BROWSING:
            return
        elif ch == "/":
            self.state.mode = Mode.FILTERING
            self.state.filter_text = ""
            self.rebuild()
        elif ch == "r":
            self.state.mode = Mode.RENAMING
            self.state.rename_buffer = ""
        elif ch == "d":
            path = self.selected_path()
            if path is not None:
                self.state.confirm_delete_path = path
                self.state.mode = Mode.CONFIRM_DELETE
        elif ch == "u":
            self.undo_delete()
        elif ch in ("y", "c", "i"):
            self._copy(ch)

    def _enter(self) -> None:
        mode = self.state.mode
        if mode == Mode.RENAMING:
            self.commit_rename()
        elif mode == Mode.FILTERING:
            # Keep the filtered result set.
            self.state.mode = Mode.BROWSING
        elif mode == Mode.CONFIRM_DELETE:
            self.confirm_delete()
        else:
            self._resume_selected()

    def _finish(self, path: Path | None) -> None:
        self.done = True
        self.outcome = path
        if path is not None:
            entry = self.selected_entry()
            self.resumed_title = entry.title if entry else None

    # ── Actions ────────────────────────────────────────────

    def commit_rename(self) -> None:
        new_name = self.state.rename_buffer
        entry = self.selected_entry()
        self.state.mode = Mode.BROWSING
        self.state.rename_buffer = ""
        if not new_name or entry is None:
            return
        try:
            append_state_line(entry.path, SessionStateSnapshot(name=new_name))
        except OSError as e:
            logger.warning("rename of %s failed: %s", entry.path, e)
            self.state.action_hint = f"Rename failed: {e}"
            return
        entry.name = new_name
        entry.title = resolve_title(new_name, entry.instructions)
        self.entries = sort_entries(self.entries)
        self.rebuild()

    def confirm_delete(self) -> None:
        target = self.state.confirm_delete_path
        self.state.confirm_delete_path = None
        self.state.mode = Mode.BROWSING
        if target is None:
            return
        backup = backup_path_for(target)
        try:
            target.rename(backup)
        except OSError as e:
            logger.warning("delete of %s failed: %s", target, e)
            self.state.action_hint = f"Delete failed: {e}"
            return
        logger.info("moved %s to %s", target, backup)
        # Only one level of undo: an unconsumed earlier backup is forgotten.
        self.state.last_deleted = (target, backup)
        self.entries = [e for e in self.entries if e.path != target]
        self.rebuild()
        self.state.action_hint = f"Deleted {shorten_path(target)} (u to undo)"

    def undo_delete(self) -> None:
        if self.state.last_deleted is None:
            return
        original, backup = self.state.last_deleted
        if original.exists():
            self.state.action_hint = f"Undo failed: {shorten_path(original)} already exists"
            return
        try:
            backup.rename(original)
        except OSError as e:
            logger.warning("undo of %s failed: %s", original, e)
            self.state.action_hint = f"Undo failed: {e}"
            return
        self.state.last_deleted = None
        logger.info("restored %s from %s", original, backup)

        try:
            restored = read_entry(original)
        except (RolloutError, ValueError, OSError) as e:
            logger.warning("restored %s but could not re-read it: %s", original, e)
            self.state.action_hint = "Undo: restored file, but it could not be read"
            return
        self.entries = [e for e in self.entries if e.path != original] + [restored]
        self.entries = sort_entries(self.entries)
        self.rebuild()
        idx = self._index_of(original)
        if idx is not None:
            self._set_selection(idx)
        self.state.action_hint = "Undo: restored deleted session"

    def _resume_selected(self) -> None:
        entry = self.selected_entry()
        if entry is None:
            return
        needs_confirm = entry.cwd != self.current_cwd
        if self.state.confirm_resume_path == entry.path or not needs_confirm:
            self._finish(entry.path)
        else:
            self.state.confirm_resume_path = entry.path
            self.state.mode = Mode.CONFIRM_RESUME

    def _copy(self, what: str) -> None:
        entry = self.selected_entry()
        if entry is None:
            return
        if what == "y":
            self._clipboard = str(entry.path)
            self.state.action_hint = f"Path copied: {shorten_path(entry.path)}"
        elif what == "c":
            self._clipboard = str(entry.id)
            self.state.action_hint = f"ID copied: {entry.id}"
        else:
            self._clipboard = entry.id8
            self.state.action_hint = f"id8 copied: {entry.id8}"

    # ── Front-end hooks ────────────────────────────────────

    def _request_redraw(self) -> None:
        self._redraw = True

    def take_redraw(self) -> bool:
        """Consume the pending redraw flag. Many requests collapse into one frame."""
        pending, self._redraw = self._redraw, False
        return pending

    def take_clipboard(self) -> str | None:
        text, self._clipboard = self._clipboard, None
        return text

    def status_line(self) -> str:
        total = sum(isinstance(row, EntryRow) for row in self.rows)
        showing = sum(isinstance(row, EntryRow) for _, row in self.visible_window())
        line = f"Resume a Previous Session — newest first  showing {showing} of {total}"
        if self.state.mode == Mode.FILTERING or self.state.filter_text:
            line += f"  filter: {self.state.filter_text}"
        if self.state.mode == Mode.RENAMING:
            line += f"  rename: {self.state.rename_buffer}"
        return line

    def footer_lines(self) -> list[tuple[str, str]]:
        """Contextual hint lines as (text, style) pairs."""
        state = self.state
        if state.mode == Mode.RENAMING:
            return [("Enter to save, Esc to cancel", "dim")]
        if state.action_hint:
            return [(state.action_hint, "dim")]
        if state.mode == Mode.FILTERING:
            return [("Type to filter; Enter keeps filter; Esc clears", "dim")]
        if state.mode == Mode.CONFIRM_DELETE and state.confirm_delete_path:
            return [
                (f"Delete session file? {shorten_path(state.confirm_delete_path)}", "red"),
                ("Enter to delete • Esc to cancel • 'u' to undo last", "dim"),
            ]
        if state.mode == Mode.CONFIRM_RESUME and state.confirm_resume_path:
            entry = next((e for e in self.entries if e.path == state.confirm_resume_path), None)
            recorded = shorten_path(entry.cwd) if entry else "n/a"
            return [
                ("⚠ you are resuming a session that was not initiated in the same path ⚠", "red"),
                (f"Recorded path: {recorded}", "red"),
                (f"Current path: {shorten_path(self.current_cwd)}", "red"),
                ("Press Enter again to resume • Esc to cancel", "dim"),
            ]

        entry = self.selected_entry()
        if entry is None:
            return [("↑/↓ move  Enter resume  / filter  Esc cancel", "dim")]
        lines = []
        if entry.cwd == self.current_cwd:
            lines.append((f"✓ same path: {shorten_path(entry.path)} — Enter to resume", "green"))
        else:
            lines.append((
                f"⚠ cwd differs: recorded {shorten_path(entry.cwd)} vs current {shorten_path(self.current_cwd)}",
                "red",
            ))
        host = entry.repo_host
        if host and self.current_repo_host and host != self.current_repo_host:
            lines.append((f"⚠ repo differs: {host} vs {self.current_repo_host}", "red"))
        return lines


# ── Event loop ─────────────────────────────────────────────


@dataclass(frozen=True)
class KeyPress:
    key: str
    character: str | None = None


@dataclass(frozen=True)
class Resize:
    rows: int


@dataclass(frozen=True)
class Redraw:
    pass


PickerEvent = KeyPress | Resize | Redraw


def run_event_loop(
    picker: SessionPicker,
    events: Iterable[PickerEvent],
    render: Callable[[SessionPicker], None],
) -> Path | None:
    """Handle events in order until the picker resumes or is cancelled.

    Returns the chosen rollout path, or None when cancelled or the source
    runs dry.
    """
    if picker.take_redraw():
        render(picker)
    for event in events:
        if isinstance(event, KeyPress):
            picker.handle_key(event.key, event.character)
        elif isinstance(event, Resize):
            picker.resize(event.rows)
        elif isinstance(event, Redraw) and picker.take_redraw():
            render(picker)
        if picker.done:
            break
    return picker.outcome
