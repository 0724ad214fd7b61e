"""Textual TUI for the resume picker."""

import os
from pathlib import Path

from rich.text import Text
from textual import events, work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.message import Message
from textual.widgets import Header, Static

from .picker import DEFAULT_VISIBLE_ROWS, SessionPicker
from .sessions import (
    DayHeader,
    SessionEntry,
    build_row_text,
    collect_git_info,
    discover,
    relative_time,
    repo_host_from_url,
    row_prefix,
)


class SessionList(Static):
    """Row area. Reports its height so the picker can size its scroll window."""

    class Resized(Message):
        def __init__(self, height: int) -> None:
            super().__init__()
            self.height = height

    def on_resize(self, event: events.Resize) -> None:
        self.post_message(self.Resized(event.size.height))


class SessionsLoaded(Message):
    """Discovery finished on the worker thread."""
    def __init__(self, entries: list[SessionEntry], repo_host: str | None) -> None:
        super().__init__()
        self.entries = entries
        self.repo_host = repo_host


def _row_text(picker: SessionPicker, idx: int, row) -> Text:
    if isinstance(row, DayHeader):
        return Text(f"── {row.label} ──", style="bold dim")

    entry = row.entry
    primary, secondary = build_row_text(entry)
    marker = "› " if idx == picker.state.scroll.selected_idx else "  "
    line = Text(marker + primary)
    if row.match_indices:
        offset = len(marker) + len(row_prefix(entry))
        for i in row.match_indices:
            line.stylize("bold cyan", offset + i, offset + i + 1)
    if entry.cwd == picker.current_cwd:
        line.stylize("green", 0, len(marker))
    line.append(f"  {secondary}  {relative_time(entry.mtime)}", style="dim")
    if idx == picker.state.scroll.selected_idx:
        line.stylize("reverse")
    return line


class SessionPickerApp(App):
    """Full-screen picker over discovered rollouts."""

    CSS = """
    Screen { layout: vertical; }
    #status { height: 1; margin: 0 1; }
    #session-list { height: 1fr; margin: 0 1; }
    #hint { height: 4; margin: 0 1; }
    """

    BINDINGS = [
        Binding("ctrl+c", "cancel", "Cancel", show=False, priority=True),
    ]

    def __init__(self, home: Path, limit: int, current_cwd: str | os.PathLike, **kwargs):
        super().__init__(**kwargs)
        self._home = home
        self._limit = limit
        self._current_cwd = Path(current_cwd)
        self._list_height = DEFAULT_VISIBLE_ROWS
        self.picker: SessionPicker | None = None
        self.result_path: Path | None = None

    def compose(self) -> ComposeResult:
        yield Header(show_clock=False)
        yield Static("", id="status")
        yield SessionList("[dim]Loading sessions…[/]", id="session-list")
        yield Static("", id="hint")

    # ── Lifecycle ──────────────────────────────────────────

    def on_mount(self) -> None:
        self.title = "Resume a Previous Session"
        self.sub_title = ""
        self._load_sessions()

    @work(thread=True)
    def _load_sessions(self) -> None:
        """Scan rollouts off the UI thread; the picker is built when the result arrives."""
        entries = discover(self._home, self._limit)
        git = collect_git_info(self._current_cwd)
        host = repo_host_from_url(git.repository_url) if git and git.repository_url else None
        self.post_message(SessionsLoaded(entries, host))

    def on_sessions_loaded(self, message: SessionsLoaded) -> None:
        if not message.entries:
            self._finish(None)
            return
        self.picker = SessionPicker(
            message.entries,
            self._current_cwd,
            visible_rows=self._list_height,
            current_repo_host=message.repo_host,
        )
        self._refresh_view()

    def on_session_list_resized(self, message: SessionList.Resized) -> None:
        self._list_height = max(1, message.height)
        if self.picker is not None:
            self.picker.resize(self._list_height)
            self._refresh_view()

    # ── Rendering ──────────────────────────────────────────

    def _refresh_view(self) -> None:
        picker = self.picker
        if picker is None or not picker.take_redraw():
            return

        self.query_one("#status", Static).update(Text(picker.status_line(), style="bold"))

        rows = [_row_text(picker, i, row) for i, row in picker.visible_window()]
        body = Text("\n").join(rows) if rows else Text("No sessions found", style="dim")
        self.query_one("#session-list", SessionList).update(body)

        hint = Text("\n").join(Text(text, style=style) for text, style in picker.footer_lines())
        self.query_one("#hint", Static).update(hint)

        entry = picker.selected_entry()
        self.sub_title = entry.title if entry else ""

    # ── Key handling ───────────────────────────────────────

    def _finish(self, path: Path | None) -> None:
        self.result_path = path
        self.exit(path)

    def _dispatch(self, key: str, character: str | None) -> None:
        picker = self.picker
        if picker is None:
            if key in ("escape", "ctrl+c"):
                self._finish(None)
            return
        picker.handle_key(key, character)
        text = picker.take_clipboard()
        if text is not None:
            self.copy_to_clipboard(text)
        if picker.done:
            if picker.resumed_title:
                self.sub_title = picker.resumed_title
            self._finish(picker.outcome)
            return
        self._refresh_view()

    def action_cancel(self) -> None:
        self._dispatch("ctrl+c", None)

    def on_key(self, event: events.Key) -> None:
        self._dispatch(event.key, event.character)
        event.prevent_default()
        event.stop()


def run_picker(home: Path, limit: int, current_cwd: str | os.PathLike) -> Path | None:
    """Interactive entry point: the chosen rollout path, or None when cancelled."""
    app = SessionPickerApp(home, limit, current_cwd)
    app.run()
    return app.result_path
