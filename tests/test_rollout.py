"""Tests for rollout log reading, folding and appending."""

import json
import uuid
from datetime import datetime, timezone

import pytest

from rollout_resume.rollout import (
    GitInfo,
    OpaqueRecord,
    RolloutParseError,
    SessionMeta,
    SessionStateSnapshot,
    StateRecord,
    append_state_line,
    create_rollout,
    decode_line,
    fold_states,
    parse_timestamp,
    read_session_header_and_state,
    scan_rollout,
)


def _lines(path):
    return path.read_text(encoding="utf-8").splitlines()


class TestFold:
    """State folding is per-field last-write-wins."""

    def test_last_name_wins(self):
        states = [SessionStateSnapshot(name=f"name-{i}") for i in range(5)]
        assert fold_states(states).name == "name-4"

    def test_absent_field_keeps_earlier_value(self):
        states = [SessionStateSnapshot(name="keep"), SessionStateSnapshot()]
        assert fold_states(states).name == "keep"

    def test_opaque_records_do_not_change_fold(self, make_rollout):
        path = make_rollout("2025-08-28T10:00:00Z", names=("one", "two"))
        with path.open("a", encoding="utf-8") as fh:
            fh.write(json.dumps({"type": "message", "name": "not-a-state"}) + "\n")
            fh.write(json.dumps({"record_type": "state", "name": "three"}) + "\n")
            fh.write(json.dumps({"type": "event", "name": "also-not-a-state"}) + "\n")

        _, state = read_session_header_and_state(path)
        assert state.name == "three"

    def test_null_name_does_not_erase(self, make_rollout):
        path = make_rollout("2025-08-28T10:00:00Z", names=("keep",))
        with path.open("a", encoding="utf-8") as fh:
            fh.write('{"record_type":"state","name":null}\n')
            fh.write('{"record_type":"state"}\n')

        _, state = read_session_header_and_state(path)
        assert state.name == "keep"


class TestDecode:
    def test_state_discriminator(self):
        record = decode_line('{"record_type":"state","name":"x"}\n')
        assert record == StateRecord(SessionStateSnapshot(name="x"))

    @pytest.mark.parametrize("line", ["not json\n", "[1, 2]\n", "42\n", '{"record_type":"other"}\n'])
    def test_everything_else_is_opaque(self, line):
        assert isinstance(decode_line(line), OpaqueRecord)


class TestAppend:
    """append_state_line only ever adds one terminated line."""

    def test_appends_keep_header_and_add_one_line_each(self, make_rollout):
        path = make_rollout("2025-08-28T10:00:00Z", instructions="Fix bug")
        header_before = _lines(path)[0]

        for i in range(3):
            append_state_line(path, SessionStateSnapshot(name=f"n{i}"))

        lines = _lines(path)
        assert lines[0] == header_before
        assert len(lines) == 4
        assert path.read_text(encoding="utf-8").endswith("\n")
        assert read_session_header_and_state(path)[1].name == "n2"

    def test_state_line_is_compact(self, make_rollout):
        path = make_rollout("2025-08-28T10:00:00Z")
        append_state_line(path, SessionStateSnapshot(name="Beta"))
        assert _lines(path)[-1] == '{"record_type":"state","name":"Beta"}'

    def test_missing_file_is_an_error_and_is_not_created(self, tmp_path):
        path = tmp_path / "rollout-missing.jsonl"
        with pytest.raises(FileNotFoundError):
            append_state_line(path, SessionStateSnapshot(name="x"))
        assert not path.exists()

    def test_append_after_torn_tail_lands_on_its_own_line(self, make_rollout):
        path = make_rollout("2025-08-28T10:00:00Z", names=("before",))
        with path.open("a", encoding="utf-8") as fh:
            fh.write('{"type":"message","con')

        append_state_line(path, SessionStateSnapshot(name="after"))

        _, state = read_session_header_and_state(path)
        assert state.name == "after"
        assert _lines(path)[-1] == '{"record_type":"state","name":"after"}'


class TestRead:
    def test_truncated_trailing_line_is_ignored(self, make_rollout):
        path = make_rollout("2025-08-28T10:00:00Z", names=("complete",))
        with path.open("a", encoding="utf-8") as fh:
            fh.write('{"record_type":"state","name":"torn')

        _, state = read_session_header_and_state(path)
        assert state.name == "complete"

    def test_unterminated_tail_is_ignored_even_if_valid(self, make_rollout):
        path = make_rollout("2025-08-28T10:00:00Z", names=("complete",))
        with path.open("a", encoding="utf-8") as fh:
            fh.write('{"record_type":"state","name":"pending"}')

        _, state = read_session_header_and_state(path)
        assert state.name == "complete"

    def test_garbage_lines_are_skipped(self, make_rollout):
        path = make_rollout("2025-08-28T10:00:00Z", names=("a",))
        with path.open("a", encoding="utf-8") as fh:
            fh.write("not json at all\n\n[1,2,3]\n")
            fh.write('{"record_type":"state","name":"b"}\n')

        scan = scan_rollout(path)
        assert scan.state.name == "b"
        assert scan.opaque_records == 2

    def test_header_fields(self, make_rollout):
        sid = "5b0c4a2e-1f7d-4c4e-9a55-0123456789ab"
        path = make_rollout(
            "2025-08-28T10:00:00Z",
            session_id=sid,
            instructions="Fix bug",
            cwd="/work/alpha",
            git={"branch": "main", "commit_hash": "abc1234def", "repository_url": "https://github.com/o/r"},
        )
        meta, state = read_session_header_and_state(path)
        assert meta.id == uuid.UUID(sid)
        assert str(meta.cwd) == "/work/alpha"
        assert meta.instructions == "Fix bug"
        assert meta.git == GitInfo(branch="main", commit_hash="abc1234def",
                                   repository_url="https://github.com/o/r")
        assert state.name is None

    def test_non_json_header_is_a_parse_error(self, tmp_path):
        path = tmp_path / "rollout-bad.jsonl"
        path.write_text("hello world\n", encoding="utf-8")
        with pytest.raises(RolloutParseError):
            read_session_header_and_state(path)

    def test_header_shape_is_checked(self, tmp_path):
        path = tmp_path / "rollout-bad.jsonl"
        path.write_text('{"record_type":"state","name":"x"}\n', encoding="utf-8")
        with pytest.raises(RolloutParseError):
            read_session_header_and_state(path)

    def test_bad_uuid_is_a_parse_error(self, tmp_path):
        path = tmp_path / "rollout-bad.jsonl"
        path.write_text('{"id":"nope","timestamp":"2025-08-28T10:00:00Z","cwd":"/"}\n', encoding="utf-8")
        with pytest.raises(RolloutParseError):
            read_session_header_and_state(path)

    def test_empty_file_is_a_parse_error(self, tmp_path):
        path = tmp_path / "rollout-empty.jsonl"
        path.write_text("", encoding="utf-8")
        with pytest.raises(RolloutParseError):
            read_session_header_and_state(path)


class TestCreate:
    def test_creates_header_only_file_under_day_directory(self, home):
        meta = SessionMeta(
            id=uuid.UUID("5b0c4a2e-1f7d-4c4e-9a55-0123456789ab"),
            timestamp="2025-08-28T17:59:34.062Z",
            cwd="/work/alpha",
            instructions="Ship it",
        )
        path = create_rollout(home, meta)

        assert path.parent == home / "sessions" / "2025" / "08" / "28"
        assert path.name == "rollout-2025-08-28T17-59-34-5b0c4a2e-1f7d-4c4e-9a55-0123456789ab.jsonl"
        assert len(_lines(path)) == 1
        read_meta, state = read_session_header_and_state(path)
        assert read_meta.id == meta.id
        assert read_meta.instructions == "Ship it"
        assert state == SessionStateSnapshot()

    def test_refuses_to_overwrite(self, home):
        meta = SessionMeta.new("/work/alpha")
        create_rollout(home, meta)
        with pytest.raises(FileExistsError):
            create_rollout(home, meta)

    def test_new_meta_has_parseable_utc_timestamp(self):
        meta = SessionMeta.new("/work/alpha", instructions="hi")
        assert meta.timestamp.endswith("Z")
        assert meta.created_at.utcoffset().total_seconds() == 0


class TestTimestamps:
    @pytest.mark.parametrize("raw, micros", [
        ("2025-08-28T10:00:00Z", 0),
        ("2025-08-28T10:00:00.1Z", 100000),
        ("2025-08-28T10:00:00.12Z", 120000),
        ("2025-08-28T10:00:00.062Z", 62000),
        ("2025-08-28T10:00:00.1234Z", 123400),
        ("2025-08-28T10:00:00.123456789Z", 123456),
        ("2025-08-28T10:00:00.5+02:00", 500000),
    ])
    def test_any_fraction_width(self, raw, micros):
        dt = parse_timestamp(raw)
        assert dt.microsecond == micros
        assert dt.utcoffset() is not None

    def test_naive_is_utc(self):
        assert parse_timestamp("2025-08-28T10:00:00") == datetime(2025, 8, 28, 10, tzinfo=timezone.utc)

    def test_offset_is_kept(self):
        dt = parse_timestamp("2025-08-28T12:00:00.5+02:00")
        assert dt == datetime(2025, 8, 28, 10, 0, 0, 500000, tzinfo=timezone.utc)
