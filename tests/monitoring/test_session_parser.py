"""Tests for transcript parsing."""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from helpers import (
    assistant_record,
    jsonl,
    message_record,
    model_record,
    session_record,
    tool_call,
)

from activity_monitor.events import MessageEvent, parse_event
from activity_monitor.models import AgentStatus, AgentType
from activity_monitor.session_parser import (
    determine_status,
    extract_files_from_command,
    extract_target,
    extract_tool_calls,
    format_action,
    has_tool_calls,
    parse_content,
    parse_events,
    parse_file,
    parse_line,
    parse_timestamp,
    truncate,
)


def _assistant_event(*content: dict) -> MessageEvent:
    event = parse_event(assistant_record(*content))
    assert isinstance(event, MessageEvent)
    return event


class TestParseLine:
    """Tests for single-line decoding."""

    def test_valid_object(self) -> None:
        assert parse_line('{"type": "session", "id": "s1"}\n') == {"type": "session", "id": "s1"}

    def test_bytes_input(self) -> None:
        assert parse_line(b'{"a": 1}') == {"a": 1}

    @pytest.mark.parametrize("line", ["", "   ", "not json", '{"type": "mess', "[1, 2]", "42"])
    def test_unusable_lines_return_none(self, line: str) -> None:
        assert parse_line(line) is None


class TestParseContent:
    """Tests for building activities from transcript content."""

    def test_basic_session(self, sample_records: list[dict]) -> None:
        """Session s1 on claude-opus reading /repo/a.py."""
        activity = parse_content(jsonl(sample_records), "s1.jsonl")

        assert activity.id == "openclaw-s1"
        assert activity.session_id == "s1"
        assert activity.type == AgentType.OPENCLAW
        assert activity.model == "claude-opus"
        assert activity.cwd == "/repo"
        assert activity.status == AgentStatus.EXECUTING
        assert activity.last_action is not None
        assert activity.last_action.action == "Read"
        assert activity.last_action.target == "/repo/a.py"
        assert activity.files_worked == ("/repo/a.py",)
        assert activity.tool_call_count == 1
        assert activity.last_activity == datetime(2024, 1, 15, 10, 30, tzinfo=UTC)

    def test_session_id_falls_back_to_filename(self) -> None:
        activity = parse_content(jsonl([model_record("claude-sonnet")]), "abc-123.jsonl")

        assert activity.session_id == "abc-123"
        assert activity.id == "openclaw-abc-123"
        assert activity.cwd is None

    def test_empty_content(self) -> None:
        activity = parse_content("", "empty.jsonl")

        assert activity.session_id == "empty"
        assert activity.model == "unknown"
        assert activity.status == AgentStatus.IDLE
        assert activity.recent_actions == ()
        assert activity.last_action is None
        assert activity.tool_call_count == 0

    def test_last_model_change_wins(self) -> None:
        records = [session_record(), model_record("claude-opus"), model_record("gemini")]

        assert parse_content(jsonl(records), "s1.jsonl").model == "gemini"

    def test_malformed_lines_are_skipped(self, sample_records: list[dict]) -> None:
        records = [sample_records[0], "{broken", "null", sample_records[1], sample_records[2]]

        activity = parse_content(jsonl(records), "s1.jsonl")

        assert activity.model == "claude-opus"
        assert activity.tool_call_count == 1

    def test_truncated_trailing_line(self, sample_records: list[dict]) -> None:
        """A line caught mid-write does not spoil the lines before it."""
        content = jsonl(sample_records) + '{"type": "message", "message": {"ro'

        activity = parse_content(content, "s1.jsonl")

        assert activity.session_id == "s1"
        assert activity.last_action is not None
        assert activity.last_action.target == "/repo/a.py"

    def test_action_cap_keeps_earliest(self) -> None:
        records = [session_record()] + [
            assistant_record(tool_call(f"Tool{i}")) for i in range(20)
        ]

        activity = parse_content(jsonl(records), "s1.jsonl", max_actions=5)

        assert [a.action for a in activity.recent_actions] == [f"Tool{i}" for i in range(5)]
        assert activity.tool_call_count == 20

    def test_only_assistant_tool_calls_count(self) -> None:
        records = [
            {
                "type": "message",
                "message": {"role": "user", "content": [tool_call("Read", path="/x.py")]},
            },
            {"type": "message", "message": {"role": "assistant", "content": "plain text"}},
        ]

        activity = parse_content(jsonl(records), "s1.jsonl")

        assert activity.recent_actions == ()
        assert activity.tool_call_count == 0

    def test_files_worked_are_unique(self) -> None:
        records = [
            assistant_record(
                tool_call("Read", path="/repo/a.py"),
                tool_call("Edit", file_path="/repo/a.py"),
                tool_call("exec", command="python ./b.py"),
            )
        ]

        activity = parse_content(jsonl(records), "s1.jsonl")

        assert activity.files_worked == ("/repo/a.py", "./b.py")

    def test_status_from_last_message(self, sample_records: list[dict]) -> None:
        records = sample_records + [message_record("toolResult")]

        assert parse_content(jsonl(records), "s1.jsonl").status == AgentStatus.THINKING

    def test_bytes_content(self, sample_records: list[dict]) -> None:
        activity = parse_content(jsonl(sample_records).encode(), "s1.jsonl")

        assert activity.session_id == "s1"


class TestIncrementalParse:
    """Tests for parsing appended content on top of a previous result."""

    def test_delta_extends_previous(self, sample_records: list[dict]) -> None:
        first = parse_content(jsonl(sample_records), "s1.jsonl")
        delta = jsonl([assistant_record(tool_call("Edit", path="/repo/b.py"))])

        second = parse_content(delta, "s1.jsonl", previous=first)

        assert second.id == first.id
        assert second.model == "claude-opus"
        assert second.cwd == "/repo"
        assert [a.action for a in second.recent_actions] == ["Read", "Edit"]
        assert second.files_worked == ("/repo/a.py", "/repo/b.py")
        assert second.tool_call_count == 2
        assert second.status == AgentStatus.EXECUTING

    def test_delta_fills_only_open_slots(self, sample_records: list[dict]) -> None:
        first = parse_content(jsonl(sample_records), "s1.jsonl", max_actions=3)
        delta = jsonl([assistant_record(tool_call(f"T{i}")) for i in range(3)])

        second = parse_content(delta, "s1.jsonl", max_actions=3, previous=first)

        assert [a.action for a in second.recent_actions] == ["Read", "T0", "T1"]
        assert second.last_action is not None
        assert second.last_action.action == "T1"
        assert second.tool_call_count == 4

    @pytest.mark.parametrize("split", range(1, 10))
    def test_chunked_parse_matches_whole_file(self, split: int) -> None:
        records = [session_record("s1"), model_record("claude-opus")] + [
            assistant_record(
                tool_call("Read", path=f"/f{i}.py"),
                timestamp=f"2024-01-15T10:{30 + i}:00Z",
            )
            for i in range(8)
        ]

        whole = parse_content(jsonl(records), "s1.jsonl", max_actions=3)
        head = parse_content(jsonl(records[:split]), "s1.jsonl", max_actions=3)
        chunked = parse_content(jsonl(records[split:]), "s1.jsonl", max_actions=3, previous=head)

        assert chunked == whole
        assert whole.files_worked == ("/f0.py", "/f1.py", "/f2.py")
        assert whole.tool_call_count == 8
        assert whole.last_activity == datetime(2024, 1, 15, 10, 37, tzinfo=UTC)

    def test_empty_delta_returns_equivalent_activity(self, sample_records: list[dict]) -> None:
        first = parse_content(jsonl(sample_records), "s1.jsonl")

        assert parse_content("", "s1.jsonl", previous=first) == first

    def test_model_change_in_delta(self, sample_records: list[dict]) -> None:
        first = parse_content(jsonl(sample_records), "s1.jsonl")

        second = parse_content(jsonl([model_record("gemini")]), "s1.jsonl", previous=first)

        assert second.model == "gemini"
        assert second.status == first.status


class TestParseFile:
    """Tests for whole-file parsing."""

    def test_parse_file(self, tmp_path: Path, sample_records: list[dict]) -> None:
        path = tmp_path / "s1.jsonl"
        path.write_text(jsonl(sample_records))

        assert parse_file(path).id == "openclaw-s1"

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(OSError):
            parse_file(tmp_path / "missing.jsonl")


class TestExtractTarget:
    """Tests for file path extraction from tool calls."""

    @pytest.mark.parametrize("name", ["Read", "read", "Write", "write", "Edit", "edit"])
    def test_path_tools(self, name: str) -> None:
        assert extract_target(name, {"path": "/repo/a.py"}) == ["/repo/a.py"]

    def test_file_path_argument(self) -> None:
        assert extract_target("Write", {"file_path": "/repo/b.py"}) == ["/repo/b.py"]

    def test_path_tool_without_path(self) -> None:
        assert extract_target("Read", {}) == []

    def test_command_tools(self) -> None:
        command = "cat ~/notes.txt ./src/main.py /etc/app.conf plain.txt"

        assert extract_target("exec", {"command": command}) == [
            "~/notes.txt",
            "./src/main.py",
            "/etc/app.conf",
        ]
        assert extract_target("Bash", {"command": "ls"}) == []

    def test_command_paths_capped_at_five(self) -> None:
        command = " ".join(f"/tmp/f{i}.txt" for i in range(8))

        assert extract_files_from_command(command) == [f"/tmp/f{i}.txt" for i in range(5)]

    def test_unknown_tool(self) -> None:
        assert extract_target("WebSearch", {"path": "/repo/a.py"}) == []

    def test_non_mapping_arguments(self) -> None:
        assert extract_target("Read", "oops") == []


class TestActions:
    """Tests for tool call extraction and formatting."""

    def test_extract_tool_calls_in_order(self) -> None:
        events = parse_events(
            [
                jsonl([assistant_record(tool_call("A"), tool_call("B"))]),
                jsonl([assistant_record(tool_call("C"))]),
            ]
        )

        assert [tc.name for tc in extract_tool_calls(events, 10)] == ["A", "B", "C"]
        assert [tc.name for tc in extract_tool_calls(events, 2)] == ["A", "B"]

    def test_format_action_truncates_command(self) -> None:
        events = parse_events([jsonl([assistant_record(tool_call("exec", command="x" * 80))])])
        (call,) = extract_tool_calls(events)

        action = format_action(call)

        assert action.action == "exec"
        assert action.target is not None
        assert len(action.target) == 50
        assert action.target.endswith("...")

    def test_format_action_without_target(self) -> None:
        events = parse_events([jsonl([assistant_record(tool_call("Think"))])])
        (call,) = extract_tool_calls(events)

        assert format_action(call).target is None

    def test_has_tool_calls(self) -> None:
        assert has_tool_calls(_assistant_event(tool_call("Read", path="/a.py")))
        assert not has_tool_calls(_assistant_event({"type": "text", "text": "hi"}))
        assert has_tool_calls(assistant_record(tool_call("Read")))


class TestDetermineStatus:
    """Tests for the status decision table."""

    def test_no_message_is_idle(self) -> None:
        assert determine_status(None, 3) == AgentStatus.IDLE

    def test_assistant_with_tool_call_is_executing(self) -> None:
        message = _assistant_event(tool_call("Read", path="/a.py"))

        assert determine_status(message, 0) == AgentStatus.EXECUTING

    def test_tool_result_is_thinking(self) -> None:
        assert determine_status(parse_event(message_record("toolResult")), 0) == AgentStatus.THINKING

    def test_user_is_processing(self) -> None:
        assert determine_status(parse_event(message_record("user")), 0) == AgentStatus.PROCESSING

    def test_assistant_without_pending_is_idle(self) -> None:
        message = _assistant_event({"type": "text", "text": "done"})

        assert determine_status(message, []) == AgentStatus.IDLE

    def test_assistant_with_pending_is_active(self) -> None:
        message = _assistant_event({"type": "text", "text": "working"})

        assert determine_status(message, ["Read"]) == AgentStatus.ACTIVE
        assert determine_status(message, 2) == AgentStatus.ACTIVE

    def test_raw_record_accepted(self) -> None:
        assert determine_status(message_record("user"), 0) == AgentStatus.PROCESSING


class TestParseTimestamp:
    """Tests for timestamp normalization."""

    def test_iso_string(self) -> None:
        assert parse_timestamp("2024-01-15T10:30:00Z") == datetime(2024, 1, 15, 10, 30, tzinfo=UTC)

    def test_naive_iso_string_is_utc(self) -> None:
        assert parse_timestamp("2024-01-15T10:30:00").tzinfo is not None

    def test_epoch_milliseconds(self) -> None:
        assert parse_timestamp(1705314600000) == datetime(2024, 1, 15, 10, 30, tzinfo=UTC)

    def test_datetime_passthrough(self) -> None:
        value = datetime(2024, 1, 15, tzinfo=UTC)

        assert parse_timestamp(value) is value

    @pytest.mark.parametrize("value", [None, "garbage", True, {"a": 1}, 10**20])
    def test_unusable_values_yield_now(self, value: object) -> None:
        result = parse_timestamp(value)

        assert abs(datetime.now(UTC) - result) < timedelta(seconds=5)


class TestTruncate:
    """Tests for text truncation."""

    def test_short_text_unchanged(self) -> None:
        assert truncate("abc", 10) == "abc"

    def test_exact_length_unchanged(self) -> None:
        assert truncate("a" * 50, 50) == "a" * 50

    def test_long_text(self) -> None:
        result = truncate("a" * 60, 50)

        assert len(result) == 50
        assert result == "a" * 47 + "..."

    def test_non_string(self) -> None:
        assert truncate(None, 10) == ""
        assert truncate(123, 10) == ""
