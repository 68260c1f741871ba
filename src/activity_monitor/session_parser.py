"""Session transcript parsing.

Parses OpenClaw/Claude session JSON-Lines transcripts into AgentActivity
snapshots. Everything here is stateless and can be used without the
monitor, for testing or batch processing.

Transcript records look like:
    {"type": "session", "id": "...", "cwd": "..."}
    {"type": "model_change", "modelId": "claude-opus"}
    {"type": "message", "message": {"role": "assistant", "content": [...]}}

Tool calls are embedded in assistant message content as:
    {"type": "toolCall", "name": "Read", "arguments": {"path": "..."}}
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .events import (
    MessageEvent,
    ModelChangeEvent,
    SessionEvent,
    ToolCall,
    TranscriptEvent,
    parse_event,
)
from .models import Action, AgentActivity, AgentStatus, AgentType

logger = logging.getLogger(__name__)

MAX_RECENT_ACTIONS = 10
MAX_FILES_WORKED = 10
MAX_COMMAND_PATHS = 5
TARGET_MAX_LENGTH = 50

_PATH_TOOLS = frozenset({"Read", "read", "Write", "write", "Edit", "edit"})
_COMMAND_TOOLS = frozenset({"exec", "Bash"})

# Path-like tokens: start with ~, / or . and end in a file extension.
_COMMAND_PATH_RE = re.compile(r"(?:^|\s)([~/.][\w./\-]+\.\w+)")


@dataclass(frozen=True)
class TimedToolCall:
    """A tool call together with the timestamp of its message."""

    name: str
    arguments: dict[str, Any]
    timestamp: datetime


def parse_line(line: str | bytes) -> dict[str, Any] | None:
    """Parse a single JSON-Lines record.

    Args:
        line: Raw line (trailing newline allowed).

    Returns:
        Decoded JSON object, or None if the line is empty, malformed or
        not an object.
    """
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    if not isinstance(line, str):
        return None

    line = line.strip()
    if not line:
        return None

    try:
        data = json.loads(line)
    except json.JSONDecodeError as e:
        logger.debug(f"SessionParser: Failed to decode JSON line: {e}")
        return None

    return data if isinstance(data, dict) else None


def parse_events(lines: Iterable[str | bytes]) -> list[TranscriptEvent]:
    """Decode and classify lines, skipping anything unparsable."""
    events: list[TranscriptEvent] = []
    for line in lines:
        data = parse_line(line)
        if data is not None:
            events.append(parse_event(data))
    return events


def parse_content(
    content: str | bytes,
    filename: str,
    max_actions: int = MAX_RECENT_ACTIONS,
    previous: AgentActivity | None = None,
) -> AgentActivity:
    """Parse transcript content into an agent activity snapshot.

    This is the core parsing function. When previous is given, content is
    treated as bytes appended after the transcript that produced previous:
    the session identity, model and working directory carry over unless
    the new content announces them, recent actions (and the files they
    touched) are extended until max_actions is reached, and the tool call
    count accumulates. Splitting a transcript into deltas gives the same
    result as parsing it whole.

    Args:
        content: JSON-Lines text (or UTF-8 bytes).
        filename: Transcript file name, used when no session event exists.
        max_actions: Maximum recent actions to keep.
        previous: Activity parsed from the earlier part of the same file.

    Returns:
        New AgentActivity.
    """
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    events = parse_events(content.splitlines())
    return extract_agent_activity(events, filename, max_actions, previous)


def parse_file(path: str | Path, max_actions: int = MAX_RECENT_ACTIONS) -> AgentActivity:
    """Parse a whole transcript file.

    Raises:
        OSError: If the file can't be read.
    """
    file_path = Path(path)
    content = file_path.read_bytes()
    return parse_content(content, file_path.name, max_actions=max_actions)


def _session_id_from_filename(filename: str) -> str:
    name = Path(filename).name
    suffix = Path(name).suffix
    return name[: -len(suffix)] if suffix else name


def extract_agent_activity(
    events: Sequence[TranscriptEvent],
    filename: str,
    max_actions: int = MAX_RECENT_ACTIONS,
    previous: AgentActivity | None = None,
) -> AgentActivity:
    """Build an AgentActivity from classified events. See parse_content()."""
    session_event = next((e for e in events if isinstance(e, SessionEvent)), None)

    if session_event and session_event.id:
        session_id = session_event.id
    elif previous is not None:
        session_id = previous.session_id
    else:
        session_id = _session_id_from_filename(filename)

    if session_event and session_event.cwd:
        cwd = session_event.cwd
    else:
        cwd = previous.cwd if previous else None

    model_ids = [
        e.model_id for e in events if isinstance(e, ModelChangeEvent) and e.model_id
    ]
    if model_ids:
        model = model_ids[-1]
    else:
        model = previous.model if previous else "unknown"

    # Earliest-first across deltas: a delta only fills the slots the
    # previous parse left open, so chunked and whole-file parses agree.
    prior_actions = list(previous.recent_actions) if previous else []
    new_calls = extract_tool_calls(events, max_actions - len(prior_actions))
    recent_actions = prior_actions + [format_action(tc) for tc in new_calls]

    files = list(previous.files_worked) if previous else []
    for tc in new_calls:
        for path in extract_target(tc.name, tc.arguments):
            if path not in files:
                files.append(path)
    files_worked = files[-MAX_FILES_WORKED:]

    messages = [e for e in events if isinstance(e, MessageEvent)]
    last_message = messages[-1] if messages else None

    if last_message is None and previous is not None:
        status = previous.status
    else:
        status = determine_status(last_message, recent_actions)

    stamped = [m for m in messages if m.timestamp is not None]
    if stamped:
        last_activity = parse_timestamp(stamped[-1].timestamp)
    elif previous is not None:
        last_activity = previous.last_activity
    else:
        last_activity = datetime.now(UTC)

    tool_call_count = count_tool_calls(events)
    if previous is not None:
        tool_call_count += previous.tool_call_count

    return AgentActivity(
        id=f"openclaw-{session_id}",
        session_id=session_id,
        type=AgentType.OPENCLAW,
        model=model,
        cwd=cwd,
        status=status,
        last_action=recent_actions[-1] if recent_actions else None,
        recent_actions=tuple(recent_actions),
        files_worked=tuple(files_worked),
        last_activity=last_activity,
        tool_call_count=tool_call_count,
    )


def _assistant_messages(events: Iterable[TranscriptEvent]) -> Iterable[MessageEvent]:
    for event in events:
        if (
            isinstance(event, MessageEvent)
            and event.role == "assistant"
            and isinstance(event.content, list)
        ):
            yield event


def extract_tool_calls(
    events: Iterable[TranscriptEvent], max_actions: int = MAX_RECENT_ACTIONS
) -> list[TimedToolCall]:
    """Extract tool calls from assistant messages, earliest first.

    Extraction stops once max_actions calls have been collected.
    """
    calls: list[TimedToolCall] = []
    if max_actions <= 0:
        return calls

    for message in _assistant_messages(events):
        timestamp = parse_timestamp(message.timestamp)
        for tc in message.tool_calls:
            calls.append(TimedToolCall(tc.name, tc.arguments, timestamp))
            if len(calls) >= max_actions:
                return calls
    return calls


def count_tool_calls(events: Iterable[TranscriptEvent]) -> int:
    """Count every tool call in assistant messages, without a cap."""
    return sum(len(message.tool_calls) for message in _assistant_messages(events))


def extract_target(name: str, arguments: Any) -> list[str]:
    """Extract the file paths a tool call touched.

    Read/Write/Edit tools use their "path" (or "file_path") argument; exec
    and Bash scan their command for path-like tokens. Other tools yield
    nothing.

    Args:
        name: Tool name.
        arguments: Tool arguments.

    Returns:
        List of file paths, possibly empty.
    """
    if not isinstance(arguments, dict):
        return []

    if name in _PATH_TOOLS:
        path = arguments.get("path") or arguments.get("file_path")
        return [path] if isinstance(path, str) and path else []

    if name in _COMMAND_TOOLS:
        return extract_files_from_command(arguments.get("command") or "")

    return []


def extract_files_from_command(command: Any) -> list[str]:
    """Extract path-like tokens from a shell command (at most 5)."""
    if not isinstance(command, str):
        return []
    return _COMMAND_PATH_RE.findall(command)[:MAX_COMMAND_PATHS]


def format_action(tool_call: TimedToolCall | ToolCall) -> Action:
    """Turn a tool call into an Action with a truncated target."""
    args = tool_call.arguments
    target = None
    for key in ("path", "file_path", "command"):
        value = args.get(key)
        if value:
            target = truncate(value, TARGET_MAX_LENGTH)
            break

    timestamp = getattr(tool_call, "timestamp", None)
    return Action(action=tool_call.name, target=target, timestamp=parse_timestamp(timestamp))


def has_tool_calls(message: MessageEvent | dict[str, Any]) -> bool:
    """Check whether a message carries at least one tool call."""
    if not isinstance(message, MessageEvent):
        message = _as_message(message)
    return bool(message and message.tool_calls)


def _as_message(message: Any) -> MessageEvent | None:
    if message is None or isinstance(message, MessageEvent):
        return message
    if isinstance(message, dict):
        if "type" not in message and "message" in message:
            message = {"type": "message", **message}
        event = parse_event(message)
        if isinstance(event, MessageEvent):
            return event
    return None


def determine_status(
    last_message: MessageEvent | dict[str, Any] | None,
    pending_tool_calls: Sequence[Any] | int = (),
) -> AgentStatus:
    """Classify agent status from the most recent message.

    Decision table, first match wins:
        no message                        -> idle
        assistant message with tool calls -> executing
        role "toolResult"                 -> thinking
        role "user"                       -> processing
        no pending tool calls             -> idle
        otherwise                         -> active

    Args:
        last_message: Most recent message event (or raw record), or None.
        pending_tool_calls: Tool calls seen so far, or their count.

    Returns:
        AgentStatus for the agent.
    """
    message = _as_message(last_message)
    if message is None:
        return AgentStatus.IDLE

    if isinstance(pending_tool_calls, int):
        pending = pending_tool_calls
    else:
        pending = len(pending_tool_calls)

    if message.role == "assistant" and message.tool_calls:
        return AgentStatus.EXECUTING
    if message.role == "toolResult":
        return AgentStatus.THINKING
    if message.role == "user":
        return AgentStatus.PROCESSING
    if pending == 0:
        return AgentStatus.IDLE
    return AgentStatus.ACTIVE


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string or epoch-millisecond number into a datetime.

    Datetimes are returned unchanged. None and anything malformed yield the
    current UTC time; this function never raises.
    """
    if isinstance(value, datetime):
        return value

    if isinstance(value, bool) or value is None:
        return datetime.now(UTC)

    if isinstance(value, int | float):
        try:
            return datetime.fromtimestamp(value / 1000, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return datetime.now(UTC)

    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            return datetime.now(UTC)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)

    return datetime.now(UTC)


def truncate(text: Any, max_len: int) -> str:
    """Truncate text to max_len characters, ending with "..." when cut.

    Non-string input yields an empty string.
    """
    if not isinstance(text, str):
        return ""
    if len(text) <= max_len:
        return text
    if max_len <= 3:
        return "..."[: max(max_len, 0)]
    return text[: max_len - 3] + "..."
