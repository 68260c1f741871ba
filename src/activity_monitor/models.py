"""Data models for the agent activity monitor.

This module defines the core data structures shared by the parser and the
monitor: agent activity snapshots, the actions they record, transcript
cache entries and the checkpoint state persisted between restarts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class AgentType(str, Enum):
    """Kind of coding agent that produced an activity row.

    Attributes:
        OPENCLAW: Agent discovered from an OpenClaw session transcript.
        CLAUDE_CODE: Claude Code CLI process.
        OPENCODE: OpenCode CLI process.
        CODEX: Codex CLI process.
        UNKNOWN: Agent kind could not be determined.
    """

    OPENCLAW = "openclaw"
    CLAUDE_CODE = "claude_code"
    OPENCODE = "opencode"
    CODEX = "codex"
    UNKNOWN = "unknown"


class AgentStatus(str, Enum):
    """Classification of what an agent is currently doing.

    Attributes:
        IDLE: No message yet, or the agent finished without pending tool calls.
        EXECUTING: Last assistant message issued at least one tool call.
        THINKING: Last message was a tool result the agent is digesting.
        PROCESSING: Last message came from the user.
        ACTIVE: Default running state.
        BUSY: Process-table row with significant CPU usage.
    """

    IDLE = "idle"
    EXECUTING = "executing"
    THINKING = "thinking"
    PROCESSING = "processing"
    ACTIVE = "active"
    BUSY = "busy"


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class Action:
    """A single tool call made by an agent.

    Attributes:
        action: Tool name (e.g. "Read", "exec").
        target: Truncated path or command the tool acted on, if any.
        timestamp: When the message carrying the tool call was written.
    """

    action: str
    target: str | None
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "target": self.target,
            "timestamp": _isoformat(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Action:
        from .session_parser import parse_timestamp

        return cls(
            action=str(data.get("action") or ""),
            target=data.get("target"),
            timestamp=parse_timestamp(data.get("timestamp")),
        )


@dataclass(frozen=True)
class AgentActivity:
    """Snapshot of one agent's recent activity.

    A new AgentActivity replaces the previous one every time its transcript
    is parsed; instances are never mutated in place.

    Attributes:
        id: Stable identifier (e.g. "openclaw-<session_id>", "process-<pid>").
        session_id: Session identifier from the transcript or process id.
        type: Kind of agent.
        model: Current model name, "unknown" if never announced.
        cwd: Working directory of the agent, if known.
        status: Current status classification.
        last_action: Most recent action, or None.
        recent_actions: Bounded list of actions, most recent last.
        files_worked: Distinct file paths touched, in first-seen order.
        last_activity: Timestamp of the most recent observed activity.
        tool_call_count: Cumulative number of tool calls observed.
        metadata: Extra source-specific fields (cpu, memory, start_time).
    """

    id: str
    session_id: str
    type: AgentType = AgentType.OPENCLAW
    model: str = "unknown"
    cwd: str | None = None
    status: AgentStatus = AgentStatus.IDLE
    last_action: Action | None = None
    recent_actions: tuple[Action, ...] = ()
    files_worked: tuple[str, ...] = ()
    last_activity: datetime = field(default_factory=lambda: datetime.now(UTC))
    tool_call_count: int = 0
    metadata: dict[str, Any] = field(default_factory=dict, hash=False)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to plain JSON-compatible data with ISO-8601 timestamps."""
        return {
            "id": self.id,
            "session_id": self.session_id,
            "type": self.type.value,
            "model": self.model,
            "cwd": self.cwd,
            "status": self.status.value,
            "last_action": self.last_action.to_dict() if self.last_action else None,
            "recent_actions": [a.to_dict() for a in self.recent_actions],
            "files_worked": list(self.files_worked),
            "last_activity": _isoformat(self.last_activity),
            "tool_call_count": self.tool_call_count,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AgentActivity:
        """Rebuild an activity from serialized data.

        Timestamps may be ISO-8601 strings, epoch milliseconds or datetimes;
        unknown enum values fall back to UNKNOWN/IDLE.

        Args:
            data: Mapping produced by to_dict() or an equivalent serializer.

        Returns:
            Reconstructed AgentActivity.
        """
        from .session_parser import parse_timestamp

        try:
            agent_type = AgentType(data.get("type", AgentType.OPENCLAW.value))
        except ValueError:
            agent_type = AgentType.UNKNOWN
        try:
            status = AgentStatus(data.get("status", AgentStatus.IDLE.value))
        except ValueError:
            status = AgentStatus.IDLE

        last_action = data.get("last_action")
        return cls(
            id=str(data["id"]),
            session_id=str(data.get("session_id") or ""),
            type=agent_type,
            model=data.get("model") or "unknown",
            cwd=data.get("cwd"),
            status=status,
            last_action=Action.from_dict(last_action) if last_action else None,
            recent_actions=tuple(
                Action.from_dict(a) for a in data.get("recent_actions") or []
            ),
            files_worked=tuple(data.get("files_worked") or ()),
            last_activity=parse_timestamp(data.get("last_activity")),
            tool_call_count=int(data.get("tool_call_count") or 0),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True)
class CacheEntry:
    """Memoized parse result for a transcript file.

    The entry is only valid while the file's modification time equals mtime.

    Attributes:
        path: Absolute path to the transcript file.
        mtime: Modification time (st_mtime_ns) observed when the file was parsed.
        activity: Activity parsed from the file at that mtime.
    """

    path: str
    mtime: int
    activity: AgentActivity


@dataclass
class MonitorState:
    """Checkpoint payload persisted by the monitor.

    Attributes:
        agents: Committed activities keyed by activity id.
        session_offsets: Last consumed byte offset per transcript path.
        last_poll: Epoch milliseconds of the last completed poll.
    """

    agents: dict[str, AgentActivity] = field(default_factory=dict)
    session_offsets: dict[str, int] = field(default_factory=dict)
    last_poll: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "agents": {agent_id: a.to_dict() for agent_id, a in self.agents.items()},
            "session_offsets": dict(self.session_offsets),
            "last_poll": self.last_poll,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MonitorState:
        """Rebuild state from serialized data, renormalizing timestamps."""
        agents: dict[str, AgentActivity] = {}
        for agent_id, agent in (data.get("agents") or {}).items():
            if isinstance(agent, AgentActivity):
                activity = agent
            else:
                activity = AgentActivity.from_dict({"id": agent_id, **agent})
            agents[activity.id] = activity

        offsets = {
            str(path): int(offset)
            for path, offset in (data.get("session_offsets") or {}).items()
        }
        last_poll = data.get("last_poll")
        return cls(
            agents=agents,
            session_offsets=offsets,
            last_poll=int(last_poll) if last_poll is not None else None,
        )
