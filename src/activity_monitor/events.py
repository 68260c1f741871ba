"""Transcript event types.

Each JSON-Lines record in a session transcript is classified into one of a
closed set of event kinds. Anything that is not a recognized shape becomes
an UnknownEvent so callers never dig through raw dictionaries for keys.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class SessionEvent:
    """`{"type": "session", "id": ..., "cwd": ...}`"""

    id: str | None
    cwd: str | None
    raw: dict[str, Any] = field(repr=False, compare=False, hash=False)


@dataclass(frozen=True)
class ModelChangeEvent:
    """`{"type": "model_change", "modelId": ...}`"""

    model_id: str | None
    raw: dict[str, Any] = field(repr=False, compare=False, hash=False)


@dataclass(frozen=True)
class ToolCall:
    """A `toolCall` content item inside an assistant message."""

    name: str
    arguments: dict[str, Any]


@dataclass(frozen=True)
class MessageEvent:
    """`{"type": "message", "timestamp": ..., "message": {"role": ..., "content": ...}}`

    Attributes:
        role: Message role ("assistant", "user", "toolResult", ...).
        timestamp: Raw timestamp value (ISO-8601 string, epoch ms or None).
        content: Raw content; a list of items or a plain string.
        raw: The original record.
    """

    role: str | None
    timestamp: Any
    content: Any
    raw: dict[str, Any] = field(repr=False, compare=False, hash=False)

    @property
    def tool_calls(self) -> list[ToolCall]:
        """Tool calls carried by this message, in order."""
        if not isinstance(self.content, list):
            return []
        calls = []
        for item in self.content:
            if isinstance(item, dict) and item.get("type") == "toolCall":
                arguments = item.get("arguments")
                calls.append(
                    ToolCall(
                        name=str(item.get("name") or ""),
                        arguments=arguments if isinstance(arguments, dict) else {},
                    )
                )
        return calls


@dataclass(frozen=True)
class UnknownEvent:
    """Any record that is not a recognized event."""

    raw: Any = field(repr=False)


TranscriptEvent = SessionEvent | ModelChangeEvent | MessageEvent | UnknownEvent


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def parse_event(data: Any) -> TranscriptEvent:
    """Classify a decoded JSON record.

    Args:
        data: Value produced by decoding one transcript line.

    Returns:
        The matching event variant, or UnknownEvent.
    """
    if not isinstance(data, dict):
        return UnknownEvent(raw=data)

    event_type = data.get("type")
    if event_type == "session":
        return SessionEvent(
            id=_optional_str(data.get("id")),
            cwd=_optional_str(data.get("cwd")),
            raw=data,
        )
    if event_type == "model_change":
        return ModelChangeEvent(model_id=_optional_str(data.get("modelId")), raw=data)
    if event_type == "message":
        message = data.get("message")
        if not isinstance(message, dict):
            message = {}
        return MessageEvent(
            role=_optional_str(message.get("role")),
            timestamp=data.get("timestamp"),
            content=message.get("content"),
            raw=data,
        )
    return UnknownEvent(raw=data)
