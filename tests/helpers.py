"""Builders for transcript records used across tests."""

import json
from typing import Any


def jsonl(records: list[Any], trailing_newline: bool = True) -> str:
    """Render records as JSON Lines. Strings are written verbatim."""
    text = "\n".join(r if isinstance(r, str) else json.dumps(r) for r in records)
    return text + "\n" if trailing_newline and records else text


def session_record(session_id: str = "s1", cwd: str = "/repo") -> dict:
    return {"type": "session", "id": session_id, "cwd": cwd}


def model_record(model_id: str = "claude-opus") -> dict:
    return {"type": "model_change", "modelId": model_id}


def tool_call(name: str, **arguments: Any) -> dict:
    return {"type": "toolCall", "name": name, "arguments": arguments}


def assistant_record(*content: dict, timestamp: str = "2024-01-15T10:30:00Z") -> dict:
    return {
        "type": "message",
        "timestamp": timestamp,
        "message": {"role": "assistant", "content": list(content)},
    }


def message_record(role: str, text: str = "", timestamp: str = "2024-01-15T10:31:00Z") -> dict:
    return {
        "type": "message",
        "timestamp": timestamp,
        "message": {"role": role, "content": [{"type": "text", "text": text}]},
    }
