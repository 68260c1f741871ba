"""Process-table discovery of running coding agents.

Walks the process table with psutil and turns processes that look like
Claude Code, OpenCode or Codex CLIs into AgentActivity rows.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import psutil

from .models import AgentActivity, AgentStatus, AgentType

logger = logging.getLogger(__name__)

AGENT_PATTERNS = ("claude", "opencode", "codex")
BUSY_CPU_PERCENT = 5.0
PROCESS_ATTRS = ["pid", "cmdline", "cpu_percent", "memory_percent", "create_time"]


@dataclass(frozen=True)
class ProcessInfo:
    """The fields of a process we care about."""

    pid: int
    cpu: float
    mem: float
    start: datetime
    command: str


def is_coding_agent_process(command: str) -> bool:
    command_lower = command.lower()
    return (
        any(pattern in command_lower for pattern in AGENT_PATTERNS)
        and "grep" not in command_lower
    )


def process_info(info: dict[str, Any]) -> ProcessInfo | None:
    """Build a ProcessInfo from a psutil info dict, or None without a command line.

    Attributes psutil could not read (access denied) arrive as None.
    """
    command = " ".join(info.get("cmdline") or [])
    if not command:
        return None

    create_time = info.get("create_time")
    start = datetime.fromtimestamp(create_time, UTC) if create_time else datetime.now(UTC)
    return ProcessInfo(
        pid=info["pid"],
        cpu=float(info.get("cpu_percent") or 0.0),
        mem=float(info.get("memory_percent") or 0.0),
        start=start,
        command=command,
    )


def detect_agent_type(command: str) -> AgentType:
    cmd_lower = command.lower()
    if "claude" in cmd_lower:
        return AgentType.CLAUDE_CODE
    if "opencode" in cmd_lower:
        return AgentType.OPENCODE
    if "codex" in cmd_lower:
        return AgentType.CODEX
    return AgentType.UNKNOWN


def detect_model_from_command(command: str) -> str:
    if "opus" in command:
        return "claude-opus"
    if "sonnet" in command:
        return "claude-sonnet"
    if "gemini" in command:
        return "gemini"
    return "unknown"


def get_process_cwd(proc: psutil.Process) -> str | None:
    try:
        return proc.cwd() or None
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return None


def process_to_activity(process: ProcessInfo, cwd: str | None = None) -> AgentActivity:
    """Build an activity row for a running agent process."""
    return AgentActivity(
        id=f"process-{process.pid}",
        session_id=str(process.pid),
        type=detect_agent_type(process.command),
        model=detect_model_from_command(process.command),
        cwd=cwd,
        status=AgentStatus.BUSY if process.cpu > BUSY_CPU_PERCENT else AgentStatus.IDLE,
        last_activity=datetime.now(UTC),
        metadata={
            "cpu": f"{process.cpu:.1f}%",
            "memory": f"{process.mem:.1f}%",
            "start_time": process.start.isoformat(),
        },
    )


def find_coding_agent_processes(timeout_ms: int) -> dict[str, AgentActivity]:
    """List running coding-agent processes, newest first.

    Matches the find_processes callback signature. psutil reports CPU usage
    relative to its previous sample of the same process, so the first scan
    sees 0% for every process. Processes that exit or deny access mid-scan
    are skipped; other failures are logged and yield an empty mapping.

    Args:
        timeout_ms: Budget for walking the process table in milliseconds.
            Processes not reached in time are left out of this scan.

    Returns:
        Activities keyed by "process-<pid>".
    """
    deadline = time.monotonic() + timeout_ms / 1000
    found: list[tuple[ProcessInfo, str | None]] = []

    try:
        for proc in psutil.process_iter(PROCESS_ATTRS):
            if time.monotonic() > deadline:
                logger.warning(f"Process scan exceeded {timeout_ms}ms, returning partial results")
                break
            try:
                process = process_info(proc.info)
                if process is None or not is_coding_agent_process(process.command):
                    continue
                found.append((process, get_process_cwd(proc)))
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
    except psutil.Error as e:
        logger.warning(f"Failed to list processes: {e}")
        return {}

    found.sort(key=lambda item: item[0].start, reverse=True)
    agents: dict[str, AgentActivity] = {}
    for process, cwd in found:
        activity = process_to_activity(process, cwd)
        agents[activity.id] = activity

    logger.debug(f"Found {len(agents)} coding agent processes")
    return agents
