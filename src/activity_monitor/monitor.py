"""ActivityMonitor - background service tracking coding agent activity.

The monitor periodically scans a sessions directory for recently modified
transcripts, parses only the bytes appended since the last poll, merges
optional process-table rows and publishes the result when it changes.

All mutable state (committed activities, offsets, transcript cache, poll
status) is owned by the asyncio event loop the monitor was started on.
Poll work runs in an executor thread against a snapshot of that state and
returns its results, which are committed back on the loop.

Usage:
    config = MonitorConfig.new("/path/to/sessions", pubsub=(bus, "agent_activity"))
    async with ActivityMonitor(config) as monitor:
        activities = await monitor.poll_now()
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .bus import Event, EventBus, EventHandler
from .config import MonitorConfig, validate
from .errors import PubSubNotConfiguredError
from .hooks import MonitorHooks
from .log_reader import IncrementalTranscriptReader, ReadResult
from .models import AgentActivity, CacheEntry, MonitorState
from .processes import find_coding_agent_processes
from .session_parser import parse_content, parse_line
from .transcript_cache import TranscriptCache

logger = logging.getLogger(__name__)

EVENT_SOURCE = "activity_monitor"


@dataclass
class _PollSnapshot:
    """State handed to a poll worker. The worker never touches live state."""

    offsets: dict[str, int]
    cache: dict[str, CacheEntry]


@dataclass
class _PollResult:
    """Everything a poll worker produced, committed on the loop."""

    agents: dict[str, AgentActivity]
    offsets: dict[str, int]
    cache_updates: dict[str, CacheEntry] = field(default_factory=dict)
    stale_paths: set[str] = field(default_factory=set)
    last_poll: int = 0


def _sort_key(activity: AgentActivity) -> datetime:
    ts = activity.last_activity
    return ts if ts.tzinfo else ts.replace(tzinfo=UTC)


def sort_activities(agents: dict[str, AgentActivity]) -> list[AgentActivity]:
    """Activities ordered by last_activity, most recent first."""
    return sorted(agents.values(), key=_sort_key, reverse=True)


def _complete_content(result: ReadResult) -> ReadResult:
    """Hold back a trailing line that is still being written.

    A final fragment without a newline is kept only if it already parses as
    a JSON object; otherwise the offset stops before it so the next read
    picks up the finished line.
    """
    content = result.content
    if not content or content.endswith(b"\n"):
        return result

    head, sep, tail = content.rpartition(b"\n")
    if parse_line(tail) is not None:
        return result

    complete = head + sep
    return ReadResult(
        content=complete,
        start_offset=result.start_offset,
        end_offset=result.start_offset + len(complete),
        reset=result.reset,
    )


class ActivityMonitor:
    """
    Polls session transcripts and maintains a snapshot of agent activity.

    Lifecycle mirrors other background services: start() schedules the
    poll, cache cleanup and gc timers; stop() cancels them, waits for any
    in-flight poll and clears the cache.

    Attributes:
        config: Validated monitor configuration.
        name: Label used in log lines and passed to the gc hook.
    """

    def __init__(self, config: MonitorConfig, hooks: MonitorHooks | None = None):
        """
        Initialize the monitor.

        Args:
            config: Monitor configuration; validated immediately.
            hooks: Capability strategy. Defaults to config.hooks().

        Raises:
            ConfigError: If the configuration is invalid.
        """
        self.config = validate(config)
        self.name = config.name or "ActivityMonitor"
        self._hooks = hooks if hooks is not None else config.hooks()
        self._reader = IncrementalTranscriptReader(
            retry_attempts=config.file_retry_attempts,
            retry_delay=config.file_retry_delay_seconds,
        )
        self._cache = TranscriptCache()

        self._agents: dict[str, AgentActivity] = {}
        self._offsets: dict[str, int] = {}
        self._last_poll: int | None = None

        self._loop: asyncio.AbstractEventLoop | None = None
        self._running = False
        self._poll_task: asyncio.Task | None = None
        self._poll_handle: asyncio.TimerHandle | None = None
        self._cleanup_handle: asyncio.TimerHandle | None = None
        self._gc_handle: asyncio.TimerHandle | None = None
        self._background: set[asyncio.Future] = set()
        self._last_publish: asyncio.Task | None = None

    # ============================================================================
    # Lifecycle Methods
    # ============================================================================

    async def start(self) -> None:
        """
        Start the monitor on the running event loop.

        Restores persisted state (if a load hook is configured) and schedules
        the first poll one interval from now.

        Raises:
            RuntimeError: If the monitor is already running
            ConfigError: If the configuration is invalid
        """
        if self._running:
            raise RuntimeError(f"{self.name} is already running")

        validate(self.config)
        self._loop = asyncio.get_running_loop()

        logger.info(f"Starting {self.name} (sessions: {self.config.sessions_dir})")
        await self._restore_state()

        self._running = True
        self._schedule_poll()
        self._schedule_cache_cleanup()
        self._schedule_gc()

        logger.info(
            f"{self.name} started (poll interval: {self.config.poll_interval_seconds}s)"
        )

    async def stop(self, timeout: float = 5.0) -> None:
        """
        Stop the monitor gracefully.

        Args:
            timeout: Maximum time to wait for an in-flight poll, then again for
                pending checkpoint writes and publishes (seconds)
        """
        if not self._running:
            return

        logger.info(f"Stopping {self.name}...")
        self._running = False

        try:
            for handle in (self._poll_handle, self._cleanup_handle, self._gc_handle):
                if handle is not None:
                    handle.cancel()
            self._poll_handle = self._cleanup_handle = self._gc_handle = None

            # The poll commits first, which may queue more saves and publishes.
            if self._poll_task is not None:
                await self._wait_for([self._poll_task], timeout)
            if self._background:
                await self._wait_for(list(self._background), timeout)
        finally:
            self._cache.clear()
            logger.info(f"{self.name} stopped")

    async def _wait_for(self, futures: list[asyncio.Future], timeout: float) -> None:
        _, not_done = await asyncio.wait(futures, timeout=timeout)
        if not_done:
            logger.warning(f"{len(not_done)} monitor task(s) did not finish within timeout")
            for task in not_done:
                task.cancel()

    def is_running(self) -> bool:
        """Check if the monitor is currently running."""
        return self._running

    async def __aenter__(self) -> ActivityMonitor:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    # ============================================================================
    # Queries
    # ============================================================================

    def get_activity(self) -> list[AgentActivity]:
        """Return committed activities, most recent first.

        Served from committed state only; never waits on a poll.
        """
        return sort_activities(self._agents)

    def get_config(self) -> MonitorConfig:
        return self.config

    def subscribe(self, handler: EventHandler) -> str:
        """
        Subscribe a handler to activity broadcasts.

        Returns:
            Subscription ID from the event bus

        Raises:
            PubSubNotConfiguredError: If the config has no pubsub
        """
        if self.config.pubsub is None:
            raise PubSubNotConfiguredError(f"{self.name} has no pubsub configured")
        bus, topic = self.config.pubsub
        return bus.subscribe(topic, handler)

    @property
    def offsets(self) -> dict[str, int]:
        return dict(self._offsets)

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    @property
    def last_poll(self) -> int | None:
        return self._last_poll

    @property
    def polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    # ============================================================================
    # Polling
    # ============================================================================

    def request_poll(self) -> bool:
        """
        Start a poll unless one is already in flight.

        Must be called from the monitor's event loop.

        Returns:
            True if a poll was started, False if it was skipped
        """
        if self.polling:
            logger.debug(f"{self.name}: Poll already in progress, skipping")
            return False

        loop = self._loop or asyncio.get_running_loop()
        self._poll_task = loop.create_task(self._run_poll())
        return True

    async def poll_now(self) -> list[AgentActivity]:
        """Poll immediately (or join the in-flight poll) and return the result."""
        if not self.polling:
            self.request_poll()
        task = self._poll_task
        await asyncio.shield(task)
        return self.get_activity()

    async def _run_poll(self) -> None:
        loop = asyncio.get_running_loop()
        self._cancel_poll_timer()

        snapshot = _PollSnapshot(offsets=dict(self._offsets), cache=self._cache.snapshot())
        try:
            try:
                result = await loop.run_in_executor(
                    self.config.task_runner, self._poll_cycle, snapshot
                )
            except Exception as e:
                logger.error(f"{self.name}: Poll failed: {e}", exc_info=True)
                return

            self._commit(result)
        finally:
            if self._running:
                self._schedule_poll()

    def _poll_cycle(self, snapshot: _PollSnapshot) -> _PollResult:
        """One poll cycle. Runs in a worker thread."""
        offsets = dict(snapshot.offsets)
        cache_updates: dict[str, CacheEntry] = {}
        session_agents: dict[str, AgentActivity] = {}

        candidates = self._candidate_files()
        for path, filename, mtime in candidates[: self.config.max_files_per_poll]:
            activity = self._parse_session_file(
                path, filename, mtime, snapshot.cache, offsets, cache_updates
            )
            if activity is not None:
                session_agents[activity.id] = activity

        # Files that left the activity window (or were deleted) stop being
        # tracked; offset and cache entry go together.
        in_window = {path for path, _, _ in candidates}
        stale_paths = (set(offsets) | set(snapshot.cache)) - in_window
        for path in stale_paths:
            offsets.pop(path, None)

        process_agents: dict[str, AgentActivity] = {}
        if self.config.monitor_processes:
            process_agents = self._find_processes()

        # Session rows win over process rows with the same id.
        merged = {**process_agents, **session_agents}
        return _PollResult(
            agents=merged,
            offsets=offsets,
            cache_updates=cache_updates,
            stale_paths=stale_paths,
            last_poll=int(time.time() * 1000),
        )

    def _candidate_files(self) -> list[tuple[str, str, int]]:
        """Transcripts modified within the activity window, newest first.

        The poll cycle parses at most max_files_per_poll of them; the rest
        keep their offsets and cache entries.
        """
        sessions_dir = Path(self.config.sessions_dir)
        cutoff_ns = int((time.time() - self.config.activity_window_seconds) * 1e9)

        try:
            entries = list(os.scandir(sessions_dir))
        except FileNotFoundError:
            logger.debug(f"{self.name}: Sessions directory {sessions_dir} does not exist")
            return []
        except OSError as e:
            logger.warning(f"{self.name}: Failed to read sessions directory {sessions_dir}: {e}")
            return []

        candidates = []
        for entry in entries:
            if not entry.name.endswith(self.config.file_extension):
                continue
            try:
                if not entry.is_file():
                    continue
                mtime = entry.stat().st_mtime_ns
            except OSError:
                continue
            if mtime > cutoff_ns:
                candidates.append((entry.path, entry.name, mtime))

        candidates.sort(key=lambda c: c[2], reverse=True)
        return candidates

    def _parse_session_file(
        self,
        path: str,
        filename: str,
        mtime: int,
        cache: dict[str, CacheEntry],
        offsets: dict[str, int],
        cache_updates: dict[str, CacheEntry],
    ) -> AgentActivity | None:
        cached = cache.get(path)
        if cached is not None and cached.mtime == mtime:
            return cached.activity

        offset = offsets.get(path, 0)
        previous = cached.activity if cached is not None else None
        if offset > 0 and previous is None:
            # Nothing to extend (cache evicted or state restored): start over.
            logger.debug(f"{self.name}: No cached parse for {path}, reparsing from start")
            offset = 0
        elif offset == 0:
            # Reading from the start; there is nothing to extend.
            previous = None

        try:
            result = self._reader.read_from(path, offset)
            if result is None:
                return None
            result = _complete_content(result)
            if result.reset:
                previous = None

            activity = parse_content(
                result.content,
                filename,
                max_actions=self.config.max_recent_actions,
                previous=previous,
            )
        except Exception as e:
            logger.error(f"{self.name}: Exception parsing session file {path}: {e}")
            return None

        offsets[path] = result.end_offset
        cache_updates[path] = CacheEntry(path=path, mtime=mtime, activity=activity)
        return activity

    def _find_processes(self) -> dict[str, AgentActivity]:
        timeout_ms = int(self.config.process_timeout_seconds * 1000)
        try:
            if self._hooks.has_process_finder:
                return self._hooks.find_processes(timeout_ms)
            return find_coding_agent_processes(timeout_ms)
        except Exception as e:
            logger.warning(f"{self.name}: Process lookup failed: {e}")
            return {}

    def _commit(self, result: _PollResult) -> None:
        """Apply a poll result. Runs on the event loop."""
        changed = result.agents != self._agents

        self._cache.update(result.cache_updates)
        if result.stale_paths:
            dropped = self._cache.discard(result.stale_paths)
            logger.debug(
                f"{self.name}: Stopped tracking {len(result.stale_paths)} inactive transcripts "
                f"({dropped} cache entries)"
            )
        self._offsets = result.offsets
        self._agents = result.agents
        self._last_poll = result.last_poll

        logger.debug(
            f"{self.name}: Poll complete ({len(result.agents)} agents, "
            f"{len(result.cache_updates)} parsed, changed={changed})"
        )

        if changed:
            self._save_state_async(self._current_state())
            self._broadcast(result.agents)

    # ============================================================================
    # Persistence and broadcasting
    # ============================================================================

    def _current_state(self) -> MonitorState:
        return MonitorState(
            agents=dict(self._agents),
            session_offsets=dict(self._offsets),
            last_poll=self._last_poll,
        )

    def _save_state_async(self, state: MonitorState) -> None:
        """Fire-and-forget checkpoint write on the task runner."""
        loop = self._loop or asyncio.get_running_loop()
        self._track(loop.run_in_executor(self.config.task_runner, self._save_state, state))

    def _track(self, future: asyncio.Future) -> None:
        """Keep a background future alive until it completes; stop() waits on these."""
        self._background.add(future)
        future.add_done_callback(self._background.discard)

    def _save_state(self, state: MonitorState) -> None:
        try:
            self._hooks.save_state(self.config.persistence_file, state)
        except Exception as e:
            logger.error(f"{self.name}: Failed to save state: {e}")

    def _broadcast(self, agents: dict[str, AgentActivity]) -> None:
        if self.config.pubsub is None:
            return
        bus, topic = self.config.pubsub
        event = Event(
            event_type=topic,
            source=EVENT_SOURCE,
            data={"activities": sort_activities(agents)},
        )
        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(self._publish(bus, event, self._last_publish))
        self._last_publish = task
        self._track(task)

    async def _publish(self, bus: EventBus, event: Event, previous: asyncio.Task | None) -> None:
        """Deliver an event on the task runner, after the previous one.

        Subscribers run off the event loop, so a slow handler can't stall
        queries or timers. Chaining on the previous delivery keeps
        snapshots in order.
        """
        if previous is not None:
            await asyncio.wait([previous])
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(self.config.task_runner, bus.publish, event)
        except Exception as e:
            logger.error(f"{self.name}: Failed to publish activity: {e}")

    async def _restore_state(self) -> None:
        """Load persisted state. Failures fall back to an empty state."""
        defaults = MonitorState()
        loop = asyncio.get_running_loop()
        try:
            state = await loop.run_in_executor(
                self.config.task_runner,
                self._hooks.load_state,
                self.config.persistence_file,
                defaults,
            )
        except Exception as e:
            logger.warning(f"{self.name}: Failed to load persisted state: {e}")
            return

        if not isinstance(state, MonitorState):
            logger.warning(f"{self.name}: Ignoring persisted state of type {type(state).__name__}")
            return

        self._agents = dict(state.agents)
        self._offsets = dict(state.session_offsets)
        self._last_poll = state.last_poll
        if self._agents or self._offsets:
            logger.info(
                f"{self.name}: Restored {len(self._agents)} agents and "
                f"{len(self._offsets)} offsets"
            )

    # ============================================================================
    # Timers
    # ============================================================================

    def _cancel_poll_timer(self) -> None:
        if self._poll_handle is not None:
            self._poll_handle.cancel()
            self._poll_handle = None

    def _schedule_poll(self) -> None:
        # Only one poll timer may exist at a time.
        self._cancel_poll_timer()
        self._poll_handle = self._loop.call_later(
            self.config.poll_interval_seconds, self._on_poll_timer
        )

    def _on_poll_timer(self) -> None:
        self._poll_handle = None
        if self._running:
            self.request_poll()

    def _schedule_cache_cleanup(self) -> None:
        self._cleanup_handle = self._loop.call_later(
            self.config.cache_cleanup_interval_seconds, self._on_cache_cleanup
        )

    def _on_cache_cleanup(self) -> None:
        self.cleanup_cache()
        if self._running:
            self._schedule_cache_cleanup()

    def cleanup_cache(self) -> int:
        """Evict the oldest cache entries beyond max_cache_entries."""
        try:
            return self._cache.evict_oldest(self.config.max_cache_entries)
        except Exception as e:
            logger.warning(f"{self.name}: Cache cleanup failed: {e}")
            return 0

    def _schedule_gc(self) -> None:
        self._gc_handle = self._loop.call_later(
            self.config.gc_interval_seconds, self._on_gc
        )

    def _on_gc(self) -> None:
        try:
            self._hooks.trigger_gc(self.name)
        except Exception as e:
            logger.warning(f"{self.name}: gc trigger failed: {e}")
        if self._running:
            self._schedule_gc()
