"""HTTP and WebSocket read API for the activity monitor."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Any

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .bus import Event
from .models import AgentActivity
from .monitor import ActivityMonitor

logger = logging.getLogger(__name__)


def _activity_payload(activities: list[AgentActivity], last_poll: int | None) -> dict[str, Any]:
    return {
        "activities": [a.to_dict() for a in activities],
        "count": len(activities),
        "last_poll": last_poll,
    }


class ActivityMonitorServer:
    """FastAPI app exposing the monitor's committed snapshot.

    The server only reads from the monitor (plus POST /poll, which asks
    for an immediate poll). When manage_monitor is true the monitor is
    started and stopped with the app's lifespan.
    """

    def __init__(
        self,
        monitor: ActivityMonitor,
        host: str = "localhost",
        port: int = 8090,
        log_level: str = "INFO",
        manage_monitor: bool = True,
    ):
        """Initialize the server.

        Args:
            monitor: Monitor whose state is served
            host: Bind address for run()
            port: Bind port for run()
            log_level: uvicorn log level
            manage_monitor: Start/stop the monitor with the app lifespan
        """
        self.monitor = monitor
        self.host = host
        self.port = port
        self.log_level = log_level
        self.manage_monitor = manage_monitor

        self.app = FastAPI(
            title="Agent Activity Monitor",
            description="Live activity of coding agents parsed from session transcripts",
            version=__version__,
            lifespan=self._lifespan,
        )
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        self._setup_routes()

        logger.info("Activity monitor server initialized")

    @contextlib.asynccontextmanager
    async def _lifespan(self, app: FastAPI) -> AsyncIterator[None]:
        started_here = False
        if self.manage_monitor and not self.monitor.is_running():
            await self.monitor.start()
            started_here = True
        try:
            yield
        finally:
            if started_here:
                await self.monitor.stop()

    def _setup_routes(self):
        """Setup FastAPI routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint with server info."""
            return {
                "name": "Agent Activity Monitor",
                "version": __version__,
                "sessions_dir": self.monitor.config.sessions_dir,
                "running": self.monitor.is_running(),
                "server_time": datetime.now(UTC).isoformat(),
            }

        @self.app.get("/health")
        async def health_check():
            """Health check endpoint."""
            return {
                "status": "healthy" if self.monitor.is_running() else "stopped",
                "timestamp": datetime.now(UTC).isoformat(),
                "version": __version__,
                "agents": len(self.monitor.get_activity()),
                "polling": self.monitor.polling,
                "cache_size": self.monitor.cache_size,
                "last_poll": self.monitor.last_poll,
            }

        @self.app.get("/activity")
        async def get_activity():
            """Committed activity snapshot, most recent first."""
            return _activity_payload(self.monitor.get_activity(), self.monitor.last_poll)

        @self.app.post("/poll")
        async def poll_now():
            """Poll immediately and return the resulting snapshot."""
            activities = await self.monitor.poll_now()
            return _activity_payload(activities, self.monitor.last_poll)

        @self.app.websocket("/ws/activity")
        async def activity_websocket(websocket: WebSocket):
            """Stream activity snapshots as they are published."""
            await websocket.accept()
            logger.info("WebSocket client connected to /ws/activity")

            loop = asyncio.get_running_loop()
            queue: asyncio.Queue[list[AgentActivity]] = asyncio.Queue()
            subscription_id = None
            sender = None

            def on_event(event: Event) -> None:
                activities = event.data.get("activities", [])
                loop.call_soon_threadsafe(queue.put_nowait, list(activities))

            async def send_updates() -> None:
                while True:
                    activities = await queue.get()
                    await websocket.send_json(
                        {"type": "activity", "data": [a.to_dict() for a in activities]}
                    )

            try:
                await websocket.send_json(
                    {
                        "type": "activity",
                        "data": [a.to_dict() for a in self.monitor.get_activity()],
                    }
                )

                if self.monitor.config.pubsub is not None:
                    subscription_id = self.monitor.subscribe(on_event)
                    sender = asyncio.create_task(send_updates())

                # Clients may send "poll" to request an immediate poll.
                while True:
                    message = await websocket.receive_text()
                    if message.strip().lower() == "poll":
                        self.monitor.request_poll()

            except WebSocketDisconnect:
                logger.info("WebSocket client disconnected from /ws/activity")
            except Exception as e:
                logger.error(f"WebSocket error: {e}")
                with contextlib.suppress(Exception):
                    await websocket.close()
            finally:
                if sender is not None:
                    sender.cancel()
                if subscription_id is not None:
                    bus, _ = self.monitor.config.pubsub
                    bus.unsubscribe(subscription_id)

    async def start_server(self):
        """Serve the API with uvicorn until shutdown."""
        logger.info(f"Starting Agent Activity Monitor server on {self.host}:{self.port}")

        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level=self.log_level.lower(),
        )
        server = uvicorn.Server(config)
        await server.serve()
