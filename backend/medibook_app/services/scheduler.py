import asyncio
from typing import Awaitable, Callable, List

from backend.medibook_app import config
from backend.medibook_app.services.session_service import SessionService
from backend.medibook_app.services.websocket_service import ConnectionHub
from backend.medibook_app.utils.logger import scheduler_logger


class ScheduledTasks:
    """Periodic maintenance jobs run on the application's event loop."""

    def __init__(self, session_service: SessionService, hub: ConnectionHub):
        self.session_service = session_service
        self.hub = hub
        self._tasks: List[asyncio.Task] = []

    def start(self):
        if self._tasks:
            return
        jobs = [
            ("session_cleanup", config.SESSION_CLEANUP_INTERVAL, self.cleanup_sessions),
            ("websocket_ping", config.WS_PING_INTERVAL, self.hub.ping_all_clients),
            ("websocket_cleanup", config.WS_CLEANUP_INTERVAL, self.hub.cleanup_inactive_connections),
            ("websocket_stats", config.WS_STATS_INTERVAL, self.log_stats),
        ]
        for name, interval, job in jobs:
            self._tasks.append(asyncio.create_task(self._run_every(name, interval, job), name=name))
        scheduler_logger.log_info("Scheduled tasks started", {"jobs": [name for name, _, _ in jobs]})

    async def stop(self):
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        scheduler_logger.log_info("Scheduled tasks stopped")

    async def _run_every(self, name: str, interval: float, job: Callable[[], Awaitable]):
        while True:
            await asyncio.sleep(interval)
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                scheduler_logger.log_error(e, {"job": name})

    async def cleanup_sessions(self) -> int:
        cleaned_count = await self.session_service.cleanup_expired_sessions()
        if cleaned_count > 0:
            scheduler_logger.log_info("Expired sessions cleaned", {"cleaned_count": cleaned_count})
        return cleaned_count

    async def log_stats(self):
        scheduler_logger.log_info("WebSocket statistics", self.hub.get_stats())
