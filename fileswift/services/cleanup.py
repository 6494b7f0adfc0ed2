"""Background reaping of abandoned upload sessions."""

import asyncio
import logging
from typing import Optional

from fileswift.services.upload_sessions import UploadSessionManager

logger = logging.getLogger(__name__)


class SessionSweeper:
    """Runs ``UploadSessionManager.expire`` on a timer, off the request path."""

    def __init__(self, sessions: UploadSessionManager, interval_seconds: float):
        self.sessions = sessions
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="upload-session-sweeper")
        logger.info(f"Upload session sweeper started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Upload session sweeper stopped")

    async def sweep_once(self) -> int:
        try:
            removed = await self.sessions.expire()
        except Exception as e:
            logger.error(f"Upload session sweep failed: {e}")
            return 0
        if removed:
            logger.info(f"Removed {removed} expired upload session(s)")
        return removed

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.sweep_once()
