# =============================================================================
# Refresh Coordinator
# =============================================================================
# Periodically reloads the folder tree (and with it the unread badge).
#
# The interval comes from general.refresh_interval. A value of 0 or less
# disables the timer. When the setting changes, restart() picks up the new
# value.
# =============================================================================

import asyncio
import logging

from kestrel_mail.explorer import MailExplorer

logger = logging.getLogger(__name__)


class RefreshCoordinator:
    """
    Background task calling MailExplorer.refresh() every interval.

    Usage:
        >>> coordinator = RefreshCoordinator(explorer, interval_seconds=60)
        >>> coordinator.start()
        >>> # ... later ...
        >>> await coordinator.stop()
    """

    def __init__(self, explorer: MailExplorer, interval_seconds: float) -> None:
        self.explorer = explorer
        self.interval = interval_seconds
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the timer. Does nothing if disabled or already running."""
        if self.is_running:
            return
        if self.interval <= 0:
            logger.info("Automatic refresh disabled")
            return

        logger.info(f"Refreshing folders every {self.interval}s")
        self._task = asyncio.create_task(self._run(), name="folder-refresh")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def restart(self, interval_seconds: float) -> None:
        """Apply a new interval."""
        await self.stop()
        self.interval = interval_seconds
        self.start()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.explorer.refresh()
            except Exception as e:
                # Keep the timer alive; the next tick tries again
                logger.error(f"Periodic refresh failed: {e}")
