from __future__ import annotations
import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Optional

from watchfiles import awatch

logger = logging.getLogger(__name__)


class WatchState(str, Enum):
    UNARMED = "unarmed"
    ARMED = "armed"
    FAILED = "failed"


class LogWatcher:
    """Watches the usage log and calls back on every change.

    unarmed -> armed once the file exists (checked by the caller each tick),
    armed -> failed on any watch error. A failed watcher stays failed.
    """

    def __init__(self, path: Path, on_change: Callable[[], Awaitable[object]]) -> None:
        self._path = path
        self._on_change = on_change
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.state = WatchState.UNARMED

    def arm(self) -> bool:
        if self.state is not WatchState.UNARMED or not self._path.exists():
            return False
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._watch(), name="usage_log_watch")
        self.state = WatchState.ARMED
        logger.info("Watching %s for new prompts", self._path)
        return True

    async def _watch(self) -> None:
        try:
            async for _changes in awatch(self._path, stop_event=self._stop):
                await self._on_change()
        except Exception as e:
            self.state = WatchState.FAILED
            logger.warning("Could not watch %s (%s); relying on polling only", self._path, e)
            return

        if self.state is WatchState.ARMED and not self._stop.is_set():
            # The watch ended on its own (file removed); allow re-arming
            self.state = WatchState.UNARMED

    async def close(self) -> None:
        self._stop.set()
        task, self._task = self._task, None
        if task is not None and not task.done():
            done, _ = await asyncio.wait({task}, timeout=2.0)
            if not done:
                task.cancel()
        if self.state is WatchState.ARMED:
            self.state = WatchState.UNARMED
