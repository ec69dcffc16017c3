from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from ..core.config import HueConfig
from ..core.timeutil import now_utc
from ..domain.light_controller import LightController
from ..domain.models import LightUpdateResult, Resolution, UsageSnapshot
from ..domain.resolver import UsageResolver
from ..domain.usage_log import trim_log
from .watcher import LogWatcher, WatchState

logger = logging.getLogger(__name__)


@dataclass
class LiveState:
    last_resolution: Optional[Resolution] = None
    last_result: Optional[LightUpdateResult] = None
    last_applied_utc: Optional[datetime] = None
    last_trigger: Optional[str] = None
    updates: int = 0
    failures: int = 0


class UsageScheduler:
    """The daemon's control loop.

    Three event sources (poll timer, usage-log watcher, push endpoint) all end in
    the same resolve-then-apply step.
    """

    def __init__(
        self,
        resolver: UsageResolver,
        controller: LightController,
        config: HueConfig,
        usage_log_path: Path,
    ) -> None:
        self._resolver = resolver
        self._controller = controller
        self._config = config
        self._log_path = usage_log_path

        self._task: Optional[asyncio.Task] = None
        self._stop = asyncio.Event()
        self._running = False

        self.watcher = LogWatcher(usage_log_path, self._on_log_change)
        self.live = LiveState()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def resolver(self) -> UsageResolver:
        return self._resolver

    @property
    def poll_seconds(self) -> float:
        return self._config.daemon.poll_interval_ms / 1000

    async def start(self) -> None:
        self._stop.clear()
        self._running = True

        # Fetch before the first apply so the light doesn't sit on a default colour
        snapshot = await self._resolver.refresh()
        if snapshot is None:
            logger.info("Usage source: local (prompt counting)")
        else:
            logger.info("Usage source: %s", snapshot.source.value)

        await self.update_light("startup", allow_refresh=False)
        self.watcher.arm()
        self._task = asyncio.create_task(self._run(), name="usage_poll_loop")

    async def stop(self) -> None:
        """Stop processing events. In-flight requests are left to finish on their own."""
        if not self._running:
            return
        self._running = False
        self._stop.set()
        await self.watcher.close()

    async def join(self, timeout: Optional[float] = None) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        done, _ = await asyncio.wait({task}, timeout=timeout)
        if not done:
            task.cancel()

    async def update_light(self, trigger: str, allow_refresh: bool = True) -> Optional[LightUpdateResult]:
        if not self._running:
            return None
        try:
            resolution = await self._resolver.resolve(allow_refresh=allow_refresh)
            result = await self._controller.apply(resolution.percentage)
        except Exception as e:
            logger.exception("Light update (%s) failed: %s", trigger, e)
            return None

        self.live.last_resolution = resolution
        self.live.last_result = result
        self.live.last_trigger = trigger
        self.live.updates += 1
        if result.ok:
            self.live.last_applied_utc = now_utc()
            x, y = result.command.xy
            logger.info(
                "[%s] [%s] %d%% - %s - color: (%.3f, %.3f) bri: %s",
                trigger, resolution.source.value, round(resolution.percentage * 100),
                resolution.details, x, y, result.command.brightness,
            )
        else:
            self.live.failures += 1
        return result

    def accept_push(self, payload: Any) -> Optional[UsageSnapshot]:
        if not self._running:
            return None
        return self._resolver.accept_push(payload)

    async def _on_log_change(self) -> None:
        # Local mode only needs a recount; network refreshes stay on the poll cadence
        await self.update_light("log-change", allow_refresh=False)

    async def tick(self) -> None:
        await self.update_light("poll", allow_refresh=True)
        if not self._running:
            return

        try:
            trim_log(self._log_path, self._config.usage.window_ms)
        except OSError as e:
            logger.warning("Could not trim %s: %s", self._log_path, e)

        if self.watcher.state is WatchState.UNARMED:
            self.watcher.arm()

    async def _run(self) -> None:
        logger.info("Poll loop started (poll_seconds=%s)", self.poll_seconds)

        while not self._stop.is_set():
            # sleep with cancellation awareness
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.poll_seconds)
                break
            except asyncio.TimeoutError:
                pass

            try:
                await self.tick()
            except Exception as e:
                logger.exception("Poll loop error: %s", e)

        logger.info("Poll loop stopped")
