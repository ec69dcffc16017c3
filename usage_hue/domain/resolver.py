from __future__ import annotations
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from ..core.config import UsageConfig
from ..core.timeutil import now_utc
from .extraction import format_details, parse_usage_response
from .interfaces import RemoteUsageSource, SourceError
from .models import Resolution, UsageReport, UsageSnapshot, UsageSource
from .usage_log import count_usage

logger = logging.getLogger(__name__)

STALE_THRESHOLD = timedelta(minutes=5)


class SnapshotStore:
    """Holds the single live UsageSnapshot. Snapshots are replaced, never edited."""

    def __init__(self) -> None:
        self._current: Optional[UsageSnapshot] = None
        self.last_push_at: Optional[datetime] = None

    @property
    def current(self) -> Optional[UsageSnapshot]:
        return self._current

    def replace(self, snapshot: UsageSnapshot, started_at: Optional[datetime] = None) -> bool:
        """Install a new snapshot.

        started_at is when the acquisition began. A result whose fetch began before
        the current push snapshot arrived is older than it and is dropped.
        """
        cur = self._current
        if (
            cur is not None
            and cur.source is UsageSource.PUSH
            and snapshot.source is not UsageSource.PUSH
            and cur.received_at > (started_at or snapshot.received_at)
        ):
            logger.info("Dropping %s result, a newer push snapshot is present", snapshot.source.value)
            return False

        self._current = snapshot
        if snapshot.source is UsageSource.PUSH:
            self.last_push_at = snapshot.received_at
        return True

    def clear(self) -> None:
        self._current = None


class UsageResolver:
    """Decides which number the light shows right now.

    Trust order: fresh push > OAuth > cookie API > local prompt count.
    """

    def __init__(
        self,
        store: SnapshotStore,
        sources: Sequence[RemoteUsageSource],
        usage: UsageConfig,
        usage_log_path: Path,
        stale_after: timedelta = STALE_THRESHOLD,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self._store = store
        self._sources = list(sources)
        self._usage = usage
        self._log_path = usage_log_path
        self._stale_after = stale_after
        self._clock = clock

    @property
    def store(self) -> SnapshotStore:
        return self._store

    def is_fresh(self, snapshot: Optional[UsageSnapshot]) -> bool:
        if snapshot is None or snapshot.source is UsageSource.LOCAL:
            return False
        return self._clock() - snapshot.received_at < self._stale_after

    def has_fresh_snapshot(self) -> bool:
        return self.is_fresh(self._store.current)

    async def _fetch_from(self, source: RemoteUsageSource) -> Optional[UsageReport]:
        try:
            report = await source.fetch()
        except SourceError as e:
            logger.info("Usage source %s unavailable: %s (status=%s)", source.source.value, e, e.status)
            return None
        except Exception as e:
            logger.info("Usage source %s failed: %s: %s", source.source.value, type(e).__name__, e)
            return None

        if report.empty:
            logger.info("Usage source %s returned no usable limits", source.source.value)
            return None
        return report

    async def refresh(self) -> Optional[UsageSnapshot]:
        """Try the remote sources in trust order and store the first usable result."""
        for source in self._sources:
            if not source.configured:
                continue
            started_at = self._clock()
            report = await self._fetch_from(source)
            if report is None:
                continue

            snapshot = UsageSnapshot(
                percentage=report.highest_percent,
                source=source.source,
                details=format_details(report.limits),
                received_at=self._clock(),
            )
            if self._store.replace(snapshot, started_at=started_at):
                logger.info(
                    "Usage from %s: %d%% (%s)",
                    source.source.value, round(snapshot.percentage * 100), snapshot.details,
                )
                return snapshot
            return self._store.current
        return None

    def local_snapshot(self) -> UsageSnapshot:
        result = count_usage(self._log_path, self._usage.window_ms, self._usage.max_prompts, now=self._clock())
        return UsageSnapshot(
            percentage=result.percentage,
            source=UsageSource.LOCAL,
            details=f"{result.count}/{self._usage.max_prompts} prompts",
            received_at=self._clock(),
        )

    async def resolve(self, allow_refresh: bool = True) -> Resolution:
        current = self._store.current
        if self.is_fresh(current):
            return _resolution(current)

        if allow_refresh:
            refreshed = await self.refresh()
            if refreshed is not None and self.is_fresh(refreshed):
                return _resolution(refreshed)

        # A fresh push may have landed while the refresh was in flight
        current = self._store.current
        if self.is_fresh(current):
            return _resolution(current)

        local = self.local_snapshot()
        self._store.replace(local)
        return _resolution(local)

    def accept_push(self, raw: Any) -> Optional[UsageSnapshot]:
        report = parse_usage_response(raw)
        if report.empty:
            return None
        snapshot = UsageSnapshot(
            percentage=report.highest_percent,
            source=UsageSource.PUSH,
            details=format_details(report.limits),
            received_at=self._clock(),
        )
        self._store.replace(snapshot)
        logger.info("Usage pushed: %d%% (%s)", round(snapshot.percentage * 100), snapshot.details)
        return snapshot


def _resolution(snapshot: UsageSnapshot) -> Resolution:
    return Resolution(percentage=snapshot.percentage, source=snapshot.source, details=snapshot.details)
