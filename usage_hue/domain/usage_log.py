from __future__ import annotations
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator, Optional

from ..core.timeutil import now_utc
from .models import UsageCount

logger = logging.getLogger(__name__)


def parse_timestamp(line: str) -> Optional[datetime]:
    text = line.strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        ts = datetime.fromisoformat(text)
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _read_lines(log_path: Path) -> list[str]:
    try:
        return log_path.read_text(encoding="utf-8", errors="replace").splitlines()
    except FileNotFoundError:
        return []


def _timestamps(lines: list[str]) -> Iterator[datetime]:
    for line in lines:
        ts = parse_timestamp(line)
        if ts is not None:
            yield ts


def count_usage(
    log_path: Path,
    window_ms: int,
    max_events: int,
    now: Optional[datetime] = None,
) -> UsageCount:
    """Count logged prompts inside the rolling window."""
    now = now or now_utc()
    window = timedelta(milliseconds=window_ms)

    count = sum(1 for ts in _timestamps(_read_lines(log_path)) if now - ts <= window)
    if count == 0:
        return UsageCount(count=0, percentage=0.0)
    if max_events <= 0:
        return UsageCount(count=count, percentage=1.0)
    return UsageCount(count=count, percentage=min(count / max_events, 1.0))


def trim_log(log_path: Path, window_ms: int, now: Optional[datetime] = None) -> int:
    """Drop entries older than twice the window. Returns how many lines were dropped."""
    if not log_path.exists():
        return 0

    now = now or now_utc()
    cutoff = now - timedelta(milliseconds=2 * window_ms)
    lines = [l for l in _read_lines(log_path) if l.strip()]

    kept = []
    for line in lines:
        ts = parse_timestamp(line)
        if ts is not None and ts >= cutoff:
            kept.append(line.strip())

    dropped = len(lines) - len(kept)
    if dropped:
        # Rewriting touches the file, which the watcher reacts to
        log_path.write_text("".join(f"{l}\n" for l in kept), encoding="utf-8")
        logger.debug("Trimmed %d entries from %s", dropped, log_path)
    return dropped
