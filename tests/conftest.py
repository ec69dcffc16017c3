"""Shared fixtures for the usage-hue test suite."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pytest

from usage_hue.core.config import BridgeConfig, HueConfig, LightConfig, Settings
from usage_hue.domain.interfaces import SourceError
from usage_hue.domain.models import UsageLimit, UsageReport, UsageSource

WINDOW_MS = 5 * 60 * 60 * 1000
MAX_PROMPTS = 45


class Clock:
    """Controllable clock for resolver/scheduler tests."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeSource:
    """Remote usage source that returns a canned report or raises."""

    def __init__(self, source: UsageSource, report=None, error: Optional[Exception] = None, configured=True):
        self.source = source
        self.report = report
        self.error = error
        self._configured = configured
        self.calls = 0

    @property
    def configured(self) -> bool:
        return self._configured

    async def fetch(self) -> UsageReport:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.report


def report_of(pct: float, type_: str = "five_hour") -> UsageReport:
    return UsageReport(limits=[UsageLimit(type=type_, percent_used=pct)], highest_percent=pct)


def failing(source: UsageSource) -> FakeSource:
    return FakeSource(source, error=SourceError(source, "boom", status=500))


def write_log(path: Path, timestamps, extra_lines=()) -> None:
    lines = [ts.isoformat().replace("+00:00", "Z") for ts in timestamps]
    lines.extend(extra_lines)
    path.write_text("".join(f"{l}\n" for l in lines), encoding="utf-8")


def append_log(path: Path, timestamps) -> None:
    with path.open("a", encoding="utf-8") as f:
        for ts in timestamps:
            f.write(ts.isoformat().replace("+00:00", "Z") + "\n")


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def settings(tmp_path, monkeypatch):
    monkeypatch.delenv("CLAUDE_CODE_OAUTH_TOKEN", raising=False)
    return Settings(
        config_dir=tmp_path,
        credentials_paths=[tmp_path / "missing-credentials.json"],
        push_port=0,
        light_mode="sim",
    )


@pytest.fixture
def hue_config():
    return HueConfig(
        bridge=BridgeConfig(ip="192.168.1.20", username="test-user"),
        light=LightConfig(id=3, name="Desk"),
    )


@pytest.fixture
def log_path(tmp_path):
    return tmp_path / "usage.log"
