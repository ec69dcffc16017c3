from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class UsageSource(str, Enum):
    PUSH = "push"
    OAUTH = "oauth"
    COOKIE_API = "cookie-api"
    LOCAL = "local"


@dataclass(frozen=True)
class UsageSnapshot:
    percentage: float  # fraction of the budget consumed, 0..1
    source: UsageSource
    details: str
    received_at: datetime


@dataclass(frozen=True)
class UsageLimit:
    type: str
    percent_used: float
    reset_at: Optional[str] = None


@dataclass(frozen=True)
class UsageReport:
    limits: list[UsageLimit] = field(default_factory=list)
    highest_percent: float = 0.0

    @property
    def empty(self) -> bool:
        return not self.limits


@dataclass(frozen=True)
class UsageCount:
    count: int
    percentage: float


@dataclass(frozen=True)
class Resolution:
    percentage: float
    source: UsageSource
    details: str


@dataclass(frozen=True)
class HardwareCommand:
    xy: tuple[float, float]
    brightness: int  # 0..100, mapped to the device range by the driver
    transition_ms: int


@dataclass(frozen=True)
class LightUpdateResult:
    ok: bool
    command: HardwareCommand
    reason: Optional[str] = None
    payload: Any = None
