from __future__ import annotations
from typing import Protocol, runtime_checkable
from .models import HardwareCommand, UsageReport, UsageSource


@runtime_checkable
class RemoteUsageSource(Protocol):
    source: UsageSource

    @property
    def configured(self) -> bool:
        ...

    async def fetch(self) -> UsageReport:
        """Return parsed usage. Raise SourceError on failure."""
        ...


@runtime_checkable
class Light(Protocol):
    light_id: int

    async def send(self, command: HardwareCommand) -> None:
        """Issue one command. Raise HueBridgeError on a rejected command."""
        ...


class SourceError(RuntimeError):
    """A remote usage source could not produce data."""

    def __init__(self, source: UsageSource, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.source = source
        self.status = status


class HueBridgeError(RuntimeError):
    """The bridge answered but did not accept the command."""

    def __init__(self, message: str, payload: object = None) -> None:
        super().__init__(message)
        self.payload = payload
