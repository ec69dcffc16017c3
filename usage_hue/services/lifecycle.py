from __future__ import annotations
import logging
import os
import signal
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class AlreadyRunningError(RuntimeError):
    def __init__(self, pid: int) -> None:
        super().__init__(f"Daemon is already running (PID {pid}).")
        self.pid = pid


def pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else
        return True
    return True


class PidMarker:
    """Single-instance lock backed by a PID file.

    acquire() at start, release() at clean shutdown; a marker whose process is
    gone is removed transparently.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._owned = False

    def read(self) -> Optional[int]:
        try:
            return int(self.path.read_text().strip())
        except FileNotFoundError:
            return None
        except (ValueError, OSError):
            return None

    def running_pid(self) -> Optional[int]:
        """PID of a live daemon, cleaning up a stale marker on the way."""
        if not self.path.exists():
            return None
        pid = self.read()
        if pid is not None and pid_alive(pid):
            return pid
        logger.info("Removing stale PID marker %s (pid=%s)", self.path, pid)
        self.discard()
        return None

    def acquire(self) -> None:
        """Create the marker atomically, replacing a stale one at most once."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        for _ in range(2):
            if self._create():
                self._owned = True
                logger.debug("PID marker written: %s", self.path)
                return
            pid = self.running_pid()
            if pid is not None:
                raise AlreadyRunningError(pid)
        raise AlreadyRunningError(self.read() or 0)

    def _create(self) -> bool:
        # Link a fully written temp file into place so readers never see a partial marker
        tmp = self.path.with_name(f"{self.path.name}.{os.getpid()}.tmp")
        tmp.write_text(str(os.getpid()))
        try:
            os.link(tmp, self.path)
        except FileExistsError:
            return False
        finally:
            tmp.unlink()
        return True

    def release(self) -> None:
        if not self._owned:
            return
        self._owned = False
        # Only remove a marker that still names this process
        if self.read() == os.getpid():
            self.discard()
            logger.debug("PID marker removed")

    def discard(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


class StopOutcome(str, Enum):
    STOPPED = "stopped"
    NOT_RUNNING = "not_running"
    STALE = "stale"
    NOT_PERMITTED = "not_permitted"


@dataclass(frozen=True)
class StopReport:
    outcome: StopOutcome
    pid: Optional[int]
    message: str


def signal_stop(marker: PidMarker) -> StopReport:
    pid = marker.read()
    if pid is None or pid <= 0:
        marker.discard()
        return StopReport(StopOutcome.NOT_RUNNING, None, "No daemon is running.")

    try:
        os.kill(pid, signal.SIGTERM)
    except PermissionError:
        return StopReport(StopOutcome.NOT_PERMITTED, pid, f"Daemon (PID {pid}) is running, but this user may not signal it.")
    except ProcessLookupError:
        marker.discard()
        return StopReport(StopOutcome.STALE, pid, "Daemon process not found. Cleaned up stale PID file.")

    # The daemon removes its own marker on the way out
    return StopReport(StopOutcome.STOPPED, pid, f"Daemon (PID {pid}) stopped.")
