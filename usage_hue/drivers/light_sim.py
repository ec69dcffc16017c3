from __future__ import annotations
import logging

from ..domain.models import HardwareCommand

logger = logging.getLogger(__name__)


class SimulatedLight:
    def __init__(self, light_id: int = 0) -> None:
        self.light_id = light_id
        self.commands: list[HardwareCommand] = []

    @property
    def last_command(self) -> HardwareCommand | None:
        return self.commands[-1] if self.commands else None

    async def send(self, command: HardwareCommand) -> None:
        self.commands.append(command)
        logger.info(
            "LIGHT %s xy=(%.4f, %.4f) bri=%s transition=%sms",
            self.light_id, command.xy[0], command.xy[1], command.brightness, command.transition_ms,
        )
