from __future__ import annotations
import logging

import httpx

from ..core.config import HueConfig
from .interfaces import HueBridgeError, Light
from .color import interpolate_brightness, interpolate_color
from .models import HardwareCommand, LightUpdateResult

logger = logging.getLogger(__name__)


class LightController:
    """Turns a usage fraction into one light command and reports the outcome.

    Calls are never coalesced: two quick calls issue two commands and the bridge
    keeps whichever lands last.
    """

    def __init__(self, light: Light, config: HueConfig) -> None:
        self._light = light
        self._config = config

    def build_command(self, percentage: float) -> HardwareCommand:
        colors = self._config.colors
        brightness = self._config.brightness
        return HardwareCommand(
            xy=interpolate_color(colors.start, colors.end, percentage),
            brightness=interpolate_brightness(brightness.start, brightness.end, percentage),
            transition_ms=self._config.daemon.transition_ms,
        )

    async def apply(self, percentage: float) -> LightUpdateResult:
        command = self.build_command(percentage)
        try:
            await self._light.send(command)
        except HueBridgeError as e:
            logger.error(
                "Light %s rejected command xy=(%.3f, %.3f) bri=%s: %s payload=%s",
                self._light.light_id, command.xy[0], command.xy[1], command.brightness, e, e.payload,
            )
            return LightUpdateResult(ok=False, command=command, reason=str(e), payload=e.payload)
        except httpx.HTTPError as e:
            logger.error(
                "Light %s unreachable (%s): %s", self._light.light_id, type(e).__name__, e
            )
            return LightUpdateResult(ok=False, command=command, reason=f"bridge unreachable: {e}")

        return LightUpdateResult(ok=True, command=command)
