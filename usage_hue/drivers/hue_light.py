from __future__ import annotations

import logging
from typing import Optional

import httpx

from ..domain.interfaces import HueBridgeError
from ..domain.models import HardwareCommand

logger = logging.getLogger(__name__)

HUE_MIN_BRI = 1
HUE_MAX_BRI = 254


def to_hue_brightness(brightness: float) -> int:
    """Map 0-100 onto the bridge's 1-254 range."""
    return max(HUE_MIN_BRI, min(HUE_MAX_BRI, round(brightness / 100 * HUE_MAX_BRI)))


def to_transition_time(transition_ms: int) -> int:
    """Hue transitions are counted in 100 ms steps."""
    return max(0, round(transition_ms / 100))


class HueLight:
    """Light driver for a Philips Hue bridge (v1 REST API).

    Bridges serve a self-signed certificate, so verification is off for these
    local-network-only requests.
    """

    def __init__(
        self,
        bridge_ip: str,
        username: str,
        light_id: int,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.light_id = light_id
        self._state_url = f"https://{bridge_ip}/api/{username}/lights/{light_id}/state"
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, verify=False, transport=self._transport)

    def body_for(self, command: HardwareCommand) -> dict:
        x, y = command.xy
        return {
            "on": True,
            "xy": [x, y],
            "bri": to_hue_brightness(command.brightness),
            "transitiontime": to_transition_time(command.transition_ms),
        }

    async def send(self, command: HardwareCommand) -> None:
        async with self._client() as client:
            resp = await client.put(self._state_url, json=self.body_for(command))

        try:
            data = resp.json()
        except ValueError:
            data = resp.text

        if resp.status_code >= 400:
            raise HueBridgeError(f"Hue bridge returned HTTP {resp.status_code}", payload=data)

        # The bridge answers 200 with a list of per-attribute success/error items
        if isinstance(data, list):
            errors = [item["error"] for item in data if isinstance(item, dict) and "error" in item]
            if errors:
                description = errors[0].get("description", "unknown error") if isinstance(errors[0], dict) else errors[0]
                raise HueBridgeError(f"Hue API error: {description}", payload=errors)

        logger.debug("Hue light %s accepted %s", self.light_id, self.body_for(command))
