from __future__ import annotations

import logging
from typing import Optional

import httpx

from ..core.config import ClaudeAuthConfig, Settings
from ..domain.extraction import parse_usage_response
from ..domain.interfaces import SourceError
from ..domain.models import UsageReport, UsageSource

logger = logging.getLogger(__name__)


def make_headers(cookie: str, base_url: str) -> dict[str, str]:
    # Accept the full Cookie header or just the session key
    cookie_value = cookie if "=" in cookie else f"sessionKey={cookie}"
    # Browser-like headers, the web API sits behind bot detection
    return {
        "Cookie": cookie_value,
        "Content-Type": "application/json",
        "Accept": "application/json, text/plain, */*",
        "User-Agent": (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
        ),
        "Accept-Language": "en-US,en;q=0.9",
        "Sec-Fetch-Dest": "empty",
        "Sec-Fetch-Mode": "cors",
        "Sec-Fetch-Site": "same-origin",
        "Referer": f"{base_url}/settings/usage",
        "Origin": base_url,
    }


class CookieUsageSource:
    """Usage from the web app's organization usage endpoint, using a session cookie."""

    source = UsageSource.COOKIE_API

    def __init__(
        self,
        auth: Optional[ClaudeAuthConfig],
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._auth = auth
        self._base_url = settings.cookie_api_base.rstrip("/")
        self._timeout = settings.request_timeout_seconds
        self._transport = transport

    @property
    def configured(self) -> bool:
        return self._auth is not None and self._auth.configured

    async def fetch(self) -> UsageReport:
        auth = self._auth
        if auth is None or not auth.configured:
            raise SourceError(self.source, "no cookie configured")

        url = f"{self._base_url}/api/organizations/{auth.org_id}/usage"
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.get(url, headers=make_headers(auth.cookie, self._base_url))
        except httpx.HTTPError as e:
            raise SourceError(self.source, f"request failed: {type(e).__name__}: {e}") from e

        if resp.status_code in (401, 403):
            raise SourceError(self.source, "cookie expired or invalid", status=resp.status_code)
        if resp.status_code >= 400:
            raise SourceError(self.source, f"usage API failed ({resp.status_code})", status=resp.status_code)

        try:
            raw = resp.json()
        except ValueError as e:
            raise SourceError(self.source, "response is not JSON", status=resp.status_code) from e
        return parse_usage_response(raw)
