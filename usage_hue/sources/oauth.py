from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional, Sequence

import httpx

from ..core.config import Settings
from ..domain.extraction import parse_usage_response
from ..domain.interfaces import SourceError
from ..domain.models import UsageReport, UsageSource

logger = logging.getLogger(__name__)

TOKEN_ENV = "CLAUDE_CODE_OAUTH_TOKEN"
TOKEN_PREFIX = "sk-ant-oat"


def find_oauth_token(credentials_paths: Sequence[Path]) -> Optional[str]:
    """Locate the CLI's OAuth access token: env override first, then credentials files."""
    env_token = os.environ.get(TOKEN_ENV, "").strip()
    if env_token.startswith(TOKEN_PREFIX):
        return env_token

    for path in credentials_paths:
        if not path.exists():
            continue
        try:
            creds = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.debug("Unreadable credentials file %s", path)
            continue
        oauth = creds.get("claudeAiOauth") if isinstance(creds, dict) else None
        token = oauth.get("accessToken") if isinstance(oauth, dict) else None
        if isinstance(token, str) and token:
            return token
    return None


class OAuthUsageSource:
    """Usage from the OAuth usage endpoint, authenticated with the CLI's token.

    Zero-config: works whenever the user is logged in with the CLI. The token is
    looked up on every fetch so a re-login is picked up without a restart.
    """

    source = UsageSource.OAUTH

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._url = settings.oauth_usage_url
        self._beta = settings.oauth_beta_header
        self._credentials_paths = list(settings.credentials_paths)
        self._timeout = settings.request_timeout_seconds
        self._transport = transport

    @property
    def configured(self) -> bool:
        return find_oauth_token(self._credentials_paths) is not None

    async def fetch(self) -> UsageReport:
        token = find_oauth_token(self._credentials_paths)
        if token is None:
            raise SourceError(self.source, "no OAuth token available")

        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
            "anthropic-beta": self._beta,
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.get(self._url, headers=headers)
        except httpx.HTTPError as e:
            raise SourceError(self.source, f"request failed: {type(e).__name__}: {e}") from e

        if resp.status_code == 401:
            raise SourceError(self.source, "OAuth token expired, log in again", status=401)
        if resp.status_code >= 400:
            raise SourceError(
                self.source, f"usage API failed ({resp.status_code}): {resp.text[:200]}", status=resp.status_code
            )

        try:
            raw = resp.json()
        except ValueError as e:
            raise SourceError(self.source, "response is not JSON", status=resp.status_code) from e
        return parse_usage_response(raw)
