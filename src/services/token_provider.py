"""
Per-installation GitHub access token resolution
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Protocol

import httpx
import jwt
import structlog

from config.settings import Settings
from .errors import AuthError

logger = structlog.get_logger()

# Refresh tokens this long before GitHub says they expire
TOKEN_REFRESH_MARGIN = timedelta(seconds=60)


@dataclass
class InstallationToken:
    """GitHub App installation token"""

    token: str
    expires_at: datetime

    def is_expired(self, now: datetime, margin: timedelta = TOKEN_REFRESH_MARGIN) -> bool:
        return now + margin >= self.expires_at


class TokenProvider(Protocol):
    async def get_token(self, installation_id: str) -> str: ...


class StaticTokenProvider:
    """Returns one preconfigured token for every installation (personal access token setups)"""

    def __init__(self, token: str):
        if not token:
            raise ValueError("GitHub token is required")
        self.token = token

    async def get_token(self, installation_id: str) -> str:
        return self.token


class GitHubAppTokenProvider:
    """
    Exchanges a GitHub App JWT for installation access tokens.

    Tokens are cached per installation until shortly before they expire.
    Safe to share between concurrent worker slots: one lock per installation
    means a token is fetched once even when several jobs need it at the same
    time.
    """

    def __init__(
        self,
        app_id: str,
        private_key: str,
        api_url: str = "https://api.github.com",
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        if not app_id or not private_key:
            raise ValueError("GitHub App ID and private key are required")

        self.app_id = app_id
        self.private_key = private_key
        self.api_url = api_url.rstrip("/")
        self.clock = clock
        self._http_client = http_client
        self._cache: Dict[str, InstallationToken] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def generate_jwt(self) -> str:
        """Generate a JWT for GitHub App authentication"""
        now = int(time.time())
        payload = {
            "iat": now - 60,  # clock skew allowance
            "exp": now + 600,
            "iss": self.app_id,
        }
        return jwt.encode(payload, self.private_key, algorithm="RS256")

    async def get_token(self, installation_id: str) -> str:
        """Get an installation access token, from cache when still valid"""
        installation_id = str(installation_id)
        lock = self._locks.setdefault(installation_id, asyncio.Lock())

        async with lock:
            cached = self._cache.get(installation_id)
            if cached and not cached.is_expired(self.clock()):
                return cached.token

            token = await self._fetch_token(installation_id)
            self._cache[installation_id] = token
            return token.token

    def invalidate(self, installation_id: str) -> None:
        """Drop a cached token, e.g. after GitHub rejected it"""
        self._cache.pop(str(installation_id), None)

    async def _fetch_token(self, installation_id: str) -> InstallationToken:
        try:
            app_jwt = self.generate_jwt()
        except (jwt.PyJWTError, ValueError) as e:
            logger.error("Failed to sign GitHub App JWT", error=str(e))
            raise AuthError(f"Failed to sign GitHub App JWT: {e}", installation_id) from e

        url = f"{self.api_url}/app/installations/{installation_id}/access_tokens"
        headers = {
            "Authorization": f"Bearer {app_jwt}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

        try:
            if self._http_client is not None:
                response = await self._http_client.post(url, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=httpx.Timeout(30.0)) as client:
                    response = await client.post(url, headers=headers)
            response.raise_for_status()
            data = response.json()
            token = InstallationToken(
                token=data["token"],
                expires_at=_parse_timestamp(data["expires_at"]),
            )
        except httpx.HTTPStatusError as e:
            logger.error(
                "Installation token request rejected",
                installation_id=installation_id,
                status_code=e.response.status_code,
            )
            raise AuthError(
                f"Installation token request failed with status {e.response.status_code}",
                installation_id,
            ) from e
        except (httpx.RequestError, KeyError, ValueError) as e:
            logger.error("Installation token request failed", installation_id=installation_id, error=str(e))
            raise AuthError(f"Installation token request failed: {e}", installation_id) from e

        logger.info("Installation token issued", installation_id=installation_id, expires_at=data["expires_at"])
        return token


def _parse_timestamp(value: str) -> datetime:
    # GitHub returns e.g. "2024-01-01T00:00:00Z"
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def build_token_provider(settings: Settings) -> TokenProvider:
    """Use GitHub App credentials when configured, otherwise a static token"""
    if settings.GITHUB_APP_ID:
        return GitHubAppTokenProvider(
            app_id=settings.GITHUB_APP_ID,
            private_key=settings.github_private_key,
            api_url=settings.GITHUB_API_URL,
        )

    logger.warning("No GitHub App configured; using GITHUB_TOKEN for every installation")
    return StaticTokenProvider(settings.GITHUB_TOKEN)
