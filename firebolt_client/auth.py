"""
Firebolt Authentication

OAuth2 client-credentials flow against the Firebolt identity service, and
the token store that tracks expiry of the acquired bearer token.

@version 0.1.0
@author Firebolt SDK Team
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple

import aiohttp

from .types import (
    AuthenticationError,
    ConfigurationError,
    NetworkError,
    UnknownError,
    extract_error_message,
)
from .version import user_agent

logger = logging.getLogger(__name__)

GRANT_TYPE = "client_credentials"
AUDIENCE = "https://api.firebolt.io"
TOKEN_PATH = "/oauth/token"
DEFAULT_EXPIRY_SKEW = 10.0


@dataclass(frozen=True)
class Credentials:
    """Service-account client id and secret."""
    client_id: str
    client_secret: str = field(repr=False)


@dataclass(frozen=True)
class Token:
    """Bearer token with its absolute expiry (epoch seconds)."""
    access_token: str = field(repr=False)
    expires_at: float


class TokenStore:
    """
    Holds the current bearer token.

    Expiry is computed at store time as ``now + ttl - skew`` so a token is
    dropped slightly before the server would reject it.
    """

    def __init__(
        self,
        skew: float = DEFAULT_EXPIRY_SKEW,
        clock: Callable[[], float] = time.time,
    ):
        self.skew = skew
        self._clock = clock
        self._token: Optional[Token] = None

    def current_token(self) -> Optional[Token]:
        return self._token

    def store(self, access_token: str, ttl: float) -> Token:
        """Replace the held token."""
        self._token = Token(access_token, self._clock() + ttl - self.skew)
        return self._token

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self._token is None:
            return True
        if now is None:
            now = self._clock()
        return now >= self._token.expires_at

    def clear(self) -> None:
        self._token = None


def derive_token_url(api_endpoint: str) -> str:
    """
    Map an API host to its identity-service token URL.

    Example:
        >>> derive_token_url("api.dev.firebolt.io")
        'https://id.dev.firebolt.io/oauth/token'
    """
    host = api_endpoint.strip()
    for scheme in ("https://", "http://"):
        if host.startswith(scheme):
            host = host[len(scheme):]
            break
    host = host.rstrip("/")

    if not host.startswith("api.") or len(host) <= len("api."):
        raise ConfigurationError(
            f"Invalid API endpoint format. Expected 'api.<env>.<host>', got '{api_endpoint}'"
        )
    return f"https://id.{host[len('api.'):]}{TOKEN_PATH}"


class AuthClient:
    """
    Acquires bearer tokens with the client-credentials grant.

    Example:
        store = TokenStore()
        auth = AuthClient(session, derive_token_url("api.app.firebolt.io"), store)
        token = await auth.authenticate(Credentials("id", "secret"))
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        token_url: str,
        store: TokenStore,
    ):
        self._session = session
        self.token_url = token_url
        self.store = store

    async def authenticate(self, credentials: Credentials) -> Token:
        """Request a new token and put it in the store."""
        payload = {
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret,
            "grant_type": GRANT_TYPE,
            "audience": AUDIENCE,
        }

        logger.debug("Requesting token from %s", self.token_url)
        try:
            async with self._session.post(
                self.token_url,
                json=payload,
                headers={"User-Agent": user_agent()},
            ) as resp:
                text = await resp.text()
                status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(f"Token request failed: {e}") from e
        except UnicodeDecodeError as e:
            raise UnknownError(f"Undecodable token response: {e}") from e

        if not 200 <= status < 300:
            raise AuthenticationError(
                f"Authentication failed ({status}): {extract_error_message(text)}",
                status=status,
            )

        access_token, expires_in = self._parse_token(text)
        token = self.store.store(access_token, expires_in)
        logger.info("Authenticated client %s, token valid for %ss", credentials.client_id, expires_in)
        return token

    @staticmethod
    def _parse_token(text: str) -> Tuple[str, float]:
        try:
            data = json.loads(text)
        except ValueError as e:
            raise AuthenticationError(f"Malformed token response: {e}") from e

        if not isinstance(data, dict):
            raise AuthenticationError("Malformed token response: expected a JSON object")

        access_token = data.get("access_token")
        expires_in = data.get("expires_in")
        if not isinstance(access_token, str) or not access_token:
            raise AuthenticationError("Malformed token response: missing access_token")
        if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float)):
            raise AuthenticationError("Malformed token response: missing expires_in")
        return access_token, expires_in
