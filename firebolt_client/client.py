"""
Firebolt Python Client

Async client that authenticates with client credentials, resolves the
account's engine endpoint and runs SQL while tracking the session state
the engine pushes back through response headers.

@version 0.1.0
@author Firebolt SDK Team
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote

import aiohttp

from .auth import AuthClient, Credentials, TokenStore, DEFAULT_EXPIRY_SKEW, derive_token_url
from .session import HeaderProtocolHandler, SessionState, split_endpoint
from .types import (
    AuthenticationError,
    ConfigurationError,
    HeaderParsingError,
    NetworkError,
    QueryError,
    ResultSet,
    SerializationError,
    UnknownError,
    extract_error_message,
    parse_response,
)
from .version import PROTOCOL_VERSION, user_agent

logger = logging.getLogger(__name__)

DEFAULT_API_ENDPOINT = "api.app.firebolt.io"
API_ENDPOINT_ENV = "FIREBOLT_API_ENDPOINT"
ENGINE_URL_PATH = "/web/v3/account/{account}/engineUrl"
OUTPUT_FORMAT = "JSON_Compact"

_RawResponse = Tuple[int, List[Tuple[str, str]], str]


class ClientState(enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    ENDPOINT_RESOLVED = "endpoint_resolved"
    READY = "ready"
    CLOSED = "closed"


@dataclass
class ClientConfig:
    """Configuration for Firebolt client."""
    client_id: str
    client_secret: str = field(repr=False)
    account_name: str
    database: Optional[str] = None
    engine: Optional[str] = None
    api_endpoint: str = DEFAULT_API_ENDPOINT
    token_url: Optional[str] = None
    timeout: float = 60.0
    token_expiry_skew: float = DEFAULT_EXPIRY_SKEW

    @property
    def api_url(self) -> str:
        endpoint = self.api_endpoint.strip().rstrip("/")
        if "://" not in endpoint:
            endpoint = f"https://{endpoint}"
        return endpoint


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


class ClientBuilder:
    """
    Collects client settings and builds a connected FireboltClient.

    Example:
        client = await FireboltClient.builder() \\
            .with_credentials("client-id", "client-secret") \\
            .with_account("my_account") \\
            .with_database("my_db") \\
            .with_engine("my_engine") \\
            .build()
    """

    def __init__(self):
        self._client_id: Optional[str] = None
        self._client_secret: Optional[str] = None
        self._account_name: Optional[str] = None
        self._database: Optional[str] = None
        self._engine: Optional[str] = None
        self._api_endpoint: str = os.environ.get(API_ENDPOINT_ENV) or DEFAULT_API_ENDPOINT
        self._token_url: Optional[str] = None
        self._timeout: float = 60.0
        self._token_expiry_skew: float = DEFAULT_EXPIRY_SKEW

    def with_credentials(self, client_id: str, client_secret: str) -> "ClientBuilder":
        self._client_id = client_id
        self._client_secret = client_secret
        return self

    def with_account(self, account_name: str) -> "ClientBuilder":
        self._account_name = account_name
        return self

    def with_database(self, database: str) -> "ClientBuilder":
        self._database = database
        return self

    def with_engine(self, engine: str) -> "ClientBuilder":
        self._engine = engine
        return self

    def with_api_endpoint(self, api_endpoint: str) -> "ClientBuilder":
        self._api_endpoint = api_endpoint
        return self

    def with_token_url(self, token_url: str) -> "ClientBuilder":
        """Use an explicit identity URL instead of deriving it from the API host."""
        self._token_url = token_url
        return self

    def with_timeout(self, timeout: float) -> "ClientBuilder":
        self._timeout = timeout
        return self

    def with_token_expiry_skew(self, skew: float) -> "ClientBuilder":
        self._token_expiry_skew = skew
        return self

    def config(self) -> ClientConfig:
        """Validate the collected settings without touching the network."""
        if not self._client_id or not self._client_secret:
            raise ConfigurationError("Missing credentials: client id and secret are required")
        if not self._account_name:
            raise ConfigurationError("Missing account name")
        if not self._api_endpoint:
            raise ConfigurationError("Missing API endpoint")
        if self._timeout <= 0:
            raise ConfigurationError(f"Timeout must be positive, got {self._timeout}")
        if self._token_expiry_skew < 0:
            raise ConfigurationError(
                f"Token expiry skew must not be negative, got {self._token_expiry_skew}"
            )

        config = ClientConfig(
            client_id=self._client_id,
            client_secret=self._client_secret,
            account_name=self._account_name,
            database=self._database or None,
            engine=self._engine or None,
            api_endpoint=self._api_endpoint,
            token_url=self._token_url,
            timeout=self._timeout,
            token_expiry_skew=self._token_expiry_skew,
        )
        if config.token_url is None:
            config.token_url = derive_token_url(config.api_endpoint)
        return config

    async def build(self) -> "FireboltClient":
        """
        Authenticate, resolve the engine endpoint and apply the database and
        engine selection.

        Raises:
            ConfigurationError: invalid settings or unknown account
            AuthenticationError: credentials rejected
            NetworkError: transport failure
            QueryError: a USE statement was rejected
        """
        client = FireboltClient(self.config())
        try:
            await client._start()
        except BaseException:
            await client.close()
            raise
        return client


class FireboltClient:
    """
    Async client for Firebolt.

    Instances are created by ClientBuilder.build(). One instance must not be
    queried concurrently; independent instances share nothing.

    Example:
        async with await FireboltClient.builder() \\
                .with_credentials(client_id, client_secret) \\
                .with_account("my_account") \\
                .build() as client:
            result = await client.query("SELECT 42 AS x")
            print(result[0].get("x", int))
    """

    def __init__(self, config: ClientConfig):
        self.config = config
        self._credentials = Credentials(config.client_id, config.client_secret)
        self._tokens = TokenStore(skew=config.token_expiry_skew)
        self._headers_handler = HeaderProtocolHandler()
        self._http: Optional[aiohttp.ClientSession] = None
        self._auth: Optional[AuthClient] = None
        self._session_state: Optional[SessionState] = None
        self._state = ClientState.UNAUTHENTICATED

    @staticmethod
    def builder() -> ClientBuilder:
        return ClientBuilder()

    async def __aenter__(self) -> "FireboltClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def endpoint(self) -> Optional[str]:
        """Engine URL queries are currently sent to."""
        return self._session_state.endpoint if self._session_state else None

    @property
    def parameters(self) -> Dict[str, str]:
        """Copy of the current session parameters."""
        return dict(self._session_state.parameters) if self._session_state else {}

    async def close(self) -> None:
        """Close the client connection."""
        if self._http is not None:
            await self._http.close()
            self._http = None
        self._tokens.clear()
        self._state = ClientState.CLOSED

    # =========================================================================
    # Construction
    # =========================================================================

    async def _start(self) -> None:
        self._http = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.config.timeout),
        )
        self._auth = AuthClient(self._http, self.config.token_url, self._tokens)

        await self._auth.authenticate(self._credentials)
        self._state = ClientState.AUTHENTICATED

        self._session_state = await self._resolve_endpoint()
        self._state = ClientState.ENDPOINT_RESOLVED
        logger.info(
            "Resolved engine endpoint %s for account %s",
            self._session_state.endpoint,
            self.config.account_name,
        )

        if self.config.database:
            await self._use("DATABASE", self.config.database)
        if self.config.engine:
            await self._use("ENGINE", self.config.engine)
        self._state = ClientState.READY

    async def _use(self, kind: str, name: str) -> None:
        result = await self.query(f"USE {kind} {quote_identifier(name)}")
        if result.header_error is not None:
            raise result.header_error

    async def _resolve_endpoint(self) -> SessionState:
        account = self.config.account_name
        url = self.config.api_url + ENGINE_URL_PATH.format(account=quote(account, safe=""))
        token = self._tokens.current_token()

        try:
            async with self._http.get(
                url,
                headers={
                    "Authorization": f"Bearer {token.access_token}",
                    "User-Agent": user_agent(),
                },
            ) as resp:
                status = resp.status
                text = await resp.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(f"Engine URL request failed: {e}") from e
        except UnicodeDecodeError as e:
            raise UnknownError(f"Undecodable engine URL response: {e}") from e

        if status in (401, 403):
            raise AuthenticationError(
                f"Not authorized to access account '{account}': {extract_error_message(text)}",
                status=status,
            )
        if status == 404:
            raise ConfigurationError(f"Account '{account}' not found")
        if not 200 <= status < 300:
            raise ConfigurationError(
                f"Failed to resolve engine URL for account '{account}' ({status}): "
                f"{extract_error_message(text)}"
            )

        try:
            data = json.loads(text)
        except ValueError as e:
            raise SerializationError(f"Failed to parse engine URL response: {e}") from e
        engine_url = data.get("engineUrl") if isinstance(data, dict) else None
        if not isinstance(engine_url, str) or not engine_url:
            raise SerializationError("Missing 'engineUrl' in engine URL response")

        try:
            endpoint, parameters = split_endpoint(engine_url)
        except HeaderParsingError as e:
            raise ConfigurationError(f"Invalid engine URL '{engine_url}': {e}") from e
        return SessionState(endpoint=endpoint, parameters=parameters)

    # =========================================================================
    # Query Methods
    # =========================================================================

    async def query(self, sql: str) -> ResultSet:
        """
        Execute a SQL statement.

        A 401 from the engine triggers exactly one re-authentication and one
        replay of the statement. A token found expired before sending counts
        as that re-authentication, so a 401 on a freshly acquired token is
        not retried. Session updates in the response headers are
        applied before the result is returned; a malformed update is logged,
        left unapplied and attached to the result as ``header_error``.

        Args:
            sql: SQL statement text

        Returns:
            ResultSet with undecoded cell values

        Raises:
            AuthenticationError: credentials rejected, or 401 on a refreshed token
            NetworkError: transport failure
            QueryError: the engine rejected the statement
            SerializationError: malformed response body
        """
        if not isinstance(sql, str) or not sql.strip():
            raise QueryError("Query text must be a non-empty string")
        if self._http is None or self._session_state is None:
            raise ConfigurationError("Client is not connected")

        refreshed = False
        if self._tokens.is_expired():
            logger.info("Access token expired, re-authenticating")
            await self._auth.authenticate(self._credentials)
            refreshed = True

        status, headers, body = await self._send_query(sql)

        if status == 401 and not refreshed:
            logger.warning("Engine returned 401, re-authenticating and replaying query")
            await self._auth.authenticate(self._credentials)
            status, headers, body = await self._send_query(sql)
        if status == 401:
            raise AuthenticationError(
                f"Authentication failed after token refresh: {extract_error_message(body)}",
                status=status,
            )

        if not 200 <= status < 300:
            raise QueryError(
                f"Query failed ({status}): {extract_error_message(body)}",
                status=status,
            )

        header_error = self._apply_headers(headers)
        result = parse_response(body)
        result.header_error = header_error
        return result

    def _query_headers(self) -> Dict[str, str]:
        token = self._tokens.current_token()
        return {
            "Authorization": f"Bearer {token.access_token}",
            "User-Agent": user_agent(),
            "Firebolt-Protocol-Version": PROTOCOL_VERSION,
        }

    async def _send_query(self, sql: str) -> _RawResponse:
        endpoint = self._session_state.endpoint
        params = dict(self._session_state.parameters)
        params["output_format"] = OUTPUT_FORMAT

        logger.debug("Sending query to %s", endpoint)
        try:
            async with self._http.post(
                endpoint,
                params=params,
                data=sql.encode("utf-8"),
                headers=self._query_headers(),
            ) as resp:
                body = await resp.text()
                return resp.status, list(resp.headers.items()), body
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(f"Request failed: {e}") from e
        except UnicodeDecodeError as e:
            raise UnknownError(f"Undecodable query response: {e}") from e

    def _apply_headers(self, headers: List[Tuple[str, str]]) -> Optional[HeaderParsingError]:
        try:
            self._session_state = self._headers_handler.handle(self._session_state, headers)
        except HeaderParsingError as e:
            logger.warning("Ignoring malformed session headers: %s", e)
            return e
        return None
