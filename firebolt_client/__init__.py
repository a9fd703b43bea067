"""
Firebolt Python Client

An async client library for the Firebolt analytical database.

Features:
- Client-credentials authentication with transparent re-authentication
- Engine endpoint resolution per account
- Server-driven session state (endpoint and session parameters)
- Typed, lazy decoding of result cells

Example:
    >>> import asyncio
    >>> from firebolt_client import FireboltClient
    >>>
    >>> async def main():
    ...     client = await FireboltClient.builder() \\
    ...         .with_credentials("client-id", "client-secret") \\
    ...         .with_account("my_account") \\
    ...         .build()
    ...     async with client:
    ...         result = await client.query("SELECT 42 AS x")
    ...         print(result[0].get("x", int))
    >>>
    >>> asyncio.run(main())

@version 0.1.0
@author Firebolt SDK Team
"""

from .auth import AuthClient, Credentials, Token, TokenStore
from .client import ClientBuilder, ClientConfig, ClientState, FireboltClient
from .decoder import BigInt, Float32, decode, decode_nullable
from .session import HeaderProtocolHandler, SessionState
from .types import (
    Column,
    Row,
    ResultSet,
    FireboltError,
    AuthenticationError,
    NetworkError,
    QueryError,
    SerializationError,
    ConfigurationError,
    HeaderParsingError,
    UnknownError,
)
from .version import VERSION

__version__ = VERSION
__all__ = [
    "FireboltClient",
    "ClientBuilder",
    "ClientConfig",
    "ClientState",
    "AuthClient",
    "Credentials",
    "Token",
    "TokenStore",
    "HeaderProtocolHandler",
    "SessionState",
    "BigInt",
    "Float32",
    "decode",
    "decode_nullable",
    "Column",
    "Row",
    "ResultSet",
    "FireboltError",
    "AuthenticationError",
    "NetworkError",
    "QueryError",
    "SerializationError",
    "ConfigurationError",
    "HeaderParsingError",
    "UnknownError",
]
