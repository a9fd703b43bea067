"""
Pytest configuration and shared fixtures.

FakeFirebolt plays the identity service, the account API and the engine in
one aiohttp application served on localhost.
"""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from firebolt_client import FireboltClient

CLIENT_ID = "test-client"
CLIENT_SECRET = "test-secret"
ACCOUNT = "acct1"

Handler = Callable[[str], web.Response]


def compact(meta: List[Tuple[str, str]], data: List[List[Any]]) -> str:
    """Render a JSON_Compact response body."""
    return json.dumps({
        "meta": [{"name": name, "type": type_tag} for name, type_tag in meta],
        "data": data,
        "rows": len(data),
        "statistics": {"elapsed": 0.001, "rows_read": len(data), "bytes_read": 8},
    })


class FakeFirebolt:
    """In-process stand-in for the Firebolt HTTP services."""

    def __init__(self):
        self.base_url = ""
        self.expires_in = 3600
        self.engine_url: Optional[str] = None
        self.issued_tokens: List[str] = []
        self.valid_tokens = set()
        self.always_unauthorized = False
        self.reject_tokens = False
        self.delay = 0.0
        self.token_requests: List[Dict[str, Any]] = []
        self.resolve_requests: List[str] = []
        self.queries: List[Dict[str, Any]] = []
        self.handlers: Dict[str, Handler] = {}

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/oauth/token", self.token)
        app.router.add_get("/web/v3/account/{account}/engineUrl", self.resolve)
        app.router.add_post("/engine", self.query)
        app.router.add_post("/user-engine", self.query)
        return app

    def revoke_tokens(self) -> None:
        self.valid_tokens.clear()

    def on(self, sql: str, handler: Handler) -> None:
        self.handlers[sql] = handler

    @property
    def statements(self) -> List[str]:
        return [q["sql"] for q in self.queries]

    async def token(self, request: web.Request) -> web.Response:
        payload = await request.json()
        self.token_requests.append(payload)
        valid = payload.get("client_id") == CLIENT_ID and payload.get("client_secret") == CLIENT_SECRET
        if self.reject_tokens or not valid:
            return web.json_response({"error": "invalid_client"}, status=401)
        token = f"token-{len(self.issued_tokens) + 1}"
        self.issued_tokens.append(token)
        self.valid_tokens.add(token)
        return web.json_response({"access_token": token, "expires_in": self.expires_in})

    def _authorized(self, request: web.Request) -> bool:
        header = request.headers.get("Authorization", "")
        return header.startswith("Bearer ") and header[len("Bearer "):] in self.valid_tokens

    async def resolve(self, request: web.Request) -> web.Response:
        account = request.match_info["account"]
        self.resolve_requests.append(account)
        if not self._authorized(request):
            return web.json_response({"message": "unauthorized"}, status=401)
        if account != ACCOUNT:
            return web.json_response({"message": f"account {account} not found"}, status=404)
        return web.json_response({"engineUrl": self.engine_url or f"{self.base_url}/engine"})

    async def query(self, request: web.Request) -> web.Response:
        sql = await request.text()
        self.queries.append({
            "sql": sql,
            "path": request.path,
            "params": dict(request.query),
            "headers": dict(request.headers),
        })
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.always_unauthorized or not self._authorized(request):
            return web.Response(status=401, text="token expired")

        handler = self.handlers.get(sql)
        if handler is not None:
            return handler(sql)
        if sql.startswith("USE DATABASE "):
            name = sql[len("USE DATABASE "):].strip('"')
            return web.Response(headers={"Firebolt-Update-Parameters": f"database={name}"})
        if sql.startswith("USE ENGINE "):
            name = sql[len("USE ENGINE "):].strip('"')
            return web.Response(
                headers={"Firebolt-Update-Endpoint": f"{self.base_url}/user-engine?engine={name}"}
            )
        return web.Response(
            text=compact([("x", "int")], [[42]]),
            content_type="application/json",
        )


@pytest_asyncio.fixture
async def firebolt():
    fake = FakeFirebolt()
    server = TestServer(fake.make_app())
    await server.start_server()
    fake.base_url = f"http://{server.host}:{server.port}"
    yield fake
    await server.close()


@pytest.fixture
def builder(firebolt):
    """Builder wired to the fake services."""
    def make(**overrides):
        b = FireboltClient.builder() \
            .with_credentials(overrides.get("client_id", CLIENT_ID), CLIENT_SECRET) \
            .with_account(overrides.get("account", ACCOUNT)) \
            .with_api_endpoint(firebolt.base_url) \
            .with_token_url(f"{firebolt.base_url}/oauth/token") \
            .with_timeout(5.0)
        if "database" in overrides:
            b = b.with_database(overrides["database"])
        if "engine" in overrides:
            b = b.with_engine(overrides["engine"])
        if "skew" in overrides:
            b = b.with_token_expiry_skew(overrides["skew"])
        return b
    return make


@pytest_asyncio.fixture
async def client(builder):
    c = await builder().build()
    yield c
    await c.close()
