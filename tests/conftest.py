from __future__ import annotations

import asyncio
import base64
import json
import time
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

import pytest
from aiohttp import ClientConnectionError

from diagram_cloudsync import CloudConfig

BASE_URL = "https://cloud.test"
ANON_KEY = "anon-key"


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def make_token(claims: dict[str, Any]) -> str:
    """Build an unsigned JWT-shaped token carrying ``claims``."""

    header = _b64url(json.dumps({"alg": "none", "typ": "JWT"}).encode())
    payload = _b64url(json.dumps(claims).encode())
    return f"{header}.{payload}.signature"


def token_for(sub: str = "user-1", *, email: str | None = "ada@example.com", expires_in: float = 3600, **extra: Any) -> str:
    claims: dict[str, Any] = {"sub": sub, "exp": int(time.time() + expires_in), **extra}
    if email is not None:
        claims["email"] = email
    return make_token(claims)


@dataclass
class FakeCall:
    method: str
    path: str
    params: dict[str, str]
    body: Any
    headers: dict[str, str]

    @property
    def table(self) -> str | None:
        prefix = "/rest/v1/"
        return self.path[len(prefix):] if self.path.startswith(prefix) else None


class FakeResponse:
    def __init__(self, status: int = 200, body: str = "") -> None:
        self.status = status
        self._body = body

    async def text(self) -> str:
        return self._body

    async def json(self, content_type: str | None = "application/json") -> Any:
        return json.loads(self._body)

    async def __aenter__(self) -> FakeResponse:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class _PendingRequest:
    def __init__(self, handler) -> None:
        self._handler = handler

    async def __aenter__(self) -> FakeResponse:
        return await self._handler()

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


def _matches(row: dict[str, Any], filters: dict[str, str]) -> bool:
    for column, expr in filters.items():
        op, _, value = expr.partition(".")
        if op != "eq" or str(row.get(column)) != value:
            return False
    return True


@dataclass
class FakeCloud:
    """Stand-in for an aiohttp ``ClientSession`` talking to the auth and REST endpoints."""

    subject: str = "user-1"
    email: str | None = "ada@example.com"
    calls: list[FakeCall] = field(default_factory=list)
    tables: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    forbid_update: set[str] = field(default_factory=set)
    failures: dict[tuple[str, str], tuple[int, str]] = field(default_factory=dict)
    unreachable: set[str] = field(default_factory=set)
    refresh_delay: float = 0.0
    refresh_status: int = 200
    refresh_expires_in: float = 3600
    otp_status: int = 200
    otp_body: str = "{}"
    refresh_count: int = 0
    closed: bool = False

    # aiohttp surface -------------------------------------------------
    def post(self, url: str, **kwargs: Any) -> _PendingRequest:
        return self.request("POST", url, **kwargs)

    def get(self, url: str, **kwargs: Any) -> _PendingRequest:
        return self.request("GET", url, **kwargs)

    def delete(self, url: str, **kwargs: Any) -> _PendingRequest:
        return self.request("DELETE", url, **kwargs)

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
        json: Any = None,
        timeout: Any = None,
    ) -> _PendingRequest:
        path = urlsplit(url).path
        call = FakeCall(method, path, dict(params or {}), json, dict(headers or {}))
        self.calls.append(call)
        return _PendingRequest(lambda: self._async_handle(call))

    async def close(self) -> None:
        self.closed = True

    # helpers -----------------------------------------------------------
    def rest_calls(self, method: str | None = None, table: str | None = None) -> list[FakeCall]:
        return [
            call
            for call in self.calls
            if call.table is not None
            and (method is None or call.method == method)
            and (table is None or call.table == table)
        ]

    def rows(self, table: str) -> list[dict[str, Any]]:
        return self.tables.setdefault(table, [])

    # handlers ----------------------------------------------------------
    async def _async_handle(self, call: FakeCall) -> FakeResponse:
        if call.path in self.unreachable or (call.table is not None and call.table in self.unreachable):
            raise ClientConnectionError("connection refused")
        if call.path == "/auth/v1/otp":
            return FakeResponse(self.otp_status, self.otp_body)
        if call.path == "/auth/v1/token":
            return await self._async_refresh(call)
        if call.table is None:
            return FakeResponse(404, "not found")
        failure = self.failures.get((call.method, call.table))
        if failure is not None:
            await asyncio.sleep(0)
            return FakeResponse(*failure)
        await asyncio.sleep(0)
        if call.method == "GET":
            return self._select(call)
        if call.method == "POST":
            return self._insert(call)
        if call.method == "DELETE":
            return self._delete(call)
        return FakeResponse(405, "method not allowed")

    async def _async_refresh(self, call: FakeCall) -> FakeResponse:
        self.refresh_count += 1
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        if self.refresh_status >= 400:
            return FakeResponse(self.refresh_status, '{"error":"invalid_grant"}')
        body = {
            "access_token": token_for(
                self.subject, email=self.email, expires_in=self.refresh_expires_in, n=self.refresh_count
            ),
            "refresh_token": f"refresh-{self.refresh_count + 1}",
            "token_type": "bearer",
        }
        return FakeResponse(200, json.dumps(body))

    def _select(self, call: FakeCall) -> FakeResponse:
        params = dict(call.params)
        columns = params.pop("select", "*")
        order = params.pop("order", None)
        rows = [row for row in self.rows(call.table) if _matches(row, params)]
        if order:
            column, _, direction = order.partition(".")
            rows.sort(key=lambda row: str(row.get(column)), reverse=direction == "desc")
        if columns != "*":
            wanted = columns.split(",")
            rows = [{key: row.get(key) for key in wanted} for row in rows]
        return FakeResponse(200, json.dumps(rows))

    def _insert(self, call: FakeCall) -> FakeResponse:
        table = self.rows(call.table)
        merge = "merge-duplicates" in call.headers.get("Prefer", "")
        for incoming in call.body:
            existing = next((row for row in table if row.get("id") == incoming.get("id")), None)
            if existing is None:
                table.append(dict(incoming))
                continue
            if not merge:
                return FakeResponse(409, '{"message":"duplicate key value"}')
            if call.table in self.forbid_update:
                return FakeResponse(403, '{"message":"new row violates row-level security policy"}')
            existing.update(incoming)
        return FakeResponse(201, "")

    def _delete(self, call: FakeCall) -> FakeResponse:
        table = self.rows(call.table)
        table[:] = [row for row in table if not _matches(row, call.params)]
        return FakeResponse(204, "")


@pytest.fixture
def cloud() -> FakeCloud:
    return FakeCloud()


@pytest.fixture
def config() -> CloudConfig:
    return CloudConfig(url=BASE_URL, anon_key=ANON_KEY)


@pytest.fixture
def mint():
    """Return a factory for access tokens with ``sub``/``email``/``exp`` claims."""

    return token_for


@pytest.fixture
def raw_token():
    return make_token
