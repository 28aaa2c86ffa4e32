"""PostgREST-style table access for the diagram cloud store."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from typing import Any

from aiohttp import ClientError, ClientSession, ClientTimeout

from .config import CloudConfig
from .const import PREFER_MINIMAL, PREFER_UPSERT

_LOGGER = logging.getLogger(__name__)


class CloudRestError(RuntimeError):
    """Raised when the REST backend rejects a request or cannot be reached."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status

    @property
    def forbidden(self) -> bool:
        return self.status == 403


def eq(value: Any) -> str:
    return f"eq.{value}"


class CloudRestClient:
    """Issue row-level reads and writes against ``{url}/rest/v1``."""

    def __init__(self, config: CloudConfig, session: ClientSession | None = None) -> None:
        self._config = config
        self._session = session
        self._owns_session = session is None

    @property
    def config(self) -> CloudConfig:
        return self._config

    def _client(self) -> ClientSession:
        if self._session is None:
            self._session = ClientSession()
        return self._session

    async def async_close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        if self._owns_session:
            self._session = None

    # ------------------------------------------------------------------
    async def async_select(
        self,
        table: str,
        *,
        access_token: str,
        columns: str,
        filters: Mapping[str, str],
        order: str | None = None,
    ) -> list[dict[str, Any]]:
        params = {"select": columns, **filters}
        if order:
            params["order"] = order
        text = await self._async_request("GET", table, access_token=access_token, params=params)
        try:
            rows = json.loads(text) if text else []
        except ValueError as err:
            raise CloudRestError(f"{table}: response is not valid JSON") from err
        if not isinstance(rows, list):
            raise CloudRestError(f"{table}: expected a list of rows")
        return [row for row in rows if isinstance(row, dict)]

    async def async_insert(
        self,
        table: str,
        rows: Sequence[Mapping[str, Any]],
        *,
        access_token: str,
        prefer: str = PREFER_UPSERT,
    ) -> bool:
        """Insert ``rows``; returns ``False`` without a request when there are none."""

        if not rows:
            return False
        await self._async_request(
            "POST",
            table,
            access_token=access_token,
            body=[dict(row) for row in rows],
            prefer=prefer,
        )
        return True

    async def async_delete(
        self,
        table: str,
        *,
        access_token: str,
        filters: Mapping[str, str],
        prefer: str = PREFER_MINIMAL,
    ) -> None:
        if not filters:
            raise ValueError("refusing to delete without a filter")
        await self._async_request("DELETE", table, access_token=access_token, params=dict(filters), prefer=prefer)

    # ------------------------------------------------------------------
    async def _async_request(
        self,
        method: str,
        table: str,
        *,
        access_token: str,
        params: Mapping[str, str] | None = None,
        body: Any = None,
        prefer: str | None = None,
    ) -> str:
        url = f"{self._config.rest_url}/{table}"
        _LOGGER.debug("REST %s %s %s", method, table, dict(params or {}))
        kwargs: dict[str, Any] = {
            "headers": self._config.headers(access_token, prefer=prefer),
            "timeout": ClientTimeout(total=self._config.timeout),
        }
        if params:
            kwargs["params"] = dict(params)
        if body is not None:
            kwargs["json"] = body
        try:
            async with self._client().request(method, url, **kwargs) as resp:
                text = await resp.text()
                if resp.status >= 400:
                    raise CloudRestError(text.strip() or f"{method} {table} failed: HTTP {resp.status}", status=resp.status)
                return text
        except (ClientError, TimeoutError) as err:
            raise CloudRestError(f"{method} {table} request failed: {err}") from err


__all__ = ["CloudRestClient", "CloudRestError", "eq"]
