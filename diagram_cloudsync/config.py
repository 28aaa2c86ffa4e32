"""Remote backend configuration for cloud sync."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import voluptuous as vol

from .const import (
    AUTH_PATH,
    CONF_ANON_KEY,
    CONF_TIMEOUT,
    CONF_URL,
    DEFAULT_TIMEOUT,
    ENV_ANON_KEY,
    ENV_TIMEOUT,
    ENV_URL,
    MIN_TIMEOUT,
    REST_PATH,
)

_TEXT = vol.Any(None, vol.Coerce(str))

OPTIONS_SCHEMA = vol.Schema(
    {
        vol.Optional(CONF_URL, default=""): _TEXT,
        vol.Optional(CONF_ANON_KEY, default=""): _TEXT,
        vol.Optional(CONF_TIMEOUT, default=DEFAULT_TIMEOUT): object,
    },
    extra=vol.REMOVE_EXTRA,
)


@dataclass(slots=True, frozen=True)
class CloudConfig:
    """Location and key of the remote backend.

    An unconfigured instance (missing URL or key) puts every remote operation
    into local-only mode.
    """

    url: str = ""
    anon_key: str = ""
    timeout: float = DEFAULT_TIMEOUT

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> CloudConfig:
        data = OPTIONS_SCHEMA(dict(options))
        url = str(data[CONF_URL] or "").strip().rstrip("/")
        anon_key = str(data[CONF_ANON_KEY] or "").strip()
        timeout_raw = data[CONF_TIMEOUT]
        try:
            timeout = max(float(MIN_TIMEOUT), float(timeout_raw))
        except (TypeError, ValueError):
            timeout = float(DEFAULT_TIMEOUT)
        return cls(url=url, anon_key=anon_key, timeout=timeout)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> CloudConfig:
        env = os.environ if environ is None else environ
        options: dict[str, Any] = {
            CONF_URL: env.get(ENV_URL, ""),
            CONF_ANON_KEY: env.get(ENV_ANON_KEY, ""),
        }
        if env.get(ENV_TIMEOUT):
            options[CONF_TIMEOUT] = env[ENV_TIMEOUT]
        return cls.from_options(options)

    @property
    def configured(self) -> bool:
        return bool(self.url and self.anon_key)

    @property
    def auth_url(self) -> str:
        return f"{self.url}{AUTH_PATH}"

    @property
    def rest_url(self) -> str:
        return f"{self.url}{REST_PATH}"

    def headers(self, bearer: str | None = None, *, prefer: str | None = None) -> dict[str, str]:
        """Return request headers; ``bearer`` defaults to the anon key."""

        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {bearer or self.anon_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers


__all__ = ["CloudConfig", "OPTIONS_SCHEMA"]
