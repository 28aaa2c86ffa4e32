"""Helpers for authenticating against the diagram cloud backend."""

from __future__ import annotations

import base64
import binascii
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import voluptuous as vol
from aiohttp import ClientError, ClientSession, ClientTimeout

from .config import CloudConfig
from .const import MSG_NOT_CONFIGURED, MSG_OTP_FAILED

_LOGGER = logging.getLogger(__name__)


class CloudAuthError(RuntimeError):
    """Raised when the auth backend rejects a request or returns malformed data."""


def decode_claims(token: str) -> dict[str, Any] | None:
    """Return the claims embedded in the middle segment of ``token``.

    ``None`` is returned for anything that is not a decodable JSON object.
    """

    if not isinstance(token, str):
        return None
    segments = token.split(".")
    if len(segments) < 2 or not segments[1]:
        return None
    normalised = segments[1].replace("-", "+").replace("_", "/")
    padded = normalised + "=" * (-len(normalised) % 4)
    try:
        payload = json.loads(base64.b64decode(padded).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
    if not isinstance(payload, dict):
        return None
    return payload


def token_expiry(token: str) -> datetime | None:
    claims = decode_claims(token)
    if not claims:
        return None
    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, int | float):
        return None
    try:
        return datetime.fromtimestamp(exp, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None


def is_token_expired(token: str, buffer_seconds: float = 0, *, now: datetime | None = None) -> bool:
    """Return ``True`` if ``token`` expires within ``buffer_seconds``.

    Tokens without a numeric ``exp`` claim are always treated as expired.
    """

    expiry = token_expiry(token)
    if expiry is None:
        return True
    now = now or datetime.now(tz=UTC)
    return (expiry - now).total_seconds() <= buffer_seconds


@dataclass(slots=True, frozen=True)
class SessionUser:
    """Identity derived from the access token claims."""

    id: str
    email: str | None = None

    @classmethod
    def from_token(cls, token: str) -> SessionUser | None:
        claims = decode_claims(token)
        if not claims:
            return None
        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            return None
        email = claims.get("email")
        return cls(id=subject, email=email if isinstance(email, str) else None)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"id": self.id}
        if self.email is not None:
            payload["email"] = self.email
        return payload


SESSION_RECORD_SCHEMA = vol.Schema(
    {
        vol.Required("access_token"): vol.All(str, vol.Length(min=1)),
        vol.Optional("refresh_token", default=None): vol.Any(None, str),
        vol.Optional("user"): dict,
    },
    extra=vol.ALLOW_EXTRA,
)


@dataclass(slots=True, frozen=True)
class AuthSession:
    """An authenticated session; ``user`` is always derived from ``access_token``."""

    access_token: str
    refresh_token: str | None
    user: SessionUser

    @classmethod
    def from_tokens(cls, access_token: str, refresh_token: str | None = None) -> AuthSession:
        user = SessionUser.from_token(access_token)
        if user is None:
            raise CloudAuthError("access token has no subject claim")
        refresh = str(refresh_token).strip() if refresh_token else None
        return cls(access_token=access_token, refresh_token=refresh or None, user=user)

    @classmethod
    def from_payload(cls, payload: Any) -> AuthSession:
        """Create a session from a token endpoint or persisted payload."""

        try:
            data = SESSION_RECORD_SCHEMA(payload)
        except vol.Invalid as err:
            raise CloudAuthError(f"invalid session payload: {err}") from err
        return cls.from_tokens(data["access_token"], data["refresh_token"])

    @classmethod
    def from_json(cls, raw: str) -> AuthSession:
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError) as err:
            raise CloudAuthError("stored session is not valid JSON") from err
        return cls.from_payload(payload)

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "user": self.user.to_dict(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @property
    def expires_at(self) -> datetime | None:
        return token_expiry(self.access_token)

    def is_expired(self, buffer_seconds: float = 0, *, now: datetime | None = None) -> bool:
        return is_token_expired(self.access_token, buffer_seconds, now=now)


class CloudAuthClient:
    """Thin wrapper around the magic-link and token endpoints."""

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

    async def async_send_otp(self, email: str) -> None:
        """Ask the backend to e-mail a one-time login link to ``email``."""

        if not self._config.configured:
            raise CloudAuthError(MSG_NOT_CONFIGURED)
        payload = {
            "email": email,
            "create_user": True,
            "data": {},
            "gotrue_meta_security": {},
        }
        try:
            async with self._client().post(
                f"{self._config.auth_url}/otp",
                json=payload,
                headers=self._config.headers(),
                timeout=ClientTimeout(total=self._config.timeout),
            ) as resp:
                text = await resp.text()
                if resp.status >= 400:
                    raise CloudAuthError(text.strip() or MSG_OTP_FAILED)
        except (ClientError, TimeoutError) as err:
            raise CloudAuthError(f"magic link request failed: {err}") from err
        _LOGGER.debug("Magic link requested")

    async def async_refresh(self, refresh_token: str) -> AuthSession:
        """Exchange ``refresh_token`` for a new session."""

        if not self._config.configured:
            raise CloudAuthError(MSG_NOT_CONFIGURED)
        try:
            async with self._client().post(
                f"{self._config.auth_url}/token",
                params={"grant_type": "refresh_token"},
                json={"refresh_token": refresh_token},
                headers=self._config.headers(),
                timeout=ClientTimeout(total=self._config.timeout),
            ) as resp:
                if resp.status >= 400:
                    text = await resp.text()
                    raise CloudAuthError(text.strip() or f"refresh failed: HTTP {resp.status}")
                try:
                    data = await resp.json(content_type=None)
                except ValueError as err:
                    raise CloudAuthError("refresh response is not valid JSON") from err
        except (ClientError, TimeoutError) as err:
            raise CloudAuthError(f"refresh request failed: {err}") from err

        if not isinstance(data, Mapping):
            raise CloudAuthError("refresh response is not an object")
        return AuthSession.from_payload(dict(data))


__all__ = [
    "AuthSession",
    "CloudAuthClient",
    "CloudAuthError",
    "SessionUser",
    "decode_claims",
    "is_token_expired",
    "token_expiry",
]
