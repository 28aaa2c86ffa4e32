"""Own the authenticated session and keep its access token fresh."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from .auth import AuthSession, CloudAuthClient, CloudAuthError, SessionUser
from .config import CloudConfig
from .const import MSG_NOT_CONFIGURED, MSG_OTP_FAILED, SESSION_STORAGE_KEY, TOKEN_REFRESH_BUFFER_SECONDS
from .location import Location, parse_fragment, strip_fragment
from .storage import DocumentCache, SessionStorage

_LOGGER = logging.getLogger(__name__)

SessionListener = Callable[[AuthSession | None], Awaitable[None] | None]


class SessionManager:
    """Session state holder shared by the UI layer and the sync orchestrator.

    The session is only ever changed through this object's coroutines; readers
    use the ``session``/``user``/``is_authenticated``/``loading`` properties.
    """

    def __init__(
        self,
        config: CloudConfig,
        storage: SessionStorage,
        *,
        client: CloudAuthClient | None = None,
        document_cache: DocumentCache | None = None,
        location: Location | None = None,
        buffer_seconds: float = TOKEN_REFRESH_BUFFER_SECONDS,
        storage_key: str = SESSION_STORAGE_KEY,
    ) -> None:
        self.config = config
        self._storage = storage
        self._client = client or CloudAuthClient(config)
        self._owns_client = client is None
        self._document_cache = document_cache
        self._location = location
        self._buffer_seconds = buffer_seconds
        self._storage_key = storage_key
        self._session: AuthSession | None = None
        self._loading = True
        self._refresh_task: asyncio.Task[AuthSession | None] | None = None
        self._generation = 0
        self._background: set[asyncio.Task[Any]] = set()
        self._listeners: list[SessionListener] = []

    # ------------------------------------------------------------------
    @property
    def session(self) -> AuthSession | None:
        return self._session

    @property
    def user(self) -> SessionUser | None:
        return self._session.user if self._session else None

    @property
    def is_authenticated(self) -> bool:
        return self._session is not None

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def refresh_in_flight(self) -> bool:
        return self._refresh_task is not None

    def register_listener(self, listener: SessionListener) -> Callable[[], None]:
        """Call ``listener`` with the new session whenever it changes."""

        if listener not in self._listeners:
            self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    # ------------------------------------------------------------------
    async def async_initialize(self) -> None:
        """Adopt a magic-link session or restore the persisted one."""

        try:
            if await self._async_consume_magic_link():
                return
            await self._async_restore()
        finally:
            if self._loading:
                self._loading = False
                _LOGGER.debug("Session loading complete (authenticated=%s)", self.is_authenticated)

    async def _async_consume_magic_link(self) -> bool:
        if self._location is None:
            return False
        href = self._location.href
        tokens = parse_fragment(href)
        if tokens is None:
            return False
        # Strip the fragment in place before decoding it.
        self._location.replace(strip_fragment(href))
        try:
            session = AuthSession.from_tokens(tokens.access_token, tokens.refresh_token)
        except CloudAuthError as err:
            _LOGGER.warning("Ignoring magic link callback: %s", err)
            return False
        await self._async_adopt(session)
        _LOGGER.info("Signed in as %s via magic link", session.user.email or session.user.id)
        return True

    async def _async_restore(self) -> None:
        try:
            raw = await self._storage.async_get(self._storage_key)
        except OSError as err:
            _LOGGER.warning("Could not read stored session: %s", err)
            return
        if not raw:
            return
        try:
            stored = AuthSession.from_json(raw)
        except CloudAuthError as err:
            _LOGGER.warning("Discarding stored session: %s", err)
            await self._async_clear()
            return
        if stored.is_expired(self._buffer_seconds):
            await self.async_refresh(stored.refresh_token)
            return
        await self._async_set(stored)

    # ------------------------------------------------------------------
    async def async_get_access_token(self) -> str | None:
        """Return a token valid for at least the look-ahead buffer, refreshing if needed."""

        session = self._session
        if session is None:
            return None
        if not session.is_expired(self._buffer_seconds):
            return session.access_token
        refreshed = await self.async_refresh(session.refresh_token)
        return refreshed.access_token if refreshed else None

    async def async_refresh(self, refresh_token: str | None) -> AuthSession | None:
        """Exchange ``refresh_token`` for a new session, at most once at a time."""

        if not self.config.configured or not refresh_token:
            await self._async_clear()
            return None
        task = self._refresh_task
        if task is None:
            task = asyncio.get_running_loop().create_task(self._async_do_refresh(refresh_token))
            self._refresh_task = task
            task.add_done_callback(self._refresh_done)
        return await asyncio.shield(task)

    def _refresh_done(self, task: asyncio.Task[AuthSession | None]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None

    async def _async_do_refresh(self, refresh_token: str) -> AuthSession | None:
        generation = self._generation
        try:
            session = await self._client.async_refresh(refresh_token)
        except CloudAuthError as err:
            if generation != self._generation:
                return None
            _LOGGER.warning("Token refresh failed: %s", err)
            await self._async_clear()
            return None
        if generation != self._generation:
            # Signed out while the request was in flight.
            _LOGGER.debug("Discarding token refresh that finished after sign-out")
            return None
        await self._async_adopt(session)
        _LOGGER.debug("Access token refreshed for %s", session.user.id)
        return session

    # ------------------------------------------------------------------
    async def async_sign_in_with_otp(self, email: str) -> dict[str, str | None]:
        """Request a magic link for ``email``; never touches the session."""

        if not self.config.configured:
            return {"error": MSG_NOT_CONFIGURED}
        try:
            await self._client.async_send_otp(email)
        except CloudAuthError as err:
            return {"error": str(err) or MSG_OTP_FAILED}
        return {"error": None}

    async def async_sign_out(self) -> None:
        await self._async_clear()
        _LOGGER.info("Signed out")

    async def async_close(self) -> None:
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        if self._owns_client:
            await self._client.async_close()

    # ------------------------------------------------------------------
    async def _async_adopt(self, session: AuthSession) -> None:
        generation = self._generation
        try:
            await self._storage.async_set(self._storage_key, session.to_json())
        except OSError as err:
            _LOGGER.warning("Could not persist session: %s", err)
        if generation != self._generation:
            return
        await self._async_set(session)

    async def _async_clear(self) -> None:
        self._generation += 1
        self._refresh_task = None
        try:
            await self._storage.async_remove(self._storage_key)
        except OSError as err:
            _LOGGER.warning("Could not remove stored session: %s", err)
        self._invalidate_document_cache()
        await self._async_set(None)

    def _invalidate_document_cache(self) -> None:
        if self._document_cache is None:
            return
        task = asyncio.get_running_loop().create_task(self._document_cache.async_invalidate())
        self._background.add(task)
        task.add_done_callback(self._background_done)

    def _background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        err = task.exception()
        if err is not None:
            _LOGGER.warning("Local diagram cache invalidation failed: %s", err)

    async def _async_set(self, session: AuthSession | None) -> None:
        previous = self._session
        self._session = session
        if previous == session:
            return
        for listener in list(self._listeners):
            try:
                result = listener(session)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as err:  # pragma: no cover - defensive log
                _LOGGER.debug("Session listener raised error: %s", err, exc_info=True)


__all__ = ["SessionListener", "SessionManager"]
