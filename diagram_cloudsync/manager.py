"""Keep the remote copy of the active diagram in step with local edits."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import suppress
from datetime import UTC, datetime
from typing import Any

from .auth import AuthSession
from .const import AUTO_SYNC_DEBOUNCE_SECONDS, MSG_SYNC_FAILED
from .models import Diagram, DiagramFingerprint
from .rest import CloudRestError
from .session import SessionManager
from .status import SyncState, SyncStatus
from .worker import CloudSyncError, DiagramSyncWorker

_LOGGER = logging.getLogger(__name__)

SyncListener = Callable[[SyncState], Awaitable[None] | None]

_KEEP = object()


class CloudSyncManager:
    """Debounced replace-all sync of the active diagram.

    The editing layer reports the current diagram through
    :meth:`update_diagram`; a change of id, ``updated_at`` or any collection
    object arms a debounce timer, and only the trailing edit of a burst reaches
    the network. Sync attempts are never cancelled once started and are not
    fenced against each other, so a slow attempt may land after a newer one.
    """

    def __init__(
        self,
        sessions: SessionManager,
        worker: DiagramSyncWorker,
        *,
        debounce_seconds: float = AUTO_SYNC_DEBOUNCE_SECONDS,
    ) -> None:
        self.sessions = sessions
        self.worker = worker
        self.debounce_seconds = debounce_seconds
        self._diagram: Diagram | None = None
        self._change_key: tuple[bool, DiagramFingerprint | None] | None = None
        self._state = SyncState()
        self._debounce_task: asyncio.Task[None] | None = None
        self._sync_tasks: set[asyncio.Task[None]] = set()
        self._listener_tasks: set[asyncio.Task[Any]] = set()
        self._listeners: list[SyncListener] = []
        self._last_delete_error: str | None = None
        self._last_fetch_error: str | None = None
        self._unsub_session = sessions.register_listener(self._handle_session_change)

    # ------------------------------------------------------------------
    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def status_value(self) -> SyncStatus:
        return self._state.status

    @property
    def last_synced_at(self) -> datetime | None:
        return self._state.last_synced_at

    @property
    def error(self) -> str | None:
        return self._state.error

    @property
    def diagram(self) -> Diagram | None:
        return self._diagram

    @property
    def sync_pending(self) -> bool:
        return self._debounce_task is not None and not self._debounce_task.done()

    def register_listener(self, listener: SyncListener) -> Callable[[], None]:
        """Call ``listener`` with a :class:`SyncState` on every state change."""

        if listener not in self._listeners:
            self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def status(self) -> dict[str, Any]:
        """Return runtime status information for diagnostics."""

        status = self._state.to_dict()
        status.update(
            {
                "configured": self.worker.configured,
                "authenticated": self.sessions.is_authenticated,
                "diagram_id": self._diagram.id if self._diagram else None,
                "debounce_armed": self.sync_pending,
                "in_flight": len(self._sync_tasks),
                "last_delete_error": self._last_delete_error,
                "last_fetch_error": self._last_fetch_error,
            }
        )
        return status

    # ------------------------------------------------------------------
    def update_diagram(self, diagram: Diagram | None) -> None:
        """Report the editor's current diagram; must run inside the event loop."""

        self._diagram = diagram
        self._evaluate()

    def _handle_session_change(self, _session: AuthSession | None) -> None:
        self._evaluate()

    def _evaluate(self) -> None:
        diagram = self._diagram
        authenticated = self.sessions.is_authenticated
        fingerprint = diagram.fingerprint() if diagram is not None and diagram.id else None
        key = (authenticated, fingerprint)
        if key == self._change_key:
            return
        self._change_key = key
        if not authenticated or fingerprint is None:
            self._cancel_debounce()
            self._set_state(SyncStatus.IDLE, error=None)
            return
        self._set_state(SyncStatus.PENDING)
        self._arm_debounce()

    def _arm_debounce(self) -> None:
        self._cancel_debounce()
        self._debounce_task = asyncio.get_running_loop().create_task(self._async_debounced_sync())

    def _cancel_debounce(self) -> None:
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = None

    async def _async_debounced_sync(self) -> None:
        await asyncio.sleep(self.debounce_seconds)
        if self._debounce_task is asyncio.current_task():
            self._debounce_task = None
        # Attempts run as their own tasks; re-arming cancels only the timer.
        task = asyncio.get_running_loop().create_task(self.async_trigger_sync())
        self._sync_tasks.add(task)
        task.add_done_callback(self._sync_tasks.discard)

    # ------------------------------------------------------------------
    async def async_trigger_sync(self) -> None:
        """Sync the active diagram now, bypassing the debounce window."""

        diagram = self._diagram
        user = self.sessions.user
        if not self.sessions.is_authenticated or user is None or diagram is None or not diagram.id:
            self._set_state(SyncStatus.IDLE, error=None)
            return
        if not self.worker.configured:
            self._set_state(SyncStatus.IDLE, error=None)
            return

        self._set_state(SyncStatus.SYNCING, error=None)
        try:
            # Edits made while the token refreshes belong to the next attempt.
            rows = self.worker.build_rows(diagram, user_id=user.id)
            access_token = await self.sessions.async_get_access_token()
            if access_token is None:
                self._set_state(SyncStatus.IDLE, error=None)
                return
            await self.worker.async_push_rows(rows, access_token=access_token)
        except (CloudRestError, CloudSyncError) as err:
            _LOGGER.warning("Cloud sync of %s failed: %s", diagram.id, err)
            self._set_state(SyncStatus.ERROR, error=str(err) or MSG_SYNC_FAILED)
            return
        except Exception as err:  # pragma: no cover - surfaced as status
            _LOGGER.exception("Unexpected cloud sync error for %s", diagram.id)
            self._set_state(SyncStatus.ERROR, error=str(err) or MSG_SYNC_FAILED)
            return
        self._set_state(SyncStatus.SYNCED, last_synced_at=datetime.now(tz=UTC), error=None)
        _LOGGER.info("Diagram %s synced", diagram.id)

    async def async_delete_diagram(self, diagram_id: str) -> bool:
        """Remove ``diagram_id`` and its collections from the remote store."""

        user = self.sessions.user
        if user is None or not self.worker.configured:
            return False
        try:
            access_token = await self.sessions.async_get_access_token()
            deleted = await self.worker.async_delete(diagram_id, user_id=user.id, access_token=access_token)
        except CloudRestError as err:
            _LOGGER.warning("Deleting %s from the cloud failed: %s", diagram_id, err)
            self._last_delete_error = str(err)
            return False
        self._last_delete_error = None
        return deleted

    async def async_fetch_diagrams(self) -> list[Diagram]:
        """Return the remote diagrams of the signed-in user, newest first."""

        user = self.sessions.user
        if user is None or not self.worker.configured:
            return []
        try:
            access_token = await self.sessions.async_get_access_token()
            diagrams = await self.worker.async_pull(user_id=user.id, access_token=access_token)
        except (CloudRestError, CloudSyncError) as err:
            _LOGGER.warning("Fetching diagrams from the cloud failed: %s", err)
            self._last_fetch_error = str(err)
            return []
        self._last_fetch_error = None
        return diagrams

    async def async_stop(self) -> None:
        """Drop any armed timer and wait for in-flight attempts to settle."""

        task = self._debounce_task
        self._cancel_debounce()
        if task is not None:
            with suppress(asyncio.CancelledError):
                await task
        pending = [*self._sync_tasks, *self._listener_tasks]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._unsub_session()

    # ------------------------------------------------------------------
    def _set_state(
        self,
        status: SyncStatus,
        *,
        error: Any = _KEEP,
        last_synced_at: datetime | None = None,
    ) -> None:
        state = SyncState(
            status=status,
            last_synced_at=last_synced_at or self._state.last_synced_at,
            error=self._state.error if error is _KEEP else error,
        )
        if state == self._state:
            return
        _LOGGER.debug("Sync status %s -> %s", self._state.status, state.status)
        self._state = state
        for listener in list(self._listeners):
            try:
                result = listener(state)
                if asyncio.iscoroutine(result):
                    task = asyncio.get_running_loop().create_task(result)
                    self._listener_tasks.add(task)
                    task.add_done_callback(self._listener_tasks.discard)
            except Exception as err:  # pragma: no cover - defensive log
                _LOGGER.debug("Sync listener raised error: %s", err, exc_info=True)


__all__ = ["CloudSyncManager", "SyncListener"]
