from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any

from .const import (
    CHILD_COLLECTIONS,
    CHILD_COLUMNS,
    DIAGRAM_COLUMNS,
    PREFER_MINIMAL,
    TABLE_DIAGRAMS,
)
from .models import Diagram, Entity
from .rest import CloudRestClient, CloudRestError, eq

_LOGGER = logging.getLogger(__name__)


class CloudSyncError(RuntimeError):
    """Raised when a diagram cannot be mapped to or from remote rows."""

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason


@dataclass(slots=True, frozen=True)
class DiagramRows:
    """Remote rows of one diagram, detached from later edits."""

    diagram_id: str
    user_id: str
    header: dict[str, Any]
    children: dict[str, list[dict[str, Any]]]


class DiagramSyncWorker:
    """Replace-all reconciliation of one diagram against the remote store.

    There is no multi-table transaction on the remote side: the header is
    written first, then every child collection is deleted and re-inserted.
    """

    def __init__(self, client: CloudRestClient, *, logger: logging.Logger | None = None) -> None:
        self.client = client
        self.logger = logger or _LOGGER

    @property
    def configured(self) -> bool:
        return self.client.config.configured

    # ------------------------------------------------------------------
    def build_rows(self, diagram: Diagram, *, user_id: str) -> DiagramRows:
        """Snapshot the header and child rows of ``diagram`` as owned by ``user_id``."""

        try:
            header = diagram.to_row(user_id)
            children = {table: diagram.child_rows(attr, user_id) for attr, table in CHILD_COLLECTIONS}
        except ValueError as err:
            raise CloudSyncError(f"diagram {diagram.id}: {err}", reason="invalid_diagram") from err
        return DiagramRows(diagram_id=diagram.id, user_id=user_id, header=header, children=children)

    async def async_push(self, diagram: Diagram, *, user_id: str, access_token: str | None) -> bool:
        """Write ``diagram`` for ``user_id``; ``False`` means nothing was sent."""

        if not access_token or not self.configured:
            return False
        return await self.async_push_rows(self.build_rows(diagram, user_id=user_id), access_token=access_token)

    async def async_push_rows(self, rows: DiagramRows, *, access_token: str | None) -> bool:
        """Replace the remote copy with a snapshot from :meth:`build_rows`."""

        if not access_token or not self.configured:
            return False
        await self._async_write_header(rows.header, user_id=rows.user_id, access_token=access_token)
        await self.async_remove_children(rows.diagram_id, user_id=rows.user_id, access_token=access_token)
        await asyncio.gather(
            *(
                self.client.async_insert(table, table_rows, access_token=access_token)
                for table, table_rows in rows.children.items()
            )
        )
        self.logger.debug(
            "Pushed diagram %s (%s)",
            rows.diagram_id,
            ", ".join(f"{table}={len(table_rows)}" for table, table_rows in rows.children.items()),
        )
        return True

    async def _async_write_header(self, header: dict[str, Any], *, user_id: str, access_token: str) -> None:
        try:
            await self.client.async_insert(TABLE_DIAGRAMS, [header], access_token=access_token)
        except CloudRestError as err:
            if not err.forbidden:
                raise
            # No UPDATE policy on the header table: replace the row.
            self.logger.debug("Header upsert forbidden for %s, replacing row", header["id"])
            await self.client.async_delete(
                TABLE_DIAGRAMS,
                access_token=access_token,
                filters={"id": eq(header["id"]), "user_id": eq(user_id)},
            )
            await self.client.async_insert(
                TABLE_DIAGRAMS,
                [header],
                access_token=access_token,
                prefer=PREFER_MINIMAL,
            )

    async def async_remove_children(self, diagram_id: str, *, user_id: str, access_token: str) -> None:
        filters = {"diagram_id": eq(diagram_id), "user_id": eq(user_id)}
        await asyncio.gather(
            *(
                self.client.async_delete(table, access_token=access_token, filters=filters)
                for _attr, table in CHILD_COLLECTIONS
            )
        )

    async def async_delete(self, diagram_id: str, *, user_id: str, access_token: str | None) -> bool:
        if not access_token or not self.configured:
            return False
        await self.async_remove_children(diagram_id, user_id=user_id, access_token=access_token)
        await self.client.async_delete(
            TABLE_DIAGRAMS,
            access_token=access_token,
            filters={"id": eq(diagram_id), "user_id": eq(user_id)},
        )
        self.logger.debug("Deleted diagram %s", diagram_id)
        return True

    # ------------------------------------------------------------------
    async def async_pull(self, *, user_id: str, access_token: str | None) -> list[Diagram]:
        """Fetch every diagram owned by ``user_id``, newest first."""

        if not access_token or not self.configured:
            return []
        rows = await self.client.async_select(
            TABLE_DIAGRAMS,
            access_token=access_token,
            columns=DIAGRAM_COLUMNS,
            filters={"user_id": eq(user_id)},
            order="updated_at.desc",
        )
        if not rows:
            return []
        grouped = await asyncio.gather(
            *(self._async_fetch_children(table, user_id=user_id, access_token=access_token) for _attr, table in CHILD_COLLECTIONS)
        )
        by_attr = {attr: grouped[index] for index, (attr, _table) in enumerate(CHILD_COLLECTIONS)}
        try:
            return [
                Diagram.from_row(row, {attr: children.get(str(row.get("id")), []) for attr, children in by_attr.items()})
                for row in rows
            ]
        except ValueError as err:
            raise CloudSyncError(f"malformed diagram row: {err}", reason="invalid_row") from err

    async def _async_fetch_children(self, table: str, *, user_id: str, access_token: str) -> dict[str, list[Entity]]:
        rows = await self.client.async_select(
            table,
            access_token=access_token,
            columns=CHILD_COLUMNS,
            filters={"user_id": eq(user_id)},
        )
        grouped: defaultdict[str, list[Entity]] = defaultdict(list)
        for row in rows:
            data = row.get("data")
            if isinstance(data, dict):
                grouped[str(row.get("diagram_id"))].append(data)
        return dict(grouped)


__all__ = ["CloudSyncError", "DiagramRows", "DiagramSyncWorker"]
