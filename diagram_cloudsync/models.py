"""Diagram document as seen by the sync layer."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from copy import deepcopy
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .const import CHILD_COLLECTIONS

Entity = dict[str, Any]


def _parse_timestamp(raw: Any) -> datetime:
    if isinstance(raw, datetime):
        ts = raw
    else:
        text = str(raw or "").strip()
        if not text:
            raise ValueError("timestamp missing")
        ts = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


def _format_timestamp(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC).isoformat()


def entity_id(entity: Mapping[str, Any]) -> str:
    value = entity.get("id") if isinstance(entity, Mapping) else None
    if value is None or value == "":
        raise ValueError("diagram entity is missing an id")
    return str(value)


def _entities(raw: Any) -> list[Entity]:
    if raw is None:
        return []
    if not isinstance(raw, Sequence) or isinstance(raw, str | bytes | bytearray):
        raise ValueError("diagram collection must be a list")
    items: list[Entity] = []
    for item in raw:
        if not isinstance(item, Mapping):
            raise ValueError("diagram entity must be an object")
        items.append(dict(item))
    return items


@dataclass(slots=True, frozen=True, eq=False)
class DiagramFingerprint:
    """Cheap change marker: id, ``updated_at`` and the identity of each collection.

    Collections are held by reference and compared with ``is``.
    """

    diagram_id: str
    updated_at: datetime
    collections: tuple[list[Entity], ...]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DiagramFingerprint):
            return NotImplemented
        return (
            self.diagram_id == other.diagram_id
            and self.updated_at == other.updated_at
            and len(self.collections) == len(other.collections)
            and all(mine is theirs for mine, theirs in zip(self.collections, other.collections))
        )

    def __hash__(self) -> int:
        return hash((self.diagram_id, self.updated_at, tuple(id(item) for item in self.collections)))


@dataclass(slots=True)
class Diagram:
    """A diagram header plus its six entity collections.

    Entities are opaque payloads keyed by their own ``id``; the sync layer
    never looks inside them.
    """

    id: str
    name: str
    database_type: str
    created_at: datetime
    updated_at: datetime
    database_edition: str | None = None
    tables: list[Entity] = field(default_factory=list)
    relationships: list[Entity] = field(default_factory=list)
    dependencies: list[Entity] = field(default_factory=list)
    areas: list[Entity] = field(default_factory=list)
    custom_types: list[Entity] = field(default_factory=list)
    notes: list[Entity] = field(default_factory=list)

    def fingerprint(self) -> DiagramFingerprint:
        return DiagramFingerprint(
            diagram_id=self.id,
            updated_at=self.updated_at,
            collections=tuple(getattr(self, attr) for attr, _table in CHILD_COLLECTIONS),
        )

    def collection(self, attr: str) -> list[Entity]:
        return getattr(self, attr) or []

    # ------------------------------------------------------------------
    def to_row(self, user_id: str) -> dict[str, Any]:
        """Return the remote header row owned by ``user_id``."""

        return {
            "id": self.id,
            "user_id": user_id,
            "name": self.name,
            "database_type": self.database_type,
            "database_edition": self.database_edition,
            "created_at": _format_timestamp(self.created_at),
            "updated_at": _format_timestamp(self.updated_at),
        }

    def child_rows(self, attr: str, user_id: str) -> list[dict[str, Any]]:
        """Return remote rows for one collection, embedding a copy of each payload."""

        return [
            {
                "id": entity_id(entity),
                "diagram_id": self.id,
                "user_id": user_id,
                "data": deepcopy(entity),
            }
            for entity in self.collection(attr)
        ]

    @classmethod
    def from_row(cls, row: Mapping[str, Any], children: Mapping[str, Sequence[Entity]] | None = None) -> Diagram:
        children = children or {}
        diagram_id = str(row.get("id") or "").strip()
        if not diagram_id:
            raise ValueError("diagram row missing id")
        edition = row.get("database_edition")
        return cls(
            id=diagram_id,
            name=str(row.get("name") or ""),
            database_type=str(row.get("database_type") or ""),
            database_edition=str(edition) if edition else None,
            created_at=_parse_timestamp(row.get("created_at")),
            updated_at=_parse_timestamp(row.get("updated_at")),
            **{attr: _entities(children.get(attr)) for attr, _table in CHILD_COLLECTIONS},
        )

    # ------------------------------------------------------------------
    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "database_type": self.database_type,
            "database_edition": self.database_edition,
            "created_at": _format_timestamp(self.created_at),
            "updated_at": _format_timestamp(self.updated_at),
        }
        for attr, _table in CHILD_COLLECTIONS:
            payload[attr] = deepcopy(self.collection(attr))
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Diagram:
        """Inverse of :meth:`to_dict`; also accepts the header row layout."""

        return cls.from_row(payload, {attr: payload.get(attr) for attr, _table in CHILD_COLLECTIONS})


__all__ = ["Diagram", "DiagramFingerprint", "Entity", "entity_id"]
