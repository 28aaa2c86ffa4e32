from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any


class SyncStatus(StrEnum):
    """Lifecycle of the automatic cloud sync."""

    IDLE = "idle"
    PENDING = "pending"
    SYNCING = "syncing"
    SYNCED = "synced"
    ERROR = "error"


STATUS_LABELS: dict[SyncStatus, str] = {
    SyncStatus.IDLE: "Local",
    SyncStatus.PENDING: "Pending",
    SyncStatus.SYNCING: "Syncing",
    SyncStatus.SYNCED: "Synced",
    SyncStatus.ERROR: "Error",
}


@dataclass(slots=True, frozen=True)
class SyncState:
    """Snapshot handed to sync listeners."""

    status: SyncStatus = SyncStatus.IDLE
    last_synced_at: datetime | None = None
    error: str | None = None

    @property
    def label(self) -> str:
        return STATUS_LABELS[self.status]

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": str(self.status),
            "label": self.label,
            "last_synced_at": self.last_synced_at.isoformat() if self.last_synced_at else None,
            "error": self.error,
        }


__all__ = ["STATUS_LABELS", "SyncState", "SyncStatus"]
