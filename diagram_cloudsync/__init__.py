"""Session lifecycle and remote reconciliation for diagram cloud sync."""

from .auth import AuthSession, CloudAuthClient, CloudAuthError, SessionUser, decode_claims, is_token_expired
from .config import CloudConfig
from .location import HistoryLocation, Location, MagicLinkTokens, parse_fragment, strip_fragment
from .manager import CloudSyncManager
from .models import Diagram, DiagramFingerprint
from .rest import CloudRestClient, CloudRestError
from .session import SessionManager
from .status import STATUS_LABELS, SyncState, SyncStatus
from .storage import (
    DocumentCache,
    JsonFileSessionStorage,
    MemorySessionStorage,
    PathDocumentCache,
    SessionStorage,
)
from .worker import CloudSyncError, DiagramSyncWorker

__all__ = [
    "AuthSession",
    "CloudAuthClient",
    "CloudAuthError",
    "SessionUser",
    "decode_claims",
    "is_token_expired",
    "CloudConfig",
    "HistoryLocation",
    "Location",
    "MagicLinkTokens",
    "parse_fragment",
    "strip_fragment",
    "CloudSyncManager",
    "CloudSyncError",
    "Diagram",
    "DiagramFingerprint",
    "CloudRestClient",
    "CloudRestError",
    "SessionManager",
    "STATUS_LABELS",
    "SyncState",
    "SyncStatus",
    "DocumentCache",
    "JsonFileSessionStorage",
    "MemorySessionStorage",
    "PathDocumentCache",
    "SessionStorage",
    "DiagramSyncWorker",
]
