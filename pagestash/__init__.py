from .errors import (
    ApiError,
    BadResponse,
    CredentialExpired,
    InvalidContent,
    MustReauthenticate,
    PagestashError,
    UnsupportedScheme,
)
from .library import Library
from .settings import Settings
from .snapshot import CaptureResult, SnapshotEngine
from .store import Catalog, SnapshotRecord, SnapshotStore
from .sync import ReconciliationEngine, SyncReport

__version__ = "0.1.0"

__all__ = [
    "ApiError",
    "BadResponse",
    "CaptureResult",
    "Catalog",
    "CredentialExpired",
    "InvalidContent",
    "Library",
    "MustReauthenticate",
    "PagestashError",
    "ReconciliationEngine",
    "Settings",
    "SnapshotEngine",
    "SnapshotRecord",
    "SnapshotStore",
    "SyncReport",
    "UnsupportedScheme",
]
