"""
Local library store.

SQLite persistence for lessons, figures, grouping entities, media blobs,
settings rows and the tombstone log.
"""

from .blob_cache import BlobCache
from .local import LocalStore
from .notifier import ChangeNotifier
from .schema import SCHEMA_VERSION, migrate
from .tombstones import TombstoneLog
from .unit_of_work import UnitOfWork

__all__ = [
    "BlobCache",
    "ChangeNotifier",
    "LocalStore",
    "SCHEMA_VERSION",
    "TombstoneLog",
    "UnitOfWork",
    "migrate",
]
