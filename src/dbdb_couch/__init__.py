"""
Asynchronous CouchDB / Cloudant document adapter.

:class:`~dbdb_couch.adapters.couch.CouchAdapter` wraps document CRUD, bulk
writes and view queries behind a small ``async`` interface, caches one
authenticated session per adapter and maps store errors to typed exceptions.
``couchdb`` is an alias of the adapter class, keyed by its ``db_type``.
"""

from .adapters.api.base import (
    APIError,
    ConflictError,
    GenericStoreError,
    NotFoundError,
    StoreError,
    TransportError,
)
from .adapters.base import AdapterError, ValidationError, VerificationResult
from .adapters.couch import CouchAdapter
from .config import CouchSettings, SettingsError, load_settings
from .core.query import ViewOptions

__version__ = "0.4.0"

couchdb = CouchAdapter

__all__ = [
    "APIError",
    "AdapterError",
    "ConflictError",
    "CouchAdapter",
    "CouchSettings",
    "GenericStoreError",
    "NotFoundError",
    "SettingsError",
    "StoreError",
    "TransportError",
    "ValidationError",
    "VerificationResult",
    "ViewOptions",
    "couchdb",
    "load_settings",
]
