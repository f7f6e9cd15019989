"""
HTTP clients for document stores.

Client classes wrap low-level HTTP calls and classify failed responses into the
error taxonomy defined in :mod:`dbdb_couch.adapters.api.base`.
"""

from .base import (
    APIError,
    BaseAPIClient,
    ConflictError,
    GenericStoreError,
    NotFoundError,
    StoreError,
    TransportError,
    classify_store_error,
)
from .couchdb import CouchDatabase, CouchDBClient, encode_view_params

__all__ = [
    "APIError",
    "BaseAPIClient",
    "ConflictError",
    "CouchDatabase",
    "CouchDBClient",
    "GenericStoreError",
    "NotFoundError",
    "StoreError",
    "TransportError",
    "classify_store_error",
    "encode_view_params",
]
