"""
Adapter interfaces for remote document stores.

Concrete adapters live in submodules keyed by store type and are imported from
there, e.g. :mod:`dbdb_couch.adapters.couch`.
"""

from .base import AdapterError, DocumentStoreAdapter, ValidationError, VerificationResult

__all__ = [
    "AdapterError",
    "DocumentStoreAdapter",
    "ValidationError",
    "VerificationResult",
]
