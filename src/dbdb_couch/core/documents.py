"""
Mapping between the public document shape and the shape stored in CouchDB.

Callers work with an ``id`` field while CouchDB expects ``_id``. Both helpers
return a new mapping so the caller's document is never modified.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping

PUBLIC_ID = "id"
STORE_ID = "_id"
REVISION = "_rev"
DELETED = "_deleted"
ERROR = "_error"
REASON = "_reason"
VIEW_KEY = "_key"
CREATED_AT = "createdAt"

Document = Dict[str, Any]


def to_public(doc: Mapping[str, Any]) -> Document:
    """Return a copy of ``doc`` with ``_id`` renamed to ``id``."""

    result: Document = {key: value for key, value in doc.items() if key != STORE_ID}
    if STORE_ID in doc:
        result[PUBLIC_ID] = doc[STORE_ID]
    return result


def to_store(doc: Mapping[str, Any]) -> Document:
    """
    Return a copy of ``doc`` with ``id`` renamed to ``_id``.

    Without an ``id`` any existing ``_id`` is kept, and a document with neither
    leaves the identifier for the store to assign.
    """

    if PUBLIC_ID not in doc:
        return dict(doc)
    result: Document = {key: value for key, value in doc.items() if key != PUBLIC_ID}
    result[STORE_ID] = doc[PUBLIC_ID]
    return result


def is_reserved(field: str) -> bool:
    return field.startswith("_")


def merge_for_update(stored: Mapping[str, Any], changes: Mapping[str, Any]) -> Document:
    """
    Overlay ``changes`` on a stored document for a read-modify-write update.

    Reserved ``_`` fields and ``createdAt`` are taken from ``stored`` only.
    """

    merged: Document = dict(stored)
    for field, value in changes.items():
        if is_reserved(field) or field == CREATED_AT:
            continue
        merged[field] = value
    return merged
