"""
Base protocol and root errors for document store adapters.

Adapters expose a small asynchronous surface (get, insert, update, delete,
bulk writes and view queries) over a remote document store. Retry policy and
conflict resolution stay with the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Protocol, Sequence, Union, runtime_checkable


class AdapterError(RuntimeError):
    """Root of every error raised by an adapter."""


class ValidationError(AdapterError, ValueError):
    """Raised before any request when a required argument is missing or malformed."""


@dataclass(slots=True)
class VerificationResult:
    """
    Outcome of an adapter connectivity check.

    Attributes
    ----------
    success:
        Whether the store answered as expected.
    message:
        Human-readable summary.
    details:
        Optional structured metadata such as the server version or the database name.
    """

    success: bool
    message: str
    details: Optional[Mapping[str, object]] = None


@runtime_checkable
class DocumentStoreAdapter(Protocol):
    """Protocol implemented by document store adapters."""

    db_type: str

    async def connect(self) -> Any:
        """Open, or reuse, the connection to the store."""

    def disconnect(self) -> None:
        """Forget the cached connection."""

    async def get(self, doc_id: Union[str, Sequence[str]]) -> Any:
        """Fetch one document, or several in input order."""

    async def insert(self, doc: Mapping[str, Any]) -> dict:
        """Write a document and return it with its id and revision."""

    async def update(self, doc: Mapping[str, Any]) -> dict:
        """Merge the given fields into the stored document."""

    async def delete(self, doc_id: str) -> dict:
        """Delete a document by id."""

    async def insert_many(self, docs: Sequence[Mapping[str, Any]]) -> List[dict]:
        """Write several documents in one request."""

    async def delete_many(self, docs: Sequence[Mapping[str, Any]]) -> List[dict]:
        """Delete several documents in one request."""

    async def get_view(self, view_id: str, options: Any = None) -> List[dict]:
        """Query a view and return its documents."""

    async def verify(self) -> VerificationResult:
        """Perform a lightweight connectivity check."""
