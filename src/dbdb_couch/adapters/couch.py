"""
CouchDB / Cloudant document adapter.

:class:`CouchAdapter` exposes the document store surface (get, insert, update,
delete, bulk writes and view queries) on top of :class:`CouchDBClient`. Public
documents carry their identifier in ``id``; the adapter converts to and from
CouchDB's ``_id`` on every call and never modifies the caller's documents.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import httpx

from ..config import CouchSettings
from ..core.documents import DELETED, ERROR, PUBLIC_ID, REASON, REVISION, VIEW_KEY, Document, merge_for_update, to_public, to_store
from ..core.logging import bind, get_logger, log_progress
from ..core.query import ViewOptions, build_view_query, parse_view_id
from ..core.session import ConnectionState, SessionManager
from .api.base import APIError, GenericStoreError
from .api.couchdb import CouchDatabase, CouchDBClient
from .base import AdapterError, ValidationError, VerificationResult


class CouchAdapter:
    """
    Document store adapter for one CouchDB database.

    Parameters
    ----------
    settings:
        :class:`CouchSettings` or a mapping with ``url``, ``db`` and optionally
        ``key`` and ``password``. A mapping is copied, so later changes to it do
        not reach the adapter.
    client:
        Server client to use instead of building one from ``settings``.
    transport:
        HTTPX transport handed to the default client, mainly for tests.
    """

    db_type = "couchdb"

    def __init__(
        self,
        settings: Union[CouchSettings, Mapping[str, Any]],
        *,
        client: Optional[CouchDBClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not isinstance(settings, CouchSettings):
            settings = CouchSettings.from_mapping(settings)
        self.settings = settings
        self.client = client or CouchDBClient(settings.url, timeout=settings.timeout, transport=transport)
        self.logger = get_logger(__name__, extra={"db": settings.db})
        self._session: SessionManager[CouchDatabase] = SessionManager(self._open)

    async def __aenter__(self) -> "CouchAdapter":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.disconnect()

    # ------------------------------------------------------------------ connection

    async def _open(self) -> CouchDatabase:
        cookie = None
        if self.settings.has_credentials:
            log_progress(self.logger, "Authenticating", phase="connect", status="started", level=logging.DEBUG)
            cookie = await self.client.authenticate(self.settings.key or "", self.settings.password or "")
            log_progress(self.logger, "Authenticated", phase="connect", status="ok")
        return self.client.use(self.settings.db, cookie=cookie)

    @property
    def connection_state(self) -> ConnectionState:
        return self._session.state

    async def connect(self) -> CouchDatabase:
        """Return the database handle, authenticating first if credentials are configured."""

        return await self._session.acquire()

    def disconnect(self) -> None:
        self._session.reset()

    # ------------------------------------------------------------------ documents

    async def get(self, doc_id: Union[str, Sequence[str]]) -> Any:
        """
        Fetch a document by id, or several documents when given a list of ids.

        A list returns one entry per id, in input order, with ``None`` for ids
        the database does not know.
        """

        if isinstance(doc_id, (list, tuple)):
            return await self._get_many(doc_id)
        if not doc_id:
            raise ValidationError("Missing document id")
        conn = await self.connect()
        return to_public(await conn.get(doc_id))

    async def _get_many(self, ids: Sequence[str]) -> List[Optional[Document]]:
        if not ids:
            return []
        conn = await self.connect()
        rows = await conn.fetch_many(ids)
        found: Dict[str, Mapping[str, Any]] = {}
        for row in rows:
            doc = row.get("doc")
            if row.get("error") or not isinstance(doc, Mapping):
                continue
            found[row.get("key", doc.get("_id"))] = doc
        return [to_public(found[key]) if key in found else None for key in ids]

    async def insert(self, doc: Optional[Mapping[str, Any]]) -> Document:
        """
        Write a document and return it with the ``id`` and ``_rev`` assigned by the store.

        Updating an existing document needs its current ``_rev``; use
        :meth:`update` to have it looked up.
        """

        if doc is None:
            raise ValidationError("Missing document object")
        conn = await self.connect()
        doc_id, rev = await conn.insert(to_store(doc))
        result = to_public(doc)
        result[PUBLIC_ID] = doc_id
        result[REVISION] = rev
        return result

    async def update(self, doc: Optional[Mapping[str, Any]]) -> Document:
        """
        Merge ``doc`` into the stored document and write it back.

        Fields not present in ``doc`` are kept. ``createdAt`` and reserved ``_``
        fields always come from the stored version.
        """

        if doc is None:
            raise ValidationError("Missing document object")
        if not doc.get(PUBLIC_ID):
            raise ValidationError("Missing id")
        stored = await self.get(doc[PUBLIC_ID])
        return await self.insert(merge_for_update(stored, doc))

    async def delete(self, doc_id: Optional[str]) -> Document:
        if not doc_id:
            raise ValidationError("Missing doc id")
        conn = await self.connect()
        rev = await conn.head_document(doc_id)
        new_rev = await conn.destroy(doc_id, rev)
        bind(self.logger, doc_id=doc_id).debug("Document deleted", extra={"rev": new_rev})
        return {PUBLIC_ID: doc_id, DELETED: True, REVISION: new_rev}

    async def insert_many(self, docs: Optional[Sequence[Mapping[str, Any]]]) -> List[Document]:
        """
        Write several documents in one ``_bulk_docs`` request.

        Items the store rejects come back with ``_error`` and ``_reason`` set
        instead of failing the whole call.
        """

        if docs is None:
            raise ValidationError("Missing documents array")
        if not docs:
            return []
        conn = await self.connect()
        try:
            outcomes = await conn.bulk_write([to_store(doc) for doc in docs])
        except APIError as exc:
            raise type(exc)(
                f"Could not insert documents. {exc}",
                status_code=exc.status_code,
                error=exc.error,
                reason=exc.reason,
            ) from exc
        if len(outcomes) != len(docs):
            raise GenericStoreError(f"Could not insert documents. Expected {len(docs)} results, got {len(outcomes)}")

        results: List[Document] = []
        failures = 0
        for doc, outcome in zip(docs, outcomes):
            item = to_public(doc)
            if outcome.get("id") is not None:
                item[PUBLIC_ID] = outcome["id"]
            if outcome.get("rev") is not None:
                item[REVISION] = outcome["rev"]
            if outcome.get("error") is not None:
                item[ERROR] = outcome["error"]
                item[REASON] = outcome.get("reason")
                failures += 1
            results.append(item)
        if failures:
            self.logger.warning("Bulk write partially failed", extra={"count": failures, "total": len(docs)})
        return results

    async def delete_many(self, docs: Optional[Sequence[Mapping[str, Any]]]) -> List[Document]:
        """Mark documents as deleted through :meth:`insert_many`; each needs its ``_rev``."""

        if docs is None:
            raise ValidationError("Missing documents array")
        return await self.insert_many([{**doc, DELETED: True} for doc in docs])

    # ------------------------------------------------------------------ views

    async def get_view(self, view_id: str, options: Optional[ViewOptions] = None) -> List[Document]:
        """
        Query ``"<design doc>:<view>"`` and return the documents of its rows.

        Each document carries the row's sort key under ``_key``, which can be
        passed back as ``start_after`` to fetch the next page. Rows with neither
        a document nor an object value are left out.
        """

        design_doc, view = parse_view_id(view_id)
        query = build_view_query(options)
        if query.empty:
            return []
        conn = await self.connect()
        payload = await conn.query_view(design_doc, view, query.to_params())

        docs: List[Document] = []
        for row in payload.get("rows") or []:
            body = row.get("doc")
            if not isinstance(body, Mapping):
                body = row.get("value")
            if not isinstance(body, Mapping):
                continue
            item = to_public(body)
            if PUBLIC_ID not in item and row.get("id") is not None:
                item[PUBLIC_ID] = row["id"]
            item[VIEW_KEY] = row.get("key")
            docs.append(item)
        bind(self.logger, view=view_id).debug("View queried", extra={"count": len(docs)})
        return docs

    # ------------------------------------------------------------------ health

    async def verify(self) -> VerificationResult:
        try:
            conn = await self.connect()
            info = await conn.info()
        except AdapterError as exc:
            return VerificationResult(success=False, message=f"CouchDB verification failed: {exc}")
        return VerificationResult(
            success=True,
            message="CouchDB database reachable.",
            details={"db": info.get("db_name", self.settings.db), "doc_count": info.get("doc_count")},
        )
