"""
CouchDB / Cloudant HTTP client.

Reference: https://docs.couchdb.org/en/stable/api/index.html

:class:`CouchDBClient` talks to the server (session authentication, server
info) and hands out :class:`CouchDatabase` handles bound to one database and,
optionally, one session cookie. Handles return raw store JSON; mapping to the
public document shape is left to the adapter.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, MutableMapping, Optional, Sequence, Tuple
from urllib.parse import quote

import httpx

from ...core.session import SessionCookie, parse_session_cookie
from .base import DEFAULT_TIMEOUT, BaseAPIClient, GenericStoreError

# View parameters CouchDB expects as JSON values.
_JSON_VIEW_PARAMS = frozenset({"key", "keys", "startkey", "endkey", "start_key", "end_key"})


def encode_view_params(params: Mapping[str, Any]) -> Dict[str, str]:
    """Serialise view query parameters into query-string values."""

    encoded: Dict[str, str] = {}
    for name, value in params.items():
        if value is None:
            continue
        if name in _JSON_VIEW_PARAMS:
            encoded[name] = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
        elif isinstance(value, bool):
            encoded[name] = "true" if value else "false"
        else:
            encoded[name] = str(value)
    return encoded


def _segment(value: str) -> str:
    return quote(str(value), safe="")


class CouchDBClient(BaseAPIClient):
    """Server-level CouchDB client."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        default_headers: Optional[MutableMapping[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers: MutableMapping[str, str] = {"Accept": "application/json"}
        if default_headers:
            headers.update(default_headers)
        super().__init__(base_url=url.rstrip("/"), timeout=timeout, default_headers=headers, transport=transport)

    async def authenticate(self, key: str, secret: str) -> Optional[SessionCookie]:
        """Open a cookie session and return the session cookie, if the server sent one."""

        response = await self._request(
            "POST",
            "/_session",
            context=f"Could not authenticate {key}",
            data={"name": key, "password": secret},
        )
        cookie = parse_session_cookie(response.headers.get_list("set-cookie"))
        if cookie is None:
            self.logger.warning("Session response carried no session cookie", extra={"status_code": response.status_code})
        return cookie

    def use(self, db: str, *, cookie: Optional[SessionCookie] = None) -> "CouchDatabase":
        return CouchDatabase(client=self, name=db, cookie=cookie)


@dataclass(slots=True)
class CouchDatabase:
    """Handle on one database, carrying the session cookie when authenticated."""

    client: CouchDBClient
    name: str
    cookie: Optional[SessionCookie] = None

    @property
    def headers(self) -> Dict[str, str]:
        if self.cookie is None:
            return {}
        return {"Cookie": self.cookie.header()}

    def _path(self, *parts: str) -> str:
        return "/" + "/".join(_segment(part) for part in (self.name, *parts))

    async def _call(self, method: str, path: str, *, context: str, **kwargs: Any) -> httpx.Response:
        return await self.client._request(method, path, context=context, headers=self.headers, **kwargs)

    async def info(self) -> Dict[str, Any]:
        response = await self._call("GET", self._path(), context=f"Could not get database {self.name}")
        return self.client._decode(response)

    async def get(self, doc_id: str) -> Dict[str, Any]:
        response = await self._call("GET", self._path(doc_id), context=f"Could not get {doc_id}")
        return self.client._decode(response)

    async def fetch_many(self, ids: Sequence[str]) -> List[Dict[str, Any]]:
        """Fetch several documents through ``_all_docs``; rows for unknown ids carry an ``error``."""

        response = await self._call(
            "POST",
            self._path("_all_docs"),
            context=f"Could not get {len(ids)} documents",
            params={"include_docs": "true"},
            json={"keys": list(ids)},
        )
        payload = self.client._decode(response)
        rows = payload.get("rows") if isinstance(payload, dict) else None
        return list(rows or [])

    async def insert(self, doc: Mapping[str, Any]) -> Tuple[str, str]:
        """Create or update a document and return the id and revision assigned by the store."""

        response = await self._call(
            "POST",
            self._path(),
            context=f"Could not put {doc.get('_id', 'new document')}",
            json=dict(doc),
        )
        payload = self.client._decode(response)
        return payload["id"], payload["rev"]

    async def bulk_write(self, docs: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        response = await self._call(
            "POST",
            self._path("_bulk_docs"),
            context="Could not write documents",
            json={"docs": [dict(doc) for doc in docs]},
        )
        payload = self.client._decode(response)
        if not isinstance(payload, list):
            raise GenericStoreError("Unexpected payload from _bulk_docs.")
        return payload

    async def query_view(self, design_doc: str, view: str, params: Mapping[str, Any]) -> Dict[str, Any]:
        response = await self._call(
            "GET",
            self._path("_design", design_doc, "_view", view),
            context=f"Could not get view {view} in ddoc {design_doc}",
            params=encode_view_params(params),
        )
        payload = self.client._decode(response)
        return payload if isinstance(payload, dict) else {}

    async def head_document(self, doc_id: str) -> str:
        """Return the current revision of a document without fetching its body."""

        response = await self._call("HEAD", self._path(doc_id), context=f"Could not find {doc_id}")
        etag = response.headers.get("etag")
        if not etag:
            raise GenericStoreError(f"Could not find {doc_id}. No revision in response", status_code=response.status_code)
        return etag.strip('"')

    async def destroy(self, doc_id: str, rev: str) -> str:
        response = await self._call(
            "DELETE",
            self._path(doc_id),
            context=f"Could not delete {doc_id}",
            params={"rev": rev},
        )
        payload = self.client._decode(response)
        return payload["rev"]
