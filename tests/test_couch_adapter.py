from __future__ import annotations

import asyncio
import json
import logging
from unittest.mock import AsyncMock

import httpx
import pytest

from dbdb_couch import CouchAdapter, couchdb
from dbdb_couch.adapters.api import ConflictError, GenericStoreError, NotFoundError, TransportError
from dbdb_couch.adapters.base import DocumentStoreAdapter, ValidationError
from dbdb_couch.core.query import ViewOptions
from dbdb_couch.core.session import ConnectionState

DB = "/feednstatus"
SESSION_COOKIE = ("set-cookie", "AuthSession=abc123; Version=1; Path=/; HttpOnly")

pytestmark = pytest.mark.asyncio


@pytest.fixture()
def auth_adapter(auth_config, fake_couch) -> CouchAdapter:
    fake_couch.add("POST", "/_session", body={"ok": True, "name": "thekey"}, headers=[SESSION_COOKIE])
    return CouchAdapter(auth_config, transport=fake_couch.transport)


async def test_alias_and_db_type():
    assert couchdb is CouchAdapter
    assert CouchAdapter.db_type == "couchdb"


async def test_config_is_copied(couch_config, fake_couch):
    adapter = CouchAdapter(couch_config, transport=fake_couch.transport)
    couch_config["db"] = "other"

    assert adapter.settings.db == "feednstatus"


# ---------------------------------------------------------------------- get


async def test_get_returns_public_document(adapter, fake_couch):
    fake_couch.add("GET", f"{DB}/ent1", body={"_id": "ent1", "_rev": "1-abc", "type": "entry", "title": "First"})

    doc = await adapter.get("ent1")

    assert doc == {"id": "ent1", "_rev": "1-abc", "type": "entry", "title": "First"}


async def test_get_unknown_document_raises_not_found(adapter):
    with pytest.raises(NotFoundError):
        await adapter.get("unknown")


async def test_get_many_keeps_input_order(adapter, fake_couch):
    fake_couch.add(
        "POST",
        f"{DB}/_all_docs",
        params={"include_docs": "true"},
        body={
            "total_rows": 3,
            "rows": [
                {"id": "ent1", "key": "ent1", "value": {"rev": "1-a"}, "doc": {"_id": "ent1", "_rev": "1-a", "title": "First"}},
                {"key": "missing", "error": "not_found"},
                {"id": "ent3", "key": "ent3", "value": {"rev": "1-c"}, "doc": {"_id": "ent3", "_rev": "1-c", "title": "Third"}},
            ],
        },
    )

    docs = await adapter.get(["ent1", "missing", "ent3"])

    assert docs == [
        {"id": "ent1", "_rev": "1-a", "title": "First"},
        None,
        {"id": "ent3", "_rev": "1-c", "title": "Third"},
    ]
    (request,) = fake_couch.calls("POST", f"{DB}/_all_docs")
    assert fake_couch.body(request) == {"keys": ["ent1", "missing", "ent3"]}


async def test_get_many_with_empty_list_makes_no_request(adapter, fake_couch):
    assert await adapter.get([]) == []
    assert fake_couch.requests == []


# ---------------------------------------------------------------------- insert / update


async def test_insert_returns_id_and_revision(adapter, fake_couch):
    fake_couch.add("POST", DB, status=201, body={"ok": True, "id": "ent1", "rev": "1-abc"})
    doc = {"id": "ent1", "type": "entry", "title": "First"}

    result = await adapter.insert(doc)

    assert result == {"id": "ent1", "type": "entry", "title": "First", "_rev": "1-abc"}
    assert doc == {"id": "ent1", "type": "entry", "title": "First"}
    (request,) = fake_couch.calls("POST", DB)
    assert fake_couch.body(request) == {"_id": "ent1", "type": "entry", "title": "First"}


async def test_insert_uses_store_assigned_id(adapter, fake_couch):
    fake_couch.add("POST", DB, status=201, body={"ok": True, "id": "3ba5e9b1f2", "rev": "1-abc"})

    result = await adapter.insert({"type": "entry"})

    assert result == {"id": "3ba5e9b1f2", "type": "entry", "_rev": "1-abc"}
    (request,) = fake_couch.calls("POST", DB)
    assert "_id" not in fake_couch.body(request)


async def test_insert_conflict(adapter, fake_couch):
    fake_couch.add("POST", DB, status=409, body={"error": "conflict", "reason": "Document update conflict."})

    with pytest.raises(ConflictError) as excinfo:
        await adapter.insert({"id": "ent1", "_rev": "1-old"})

    assert excinfo.value.error == "conflict"


async def test_insert_other_store_error_keeps_reason(adapter, fake_couch):
    fake_couch.add("POST", DB, status=400, body={"error": "bad_request", "reason": "Invalid rev format"})

    with pytest.raises(GenericStoreError) as excinfo:
        await adapter.insert({"id": "ent1", "_rev": "nonsense"})

    assert "Invalid rev format" in str(excinfo.value)
    assert excinfo.value.reason == "Invalid rev format"


async def test_update_merges_with_stored_document(adapter, fake_couch):
    fake_couch.add(
        "GET",
        f"{DB}/doc1",
        body={"_id": "doc1", "_rev": "2774761001", "type": "entry", "title": "The title", "createdAt": "2015-05-23"},
    )
    fake_couch.add("POST", DB, status=201, body={"ok": True, "id": "doc1", "rev": "2774761004"})

    result = await adapter.update({"id": "doc1", "_rev": "2883392", "_internal": "something", "title": "T", "createdAt": "2015-06-01"})

    assert result == {"id": "doc1", "_rev": "2774761004", "type": "entry", "title": "T", "createdAt": "2015-05-23"}
    (request,) = fake_couch.calls("POST", DB)
    assert fake_couch.body(request) == {"_id": "doc1", "_rev": "2774761001", "type": "entry", "title": "T", "createdAt": "2015-05-23"}


async def test_update_unknown_document(adapter):
    with pytest.raises(NotFoundError):
        await adapter.update({"id": "unknown", "title": "T"})


# ---------------------------------------------------------------------- delete


async def test_delete_logs_document_context(adapter, fake_couch, caplog):
    fake_couch.add("HEAD", f"{DB}/doc1", headers=[("etag", '"3-abc"')])
    fake_couch.add("DELETE", f"{DB}/doc1", body={"ok": True, "id": "doc1", "rev": "4-def"})

    with caplog.at_level(logging.DEBUG, logger="dbdb_couch.adapters.couch"):
        await adapter.delete("doc1")

    (record,) = [record for record in caplog.records if record.getMessage() == "Document deleted"]
    assert record.doc_id == "doc1"
    assert record.rev == "4-def"
    assert record.db == "feednstatus"


async def test_delete_uses_current_revision(adapter, fake_couch):
    fake_couch.add("HEAD", f"{DB}/doc1", headers=[("etag", '"3-abc"')])
    fake_couch.add("DELETE", f"{DB}/doc1", params={"rev": "3-abc"}, body={"ok": True, "id": "doc1", "rev": "4-def"})

    result = await adapter.delete("doc1")

    assert result == {"id": "doc1", "_deleted": True, "_rev": "4-def"}


async def test_delete_unknown_document(adapter, fake_couch):
    with pytest.raises(NotFoundError):
        await adapter.delete("unknown")

    assert fake_couch.calls("DELETE", f"{DB}/unknown") == []


async def test_delete_conflict(adapter, fake_couch):
    fake_couch.add("HEAD", f"{DB}/doc1", headers=[("etag", '"3-abc"')])
    fake_couch.add("DELETE", f"{DB}/doc1", status=409)

    with pytest.raises(ConflictError):
        await adapter.delete("doc1")


# ---------------------------------------------------------------------- bulk


async def test_insert_many_reports_per_item_outcome(adapter, fake_couch):
    fake_couch.add(
        "POST",
        f"{DB}/_bulk_docs",
        status=201,
        body=[
            {"ok": True, "id": "ent1", "rev": "1-a"},
            {"id": "ent2", "error": "conflict", "reason": "Document update conflict."},
        ],
    )
    docs = [{"id": "ent1", "title": "First"}, {"id": "ent2", "_rev": "1-old", "title": "Second"}]

    results = await adapter.insert_many(docs)

    assert results == [
        {"id": "ent1", "title": "First", "_rev": "1-a"},
        {"id": "ent2", "_rev": "1-old", "title": "Second", "_error": "conflict", "_reason": "Document update conflict."},
    ]
    (request,) = fake_couch.calls("POST", f"{DB}/_bulk_docs")
    assert fake_couch.body(request) == {"docs": [{"_id": "ent1", "title": "First"}, {"_id": "ent2", "_rev": "1-old", "title": "Second"}]}
    assert docs[0] == {"id": "ent1", "title": "First"}


async def test_insert_many_with_empty_list(adapter, fake_couch):
    assert await adapter.insert_many([]) == []
    assert fake_couch.requests == []


async def test_insert_many_wraps_request_failure(adapter, fake_couch):
    fake_couch.add("POST", f"{DB}/_bulk_docs", status=500, body={"error": "internal_server_error", "reason": "boom"})

    with pytest.raises(GenericStoreError) as excinfo:
        await adapter.insert_many([{"id": "ent1"}])

    assert str(excinfo.value).startswith("Could not insert documents. ")
    assert excinfo.value.status_code == 500
    assert excinfo.value.reason == "boom"


async def test_insert_many_propagates_connect_failure(adapter, monkeypatch):
    failure = TransportError("Could not authenticate thekey")
    monkeypatch.setattr(adapter, "connect", AsyncMock(side_effect=failure))

    with pytest.raises(TransportError) as excinfo:
        await adapter.insert_many([{"id": "ent1"}])

    assert excinfo.value is failure


async def test_delete_many_marks_documents_deleted(adapter, monkeypatch):
    insert_many = AsyncMock(return_value=[{"id": "ent1", "_rev": "2-b", "_deleted": True}])
    monkeypatch.setattr(adapter, "insert_many", insert_many)
    docs = [{"id": "ent1", "_rev": "1-a"}]

    result = await adapter.delete_many(docs)

    assert result == [{"id": "ent1", "_rev": "2-b", "_deleted": True}]
    insert_many.assert_awaited_once_with([{"id": "ent1", "_rev": "1-a", "_deleted": True}])
    assert docs == [{"id": "ent1", "_rev": "1-a"}]


# ---------------------------------------------------------------------- views


async def test_get_view_returns_documents_with_keys(adapter, fake_couch):
    fake_couch.add(
        "GET",
        f"{DB}/_design/fns/_view/entries",
        body={
            "total_rows": 2,
            "offset": 0,
            "rows": [
                {"id": "ent2", "key": ["src2", "2015-05-24"], "value": None, "doc": {"_id": "ent2", "_rev": "1-b", "title": "Second"}},
                {"id": "ent1", "key": ["src2", "2015-05-23"], "value": None, "doc": {"_id": "ent1", "_rev": "1-a", "title": "First"}},
            ],
        },
    )

    docs = await adapter.get_view("fns:entries", ViewOptions(filter=["src2"], desc=True, max=2))

    assert docs == [
        {"id": "ent2", "_rev": "1-b", "title": "Second", "_key": ["src2", "2015-05-24"]},
        {"id": "ent1", "_rev": "1-a", "title": "First", "_key": ["src2", "2015-05-23"]},
    ]
    (request,) = fake_couch.calls("GET", f"{DB}/_design/fns/_view/entries")
    params = request.url.params
    assert json.loads(params["startkey"]) == ["src2", {}]
    assert json.loads(params["endkey"]) == ["src2"]
    assert params["descending"] == "true"
    assert params["inclusive_end"] == "true"
    assert params["include_docs"] == "true"
    assert params["limit"] == "2"


async def test_get_view_logs_view_context(adapter, fake_couch, caplog):
    fake_couch.add("GET", f"{DB}/_design/fns/_view/entries", body={"rows": [{"id": "ent1", "key": "k", "doc": {"_id": "ent1"}}]})

    with caplog.at_level(logging.DEBUG, logger="dbdb_couch.adapters.couch"):
        await adapter.get_view("fns:entries")

    (record,) = [record for record in caplog.records if record.getMessage() == "View queried"]
    assert record.view == "fns:entries"
    assert record.db == "feednstatus"
    assert record.count == 1


async def test_get_view_without_options(adapter, fake_couch):
    fake_couch.add("GET", f"{DB}/_design/fns/_view/sources", body={"total_rows": 0, "offset": 0, "rows": []})

    assert await adapter.get_view("fns:sources") == []
    (request,) = fake_couch.calls("GET", f"{DB}/_design/fns/_view/sources")
    assert dict(request.url.params) == {"include_docs": "true", "descending": "false"}


async def test_get_view_uses_object_values_without_docs(adapter, fake_couch):
    fake_couch.add(
        "GET",
        f"{DB}/_design/fns/_view/titles",
        body={
            "rows": [
                {"id": "ent1", "key": "2015-05-23", "value": {"title": "First"}},
                {"id": "ent2", "key": "2015-05-24", "value": 1},
            ]
        },
    )

    docs = await adapter.get_view("fns:titles", ViewOptions(include_docs=False))

    assert docs == [{"title": "First", "id": "ent1", "_key": "2015-05-23"}]


async def test_get_view_unknown_view(adapter):
    with pytest.raises(NotFoundError):
        await adapter.get_view("fns:unknown")


async def test_get_view_empty_query_makes_no_request(adapter, fake_couch):
    assert await adapter.get_view("fns:sources", ViewOptions(filter="src2", first_key="2015")) == []
    assert fake_couch.requests == []


async def test_get_view_start_after(adapter, fake_couch):
    fake_couch.add("GET", f"{DB}/_design/fns/_view/entries", body={"rows": []})

    await adapter.get_view("fns:entries", ViewOptions(start_after=["src2", "2015-05-23"], max=1))

    (request,) = fake_couch.calls("GET", f"{DB}/_design/fns/_view/entries")
    assert json.loads(request.url.params["startkey"]) == ["src2", "2015-05-23"]
    assert request.url.params["skip"] == "1"


# ---------------------------------------------------------------------- validation


@pytest.mark.parametrize(
    ("method", "argument", "message"),
    [
        ("get", "", "Missing document id"),
        ("insert", None, "Missing document object"),
        ("update", None, "Missing document object"),
        ("update", {"title": "T"}, "Missing id"),
        ("delete", "", "Missing doc id"),
        ("insert_many", None, "Missing documents array"),
        ("delete_many", None, "Missing documents array"),
        ("get_view", "sources", "View id"),
    ],
)
async def test_missing_arguments_fail_before_any_request(adapter, fake_couch, method, argument, message):
    with pytest.raises(ValidationError, match=message):
        await getattr(adapter, method)(argument)

    assert fake_couch.requests == []


# ---------------------------------------------------------------------- sessions


async def test_session_cookie_sent_on_later_requests(auth_adapter, fake_couch):
    fake_couch.add("GET", f"{DB}/ent1", body={"_id": "ent1"})

    await auth_adapter.get("ent1")

    (session,) = fake_couch.calls("POST", "/_session")
    assert "name=thekey" in session.content.decode()
    (request,) = fake_couch.calls("GET", f"{DB}/ent1")
    assert request.headers["cookie"] == "AuthSession=abc123"


async def test_concurrent_operations_authenticate_once(auth_adapter, fake_couch):
    fake_couch.add("GET", f"{DB}/ent1", body={"_id": "ent1"})

    await asyncio.gather(*(auth_adapter.get("ent1") for _ in range(3)))

    assert len(fake_couch.calls("POST", "/_session")) == 1
    assert len(fake_couch.calls("GET", f"{DB}/ent1")) == 3


async def test_failed_authentication_is_retried(auth_config, fake_couch):
    attempts = []

    def session(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        if len(attempts) == 1:
            return httpx.Response(401, json={"error": "unauthorized", "reason": "Name or password is incorrect."}, request=request)
        return httpx.Response(200, json={"ok": True}, headers=[SESSION_COOKIE], request=request)

    fake_couch.add_handler("POST", "/_session", session)
    fake_couch.add("GET", f"{DB}/ent1", body={"_id": "ent1"})
    adapter = CouchAdapter(auth_config, transport=fake_couch.transport)

    with pytest.raises(GenericStoreError):
        await adapter.get("ent1")
    assert adapter.connection_state is ConnectionState.DISCONNECTED

    assert await adapter.get("ent1") == {"id": "ent1"}
    assert len(attempts) == 2


async def test_disconnect_forgets_session(auth_adapter, fake_couch):
    first = await auth_adapter.connect()
    assert auth_adapter.connection_state is ConnectionState.CONNECTED
    assert await auth_adapter.connect() is first

    auth_adapter.disconnect()
    assert auth_adapter.connection_state is ConnectionState.DISCONNECTED
    second = await auth_adapter.connect()

    assert second is not first
    assert len(fake_couch.calls("POST", "/_session")) == 2


async def test_context_manager_connects_and_disconnects(auth_adapter):
    async with auth_adapter as connected:
        assert connected is auth_adapter
        assert auth_adapter.connection_state is ConnectionState.CONNECTED

    assert auth_adapter.connection_state is ConnectionState.DISCONNECTED


async def test_adapter_without_credentials_skips_session(adapter, fake_couch):
    await adapter.connect()

    assert fake_couch.calls("POST", "/_session") == []


# ---------------------------------------------------------------------- verify


async def test_verify_success(adapter, fake_couch):
    fake_couch.add("GET", DB, body={"db_name": "feednstatus", "doc_count": 3})

    result = await adapter.verify()

    assert result.success is True
    assert result.details == {"db": "feednstatus", "doc_count": 3}


async def test_verify_failure(adapter):
    result = await adapter.verify()

    assert result.success is False
    assert result.message.startswith("CouchDB verification failed: ")


async def test_adapter_satisfies_store_protocol(adapter):
    assert isinstance(adapter, DocumentStoreAdapter)
