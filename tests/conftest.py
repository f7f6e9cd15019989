from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

import httpx
import pytest
from typer.testing import CliRunner

from dbdb_couch.adapters.couch import CouchAdapter

BASE_URL = "http://database.fake"
DB_NAME = "feednstatus"

Reply = Union["Route", Callable[[httpx.Request], httpx.Response]]


@dataclass
class Route:
    status: int = 200
    body: Any = None
    headers: List[Tuple[str, str]] = field(default_factory=list)
    params: Optional[Mapping[str, str]] = None

    def matches(self, request: httpx.Request) -> bool:
        return self.params is None or dict(request.url.params) == dict(self.params)

    def respond(self, request: httpx.Request) -> httpx.Response:
        if self.body is None:
            return httpx.Response(self.status, headers=self.headers, request=request)
        return httpx.Response(self.status, json=self.body, headers=self.headers, request=request)


class FakeCouch:
    """In-memory stand-in for a CouchDB server, served through ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], List[Reply]] = {}
        self.requests: List[httpx.Request] = []

    def add(
        self,
        method: str,
        path: str,
        *,
        status: int = 200,
        body: Any = None,
        headers: Optional[List[Tuple[str, str]]] = None,
        params: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.routes.setdefault((method, path), []).append(Route(status=status, body=body, headers=headers or [], params=params))

    def add_handler(self, method: str, path: str, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.routes.setdefault((method, path), []).append(handler)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for reply in self.routes.get((request.method, request.url.path), []):
            if isinstance(reply, Route):
                if reply.matches(request):
                    return reply.respond(request)
            else:
                return reply(request)
        return httpx.Response(404, json={"error": "not_found", "reason": "missing"}, request=request)

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [request for request in self.requests if request.method == method and request.url.path == path]

    @staticmethod
    def body(request: httpx.Request) -> Any:
        return json.loads(request.content)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture()
def couch_config() -> Dict[str, str]:
    return {"url": BASE_URL, "db": DB_NAME}


@pytest.fixture()
def auth_config(couch_config) -> Dict[str, str]:
    return {**couch_config, "key": "thekey", "password": "thepassword"}


@pytest.fixture()
def fake_couch() -> FakeCouch:
    return FakeCouch()


@pytest.fixture()
def adapter(couch_config, fake_couch) -> CouchAdapter:
    return CouchAdapter(couch_config, transport=fake_couch.transport)


@pytest.fixture()
def cli_runner() -> CliRunner:
    return CliRunner()
