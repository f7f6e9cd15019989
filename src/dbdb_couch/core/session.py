"""
Session cookie parsing and the cached connection slot.

CouchDB's ``POST /_session`` answers with a ``Set-Cookie`` header. Only the
``name=value`` pair of the ``AuthSession`` cookie is sent back on later
requests. :class:`SessionManager` keeps at most one connection attempt per
adapter and lets concurrent callers share it.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Generic, Iterable, Optional, TypeVar, Union

from .logging import get_logger

SESSION_COOKIE_PREFIX = "AuthSession"

LOGGER = get_logger(__name__)
T = TypeVar("T")

# Splits a folded Set-Cookie header on the commas that start a new cookie,
# leaving commas inside Expires dates alone.
_COOKIE_SPLIT = re.compile(r",\s*(?=[^;,=\s]+=)")


@dataclass(frozen=True, slots=True)
class SessionCookie:
    """A cookie reduced to the pair sent back to the server."""

    name: str
    value: str

    def header(self) -> str:
        return f"{self.name}={self.value}"


def _iter_cookie_strings(headers: Union[str, Iterable[str]]) -> Iterable[str]:
    values = [headers] if isinstance(headers, str) else list(headers)
    for value in values:
        for part in _COOKIE_SPLIT.split(value):
            part = part.strip()
            if part:
                yield part


def parse_session_cookie(
    headers: Union[str, Iterable[str], None],
    *,
    prefix: str = SESSION_COOKIE_PREFIX,
) -> Optional[SessionCookie]:
    """
    Pick the session cookie out of one or more ``Set-Cookie`` values.

    Attributes such as ``Path`` or ``Expires`` are dropped. Returns ``None``
    when no cookie name starts with ``prefix``.
    """

    if not headers:
        return None
    for raw in _iter_cookie_strings(headers):
        pair = raw.split(";", 1)[0]
        name, sep, value = pair.partition("=")
        name = name.strip()
        if sep and name.startswith(prefix):
            return SessionCookie(name=name, value=value.strip())
    return None


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class SessionManager(Generic[T]):
    """
    Lazily opened, shared connection slot.

    The first caller of :meth:`acquire` starts ``opener``; callers arriving while
    it runs await the same task. A failed attempt empties the slot so the next
    call starts over. :meth:`reset` empties the slot at once; a task still in
    flight is left to finish for its own callers but never handed out again.
    """

    def __init__(self, opener: Callable[[], Awaitable[T]]) -> None:
        self._opener = opener
        self._task: Optional[asyncio.Future[T]] = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> ConnectionState:
        task = self._task
        if task is None:
            return ConnectionState.DISCONNECTED
        if not task.done():
            return ConnectionState.CONNECTING
        # A failed attempt stays in the slot until one of its waiters clears it.
        if task.cancelled() or task.exception() is not None:
            return ConnectionState.DISCONNECTED
        return ConnectionState.CONNECTED

    async def acquire(self) -> T:
        async with self._lock:
            task = self._task
            if task is None:
                LOGGER.debug("Opening connection", extra={"phase": "connect"})
                task = asyncio.ensure_future(self._opener())
                self._task = task
        try:
            return await asyncio.shield(task)
        except Exception:
            if task.done() and self._task is task:
                self._task = None
            raise

    def reset(self) -> None:
        if self._task is not None:
            LOGGER.debug("Dropping cached connection", extra={"phase": "disconnect"})
        self._task = None
