"""
Shared asynchronous HTTP plumbing and the store error taxonomy.

The helper is a thin HTTPX wrapper: every request opens a short-lived
:class:`httpx.AsyncClient`, avoids global state, and turns failed responses into
typed errors carrying the store's own error code and reason. Requests are never
retried here; callers own their retry policy.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import LoggerAdapter
from typing import Any, Mapping, MutableMapping, Optional

import httpx

from ...core.logging import get_logger
from ..base import AdapterError

DEFAULT_TIMEOUT = 15.0


class APIError(AdapterError):
    """Raised when a call to the store fails."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        error: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error = error
        self.reason = reason


class TransportError(APIError):
    """The store could not be reached or the connection broke."""


class StoreError(APIError):
    """The store answered with an error."""


class NotFoundError(StoreError):
    """The document, database or view does not exist."""


class ConflictError(StoreError):
    """The revision sent with a write or delete is not the current one."""


class GenericStoreError(StoreError):
    """Any other error reported by the store; the reason text is kept."""


def classify_store_error(
    status_code: Optional[int],
    error: Optional[str],
    reason: Optional[str],
    *,
    context: str,
) -> StoreError:
    """Map a store error code and HTTP status to the error taxonomy."""

    detail = ": ".join(part for part in (error, reason) if part) or f"HTTP {status_code}"
    message = f"{context}. {detail}"
    kwargs: dict[str, Any] = {"status_code": status_code, "error": error, "reason": reason}
    if error == "not_found" or status_code == 404:
        return NotFoundError(message, **kwargs)
    # A 409 without a body (HEAD/DELETE) is still a revision conflict.
    if error == "conflict" or (status_code == 409 and error is None):
        return ConflictError(message, **kwargs)
    return GenericStoreError(message, **kwargs)


def _error_fields(response: httpx.Response) -> tuple[Optional[str], Optional[str]]:
    try:
        payload = response.json()
    except ValueError:
        return None, None
    if not isinstance(payload, Mapping):
        return None, None
    error = payload.get("error")
    reason = payload.get("reason")
    return (str(error) if error is not None else None, str(reason) if reason is not None else None)


@dataclass(slots=True)
class BaseAPIClient:
    """
    Base asynchronous HTTP client.

    Parameters
    ----------
    base_url:
        Root URL of the server.
    timeout:
        Request timeout in seconds.
    default_headers:
        Headers attached to every request.
    transport:
        Optional HTTPX transport, e.g. :class:`httpx.MockTransport` in tests.
    """

    base_url: str
    timeout: float = DEFAULT_TIMEOUT
    default_headers: MutableMapping[str, str] = field(default_factory=dict)
    transport: Optional[httpx.AsyncBaseTransport] = field(default=None, repr=False)
    logger: LoggerAdapter = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.logger = get_logger(
            f"{self.__class__.__module__}.{self.__class__.__name__}",
            extra={"base_url": self.base_url},
        )

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=dict(self.default_headers),
            transport=self.transport,
            follow_redirects=True,
        )

    async def _request(
        self,
        method: str,
        url: str,
        *,
        context: str,
        **kwargs: Any,
    ) -> httpx.Response:
        self.logger.debug(
            "HTTP request",
            extra={"method": method, "url": url, "params": kwargs.get("params")},
        )
        try:
            async with self._build_client() as client:
                response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            self.logger.error(
                "HTTP error during request",
                extra={"method": method, "url": url, "error": str(exc)},
            )
            raise TransportError(f"{context}. HTTP error while calling {method} {url}: {exc}") from exc

        self.logger.debug(
            "HTTP response",
            extra={"method": method, "url": str(response.url), "status_code": response.status_code},
        )
        if response.is_error:
            error, reason = _error_fields(response)
            raise classify_store_error(response.status_code, error, reason, context=context)
        return response

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise GenericStoreError(
                f"Failed to decode JSON from {response.url}: {exc}",
                status_code=response.status_code,
            ) from exc
