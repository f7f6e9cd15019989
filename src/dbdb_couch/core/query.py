"""
View query construction for CouchDB map/reduce views.

:func:`build_view_query` turns logical :class:`ViewOptions` (a key filter, an
optional pagination cursor and a sort direction) into a :class:`ViewQuery`
holding CouchDB's range parameters. Identical options always produce identical
queries, and the options object is never modified.

Range rules
-----------
* A sequence filter is a key prefix. The lower bound is the prefix itself and
  the upper bound is the prefix followed by ``{}``, the highest value in
  CouchDB's collation order.
* ``first_key`` and ``last_key`` narrow the lower and upper bound. They are
  appended to a sequence filter or used as the bound when there is no filter.
* A scalar or mapping filter selects one exact key. It has no prefix to extend,
  so combining it with ``first_key`` yields an empty query. ``last_key``
  replaces the upper bound directly.
* Descending scans read from the upper bound down, so ``startkey`` holds the
  upper bound and ``endkey`` the lower one.
"""

from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..adapters.base import ValidationError
from .logging import get_logger

LOGGER = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ViewOptions:
    """
    Logical view query.

    Attributes
    ----------
    filter:
        Scalar, sequence (hierarchical key prefix) or mapping key to select.
    desc:
        Sort descending.
    max:
        Maximum number of rows to return.
    first:
        Number of rows to skip. Ignored when a key cursor is given.
    first_key:
        Lower bound appended to the filter.
    last_key:
        Upper bound appended to the filter.
    start_after:
        Full key of the last row of a previous page; the scan resumes after it.
    include_docs:
        Ask CouchDB to attach the documents to the rows.
    """

    filter: Any = None
    desc: bool = False
    max: Optional[int] = None
    first: Optional[int] = None
    first_key: Any = None
    last_key: Any = None
    start_after: Any = None
    include_docs: bool = True


@dataclass(frozen=True, slots=True)
class ViewQuery:
    """Range scan parameters ready to send to a view endpoint."""

    include_docs: bool = True
    descending: bool = False
    startkey: Any = None
    endkey: Any = None
    inclusive_end: Optional[bool] = None
    skip: Optional[int] = None
    limit: Optional[int] = None
    empty: bool = False

    def to_params(self) -> Dict[str, Any]:
        """Return the wire parameters, leaving out everything that is not set."""

        params: Dict[str, Any] = {
            "include_docs": self.include_docs,
            "descending": self.descending,
        }
        if self.inclusive_end is not None:
            params["inclusive_end"] = self.inclusive_end
        if self.startkey is not None:
            params["startkey"] = self.startkey
        if self.endkey is not None:
            params["endkey"] = self.endkey
        if self.skip is not None:
            params["skip"] = self.skip
        if self.limit is not None:
            params["limit"] = self.limit
        return params


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def _extend(prefix: Sequence[Any], key: Any) -> List[Any]:
    extended = list(prefix)
    if _is_sequence(key):
        extended.extend(key)
    else:
        extended.append(key)
    return extended


def _check_count(name: str, value: Optional[int], minimum: int) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ValidationError(f"View option '{name}' must be an integer >= {minimum}, got {value!r}")
    return value


def _bounds(key_filter: Any, first_key: Any, last_key: Any) -> Tuple[Any, Any]:
    if key_filter is None:
        return first_key, last_key
    if _is_sequence(key_filter):
        lower = _extend(key_filter, first_key) if first_key is not None else list(key_filter)
        upper = _extend(key_filter, last_key) if last_key is not None else _extend(key_filter, [{}])
        return lower, upper
    return key_filter, last_key if last_key is not None else deepcopy(key_filter)


def build_view_query(options: Optional[ViewOptions] = None) -> ViewQuery:
    """
    Build the range query for ``options``.

    Raises
    ------
    ValidationError
        When ``max`` or ``first`` is not a usable count.
    """

    opts = options or ViewOptions()
    limit = _check_count("max", opts.max, 1)
    offset = _check_count("first", opts.first, 0)
    key_filter = deepcopy(opts.filter)
    first_key = deepcopy(opts.first_key)
    last_key = deepcopy(opts.last_key)

    if key_filter is not None and not _is_sequence(key_filter) and first_key is not None:
        LOGGER.warning(
            "A lower key bound cannot narrow a single-key filter; the view query will match nothing",
            extra={"filter": key_filter, "first_key": first_key, "last_key": last_key},
        )
        return ViewQuery(include_docs=opts.include_docs, descending=opts.desc, empty=True)

    lower, upper = _bounds(key_filter, first_key, last_key)
    startkey, endkey = (upper, lower) if opts.desc else (lower, upper)

    skip = offset if first_key is None and opts.start_after is None else None
    if opts.start_after is not None:
        startkey = deepcopy(opts.start_after)
        skip = 1

    return ViewQuery(
        include_docs=opts.include_docs,
        descending=opts.desc,
        startkey=startkey,
        endkey=endkey,
        inclusive_end=True if key_filter is not None else None,
        skip=skip,
        limit=limit,
    )


def parse_view_id(view_id: str) -> Tuple[str, str]:
    """Split ``"<design doc>:<view name>"`` into its two parts."""

    if not isinstance(view_id, str) or ":" not in view_id:
        raise ValidationError(f"View id must look like '<design doc>:<view>', got {view_id!r}")
    design_doc, view = view_id.split(":", 1)
    if not design_doc or not view:
        raise ValidationError(f"View id must look like '<design doc>:<view>', got {view_id!r}")
    return design_doc, view
