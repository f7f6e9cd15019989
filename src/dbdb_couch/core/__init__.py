"""
Store-independent building blocks: document mapping, view query construction,
session handling and logging.
"""

from .documents import merge_for_update, to_public, to_store
from .logging import bind, configure_logging, get_logger, log_progress
from .query import ViewOptions, ViewQuery, build_view_query, parse_view_id
from .session import ConnectionState, SessionCookie, SessionManager, parse_session_cookie

__all__ = [
    "ConnectionState",
    "SessionCookie",
    "SessionManager",
    "ViewOptions",
    "ViewQuery",
    "bind",
    "build_view_query",
    "configure_logging",
    "get_logger",
    "log_progress",
    "merge_for_update",
    "parse_session_cookie",
    "parse_view_id",
    "to_public",
    "to_store",
]
