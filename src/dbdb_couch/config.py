"""
Connection settings for the CouchDB adapter.

Settings are read from a TOML file with a ``[couchdb]`` section. The lookup
order is:

1. Explicit ``DBDB_COUCH_CONFIG`` environment variable.
2. ``.secrets/couchdb.toml`` under the working directory, then the project root.
3. ``.secrets/couchdb.example.toml`` for scaffolding values.

``DBDB_COUCH_URL``, ``DBDB_COUCH_DB``, ``DBDB_COUCH_KEY`` and
``DBDB_COUCH_PASSWORD`` override the file values. Call :func:`load_settings`
to obtain a :class:`CouchSettings` instance.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional

DEFAULT_TIMEOUT = 15.0

_ENV_PATH = "DBDB_COUCH_CONFIG"
_ENV_FIELDS = {
    "url": "DBDB_COUCH_URL",
    "db": "DBDB_COUCH_DB",
    "key": "DBDB_COUCH_KEY",
    "password": "DBDB_COUCH_PASSWORD",
}


class SettingsError(ValueError):
    """Raised when required settings are missing."""


@dataclass(frozen=True, slots=True)
class CouchSettings:
    """Where the database lives and how to authenticate against it."""

    url: str
    db: str
    key: Optional[str] = None
    password: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT
    source_path: Optional[Path] = None

    @property
    def has_credentials(self) -> bool:
        return bool(self.key and self.password)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "CouchSettings":
        """Build settings from a plain mapping such as ``{"url": ..., "db": ...}``."""

        url = raw.get("url")
        db = raw.get("db")
        if not url or not db:
            raise SettingsError("CouchDB settings require both 'url' and 'db'.")
        timeout = raw.get("timeout")
        return cls(
            url=str(url),
            db=str(db),
            key=_optional_str(raw.get("key")),
            password=_optional_str(raw.get("password")),
            timeout=float(timeout) if timeout is not None else DEFAULT_TIMEOUT,
        )


def _optional_str(value: Any) -> Optional[str]:
    return str(value) if isinstance(value, str) and value else None


def _discover_project_root() -> Optional[Path]:
    current = Path(__file__).resolve()
    for parent in current.parents:
        if (parent / "pyproject.toml").is_file():
            return parent
    return None


def _candidate_paths() -> Iterable[Path]:
    env_override = os.getenv(_ENV_PATH)
    if env_override:
        yield Path(env_override).expanduser()

    roots = [Path.cwd()]
    project_root = _discover_project_root()
    if project_root and project_root not in roots:
        roots.append(project_root)
    for base in roots:
        yield base / ".secrets" / "couchdb.toml"
    for base in roots:
        yield base / ".secrets" / "couchdb.example.toml"


def _load_section(path: Path) -> Dict[str, Any]:
    with path.open("rb") as handle:
        raw = tomllib.load(handle)
    section = raw.get("couchdb", {})
    return dict(section) if isinstance(section, dict) else {}


def _apply_env(values: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(values)
    for field_name, env_name in _ENV_FIELDS.items():
        value = os.getenv(env_name)
        if value:
            merged[field_name] = value
    return merged


def load_settings(path: Optional[Path] = None, *, strict: bool = False) -> Optional[CouchSettings]:
    """
    Load settings from ``path`` or the default locations, then apply environment overrides.

    Parameters
    ----------
    path:
        Explicit TOML file. Skips the lookup when given.
    strict:
        When ``True`` raise :class:`SettingsError` instead of returning ``None``
        if ``url`` and ``db`` cannot be resolved.
    """

    values: Dict[str, Any] = {}
    source: Optional[Path] = None
    candidates = [path] if path is not None else list(_candidate_paths())
    for candidate in candidates:
        if candidate.is_file():
            values = _load_section(candidate)
            source = candidate
            break

    values = _apply_env(values)
    if not values.get("url") or not values.get("db"):
        if strict:
            raise SettingsError(f"No CouchDB settings found. Configure {_ENV_PATH}, .secrets/couchdb.toml or {_ENV_FIELDS['url']}/{_ENV_FIELDS['db']}.")
        return None
    return replace(CouchSettings.from_mapping(values), source_path=source)
