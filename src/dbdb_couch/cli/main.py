"""
Typer application for ad-hoc work against a CouchDB database.

Commands print JSON on stdout so their output can be piped into other tools.
Connection settings come from ``--config`` or the default lookup described in
:mod:`dbdb_couch.config`.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

import anyio
import typer

from ..adapters.base import AdapterError
from ..adapters.couch import CouchAdapter
from ..config import CouchSettings, SettingsError, load_settings
from ..core.logging import configure_logging
from ..core.query import ViewOptions

T = TypeVar("T")

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Inspect and edit documents in a CouchDB / Cloudant database.\n\n"
        "Commands:\n"
        "- verify: check that the database is reachable.\n"
        "- get: fetch one or more documents.\n"
        "- view: query a view with key filters and paging.\n"
        "- delete: delete a document by id."
    ),
)


def _parse_key(value: Optional[str]) -> Any:
    """Read a view key as JSON, falling back to the raw string."""

    if value is None:
        return None
    try:
        return json.loads(value)
    except ValueError:
        return value


def _echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


@app.callback(invoke_without_command=False)
def main(
    ctx: typer.Context,
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="TOML file with a [couchdb] section.",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level, e.g. DEBUG."),
) -> None:
    """Resolve connection settings for the selected command."""

    if log_level:
        configure_logging(log_level, force=True)
    try:
        settings = load_settings(config_file, strict=True)
    except SettingsError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=2)
    state = ctx.ensure_object(dict)
    state["settings"] = settings


def _build_adapter(ctx: typer.Context) -> CouchAdapter:
    state = ctx.ensure_object(dict)
    settings = state.get("settings")
    if not isinstance(settings, CouchSettings):
        raise typer.Exit(code=2)
    return CouchAdapter(settings)


def _run(ctx: typer.Context, operation: Callable[[CouchAdapter], Awaitable[T]]) -> T:
    adapter = _build_adapter(ctx)

    async def _invoke() -> T:
        try:
            return await operation(adapter)
        finally:
            adapter.disconnect()

    try:
        return anyio.run(_invoke)
    except AdapterError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)


@app.command("verify")
def verify(ctx: typer.Context) -> None:
    """Check that the configured database answers."""

    result = _run(ctx, lambda adapter: adapter.verify())
    typer.echo(result.message)
    if result.details:
        typer.echo(f"Details: {json.dumps(result.details, ensure_ascii=False)}")
    if not result.success:
        raise typer.Exit(code=1)


@app.command("get")
def get(
    ctx: typer.Context,
    doc_ids: List[str] = typer.Argument(..., help="One or more document ids."),
) -> None:
    """Fetch documents; several ids print a list with null for unknown ids."""

    target: Any = doc_ids[0] if len(doc_ids) == 1 else list(doc_ids)
    _echo_json(_run(ctx, lambda adapter: adapter.get(target)))


@app.command("view")
def view(
    ctx: typer.Context,
    view_id: str = typer.Argument(..., help="View in the form <design doc>:<view>."),
    key_filter: Optional[str] = typer.Option(None, "--filter", help="Key or key prefix, as JSON or a plain string."),
    desc: bool = typer.Option(False, "--desc", help="Sort descending."),
    max_rows: Optional[int] = typer.Option(None, "--max", min=1, help="Maximum number of documents."),
    first: Optional[int] = typer.Option(None, "--first", min=0, help="Number of rows to skip."),
    first_key: Optional[str] = typer.Option(None, "--first-key", help="Lower key bound appended to the filter (JSON)."),
    last_key: Optional[str] = typer.Option(None, "--last-key", help="Upper key bound appended to the filter (JSON)."),
    start_after: Optional[str] = typer.Option(None, "--start-after", help="Resume after this full key (JSON)."),
) -> None:
    """Query a view and print its documents."""

    options = ViewOptions(
        filter=_parse_key(key_filter),
        desc=desc,
        max=max_rows,
        first=first,
        first_key=_parse_key(first_key),
        last_key=_parse_key(last_key),
        start_after=_parse_key(start_after),
    )
    _echo_json(_run(ctx, lambda adapter: adapter.get_view(view_id, options)))


@app.command("delete")
def delete(
    ctx: typer.Context,
    doc_id: str = typer.Argument(..., help="Id of the document to delete."),
) -> None:
    """Delete a document at its current revision."""

    _echo_json(_run(ctx, lambda adapter: adapter.delete(doc_id)))


if __name__ == "__main__":  # pragma: no cover
    app()
