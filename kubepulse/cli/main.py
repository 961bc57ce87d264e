"""``kubepulse`` command line.

One-shot commands start the app without auto-refresh, run a single query and
exit.  ``watch`` keeps the refresh scheduler running until interrupted.
"""

from __future__ import annotations

import asyncio
import json
import os
from collections.abc import Sequence
from dataclasses import replace
from datetime import timedelta
from typing import Any

import click

from kubepulse import __version__
from kubepulse.app import PREFERENCES_FILE, KubePulseApp, run_forever
from kubepulse.classify.hints import remediation_hint
from kubepulse.config import load_config
from kubepulse.models.connectivity import ConnectivityResult
from kubepulse.models.errors import ClassifiedError
from kubepulse.models.events import EventQueryResult, EventSeverity, QueryStatus, parse_duration
from kubepulse.preferences.backends import JsonFileKeyValueStore
from kubepulse.preferences.store import PreferencesStore


def _build_app(**kwargs: Any) -> KubePulseApp:
    return KubePulseApp(load_config(), **kwargs)


def _build_preferences() -> PreferencesStore:
    config = load_config()
    return PreferencesStore(JsonFileKeyValueStore(os.path.join(config.storage.data_dir, PREFERENCES_FILE)))


class _DurationType(click.ParamType):
    name = "duration"

    def convert(self, value: Any, param: click.Parameter | None, ctx: click.Context | None) -> timedelta | None:
        if value is None or isinstance(value, timedelta):
            return value
        try:
            return parse_duration(str(value))
        except ValueError as exc:
            self.fail(str(exc), param, ctx)


class _LineLimitType(click.ParamType):
    name = "limit"

    def convert(self, value: Any, param: click.Parameter | None, ctx: click.Context | None) -> int | None:
        if str(value) == "all":
            return None
        if str(value).isdigit() and int(value) > 0:
            return int(value)
        self.fail("line limit must be a positive integer or 'all'", param, ctx)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(__version__, prog_name="kubepulse")
def cli() -> None:
    """Multi-cluster connectivity and health monitoring."""


@cli.command()
@click.argument("contexts", nargs=-1)
def status(contexts: tuple[str, ...]) -> None:
    """Probe every configured context (or just CONTEXTS)."""

    async def _run() -> list[ConnectivityResult]:
        app = _build_app()
        await app.start(auto_refresh=False)
        try:
            assert app.monitor is not None
            return await app.monitor.check_all(list(contexts) or None)
        finally:
            await app.stop()

    results = asyncio.run(_run())
    if not results:
        click.echo("no contexts configured")
        return
    _echo_status(results)
    if not all(r.connected for r in results):
        raise SystemExit(1)


@cli.command()
@click.argument("context")
def namespaces(context: str) -> None:
    """List the namespaces of CONTEXT."""

    async def _run() -> Any:
        app = _build_app()
        await app.start(auto_refresh=False)
        try:
            assert app.engine is not None
            return await app.engine.fetch_namespaces(context)
        finally:
            await app.stop()

    result = asyncio.run(_run())
    if isinstance(result, ClassifiedError):
        _echo_error(result)
        raise SystemExit(1)
    for name in result.names:
        click.echo(name)


@cli.command()
@click.argument("context")
@click.option("--namespace", default=None, help="Only this namespace.")
@click.option(
    "--type",
    "types",
    multiple=True,
    type=click.Choice([s.value for s in EventSeverity]),
    help="Event type; repeat for several.",
)
@click.option("--since", type=_DurationType(), default="24h", show_default=True, help="30m, 6h, 7d or all.")
@click.option("--kind", default=None, help="Involved object kind, e.g. Pod.")
@click.option("--search", default=None, help="Case-insensitive text in reason or message.")
@click.option("--json", "as_json", is_flag=True, help="Emit JSON.")
def events(
    context: str,
    namespace: str | None,
    types: tuple[str, ...],
    since: timedelta | None,
    kind: str | None,
    search: str | None,
    as_json: bool,
) -> None:
    """Query recent events of an operated CONTEXT."""

    async def _run() -> EventQueryResult:
        app = _build_app()
        await app.start(auto_refresh=False)
        try:
            assert app.engine is not None
            app.engine.set_filter(
                context,
                namespace=namespace,
                severities=types,
                since=since,
                resource_kind=kind,
                search_text=search,
            )
            return await app.engine.fetch_events(context)
        finally:
            await app.stop()

    result = asyncio.run(_run())
    _echo_events(result, as_json=as_json)
    if not result.ok:
        raise SystemExit(1)


@cli.command()
def watch() -> None:
    """Auto-refresh events of operated contexts until interrupted."""
    app = _build_app(on_result=lambda result: _echo_events(result, as_json=True))
    asyncio.run(run_forever(app))


@cli.group()
def prefs() -> None:
    """Show or change per-context preferences."""


@prefs.command("show")
@click.argument("context")
def prefs_show(context: str) -> None:
    """Print the preferences of CONTEXT."""
    click.echo(json.dumps(_build_preferences().get(context).to_dict(), indent=2, sort_keys=True))


@prefs.command("set")
@click.argument("context")
@click.option("--refresh-interval", type=click.FloatRange(min=0, min_open=True), default=None, help="Seconds.")
@click.option("--refresh/--no-refresh", "refresh_enabled", default=None, help="Auto-refresh.")
@click.option("--line-limit", type=_LineLimitType(), default=None, help="Positive integer or 'all'.")
@click.option("--follow/--no-follow", "follow_mode", default=None, help="Follow new output.")
@click.option("--timestamps/--no-timestamps", "show_timestamps", default=None, help="Show timestamps.")
@click.option("--previous/--no-previous", "show_previous", default=None, help="Show previous container output.")
@click.pass_context
def prefs_set(ctx: click.Context, context: str, **options: Any) -> None:
    """Change the preferences of CONTEXT.  Unset options keep their value."""
    store = _build_preferences()
    changes = {key: value for key, value in options.items() if value is not None}
    source = ctx.get_parameter_source("line_limit")
    if source == click.core.ParameterSource.COMMANDLINE:
        changes["line_limit"] = options["line_limit"]
    updated = replace(store.get(context), **changes)
    if not asyncio.run(store.save(context, updated)):
        raise click.ClickException(f"failed to save preferences for {context}")
    click.echo(json.dumps(updated.to_dict(), indent=2, sort_keys=True))


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


def _echo_status(results: Sequence[ConnectivityResult]) -> None:
    width = max(len("CONTEXT"), *(len(r.context_name) for r in results))
    click.echo(f"{'CONTEXT':<{width}}  {'STATUS':<12}  {'MS':>8}  ERROR")
    for r in results:
        error = f"{r.error.kind}: {r.error.message}" if r.error else ""
        click.echo(f"{r.context_name:<{width}}  {r.status:<12}  {r.duration_ms:>8.1f}  {error}")


def _echo_error(error: ClassifiedError) -> None:
    click.echo(f"{error.kind}: {error.message}", err=True)
    click.echo(f"hint: {remediation_hint(error.kind)}", err=True)


def _echo_events(result: EventQueryResult, *, as_json: bool = False) -> None:
    if as_json:
        payload = {
            "context": result.context_name,
            "status": str(result.status),
            "error": str(result.error.kind) if result.error else None,
            "truncated": result.truncated,
            "events": [
                {
                    "timestamp": e.timestamp.isoformat(),
                    "type": str(e.severity),
                    "reason": e.reason,
                    "object": e.involved_resource,
                    "namespace": e.namespace,
                    "message": e.message,
                    "count": e.count,
                }
                for e in result.events
            ],
        }
        click.echo(json.dumps(payload))
        return
    if result.error is not None:
        _echo_error(result.error)
    elif result.status == QueryStatus.UNSUPPORTED:
        click.echo(f"event queries need the operator; {result.context_name} is not operated", err=True)
    for e in result.events:
        click.echo(
            f"{e.timestamp:%Y-%m-%d %H:%M:%S}  {e.severity:<7}  {e.namespace:<20}  "
            f"{e.involved_resource:<40}  {e.reason}: {e.message}"
        )
    if result.truncated:
        click.echo("(showing the most recent events only)", err=True)
