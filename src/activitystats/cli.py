import json
from pathlib import Path

import click

from activitystats.categories import StatisticsType
from activitystats.config import (
    APP_RULES_FILE,
    CONFIG_DIR,
    CONNECTIONS_DB,
    DNS_LOGS_DB,
    LOG_FILE,
    Config,
    ensure_dirs,
    load_config,
)
from activitystats.engine import StatisticsEngine
from activitystats.logging_config import setup_logging
from activitystats.paging import QueryCancelledError, SourceQueryError
from activitystats.policy import AppRulesPolicy, BypassProbe
from activitystats.routing import route
from activitystats.sources import ConnectionLogStore, DnsLogStore
from activitystats.time_window import TimeCategory


@click.group()
@click.version_option(package_name="activitystats")
@click.option("--json", "json_mode", is_flag=True, help="Output in JSON format")
@click.option("--verbose", "-v", is_flag=True, help="Also log to stderr")
@click.option(
    "--config", "config_path", type=click.Path(dir_okay=False, path_type=Path),
    default=None, help="Path to config.toml",
)
@click.pass_context
def main(ctx, json_mode, verbose, config_path):
    """Activitystats - ranked network activity statistics."""
    ctx.ensure_object(dict)
    ctx.obj["json"] = json_mode
    ctx.obj["verbose"] = verbose
    ctx.obj["config_path"] = config_path
    # logs, databases and app rules live beside the config file
    ctx.obj["config_dir"] = config_path.parent if config_path is not None else CONFIG_DIR
    ensure_dirs(ctx.obj["config_dir"])


def _data_file(ctx, default: Path) -> Path:
    return ctx.obj["config_dir"] / default.name


def _load(ctx) -> Config:
    path = ctx.obj.get("config_path")
    config = load_config(path)
    setup_logging(
        _data_file(ctx, LOG_FILE),
        foreground=ctx.obj.get("verbose", False),
        level=config.log_level,
        max_bytes=config.log_max_size_mb * 1024 * 1024,
    )
    return config


def _emit(ctx, data, human_lines):
    """Output JSON or human-readable text based on mode."""
    if ctx.obj.get("json"):
        click.echo(json.dumps(data))
    else:
        for line in human_lines:
            click.echo(line)


def _fail(ctx, msg):
    if ctx.obj.get("json"):
        click.echo(json.dumps({"status": "error", "message": msg}))
    else:
        click.echo(f"Error: {msg}")
    ctx.exit(1)


@main.command()
@click.argument("category", type=click.Choice([c.value for c in StatisticsType]))
@click.option(
    "--window", "-w", default=TimeCategory.TWENTY_FOUR_HOUR.value,
    type=click.Choice([t.value for t in TimeCategory]), help="Time window",
)
@click.option("--page", "-p", default=0, type=click.IntRange(min=0), help="Page number, from 0")
@click.pass_context
def top(ctx, category, window, page):
    """Show one page of a ranked statistics category."""
    config = _load(ctx)
    stat = StatisticsType(category)
    connection_store = ConnectionLogStore(_data_file(ctx, CONNECTIONS_DB), config.retention_days)
    dns_store = DnsLogStore(_data_file(ctx, DNS_LOGS_DB), config.retention_days)
    engine = StatisticsEngine.from_config(
        config, connection_store, dns_store, AppRulesPolicy(_data_file(ctx, APP_RULES_FILE))
    )
    try:
        engine.select_time_category(TimeCategory(window))
        probe = engine.activate(stat)
        if probe is not None:
            probe.result()
        sequence = engine.pages(stat)
        try:
            result = sequence.get_page(page)
        except (SourceQueryError, QueryCancelledError) as e:
            _fail(ctx, str(e))
        key = engine.current_key(stat)
    finally:
        engine.close()
        connection_store.close()
        dns_store.close()

    source = key.source.value if key else None
    rows = [
        {"key": r.key, "count": r.count, "uid": r.uid, "flag": r.flag}
        for r in result.rows
    ]
    human_lines = [f"{stat.value} (last {window}, {source}, page {page}):"]
    if not rows:
        human_lines.append("  No activity.")
    for r in result.rows:
        human_lines.append(f"  {r.count:>8,}  {r.key}")
    if result.has_next:
        human_lines.append(f"More: --page {page + 1}")
    _emit(ctx, {
        "status": "ok",
        "category": stat.value,
        "window": window,
        "source": source,
        "page": page,
        "has_next": result.has_next,
        "rows": rows,
    }, human_lines)


@main.command()
@click.pass_context
def categories(ctx):
    """Show each category and the log it reads from."""
    config = _load(ctx)
    bypassed = BypassProbe(AppRulesPolicy(_data_file(ctx, APP_RULES_FILE))).run()
    dns_only = config.is_name_resolution_only_mode()
    routes = {c.value: route(c, dns_only, bypassed).value for c in StatisticsType}

    human_lines = [f"Mode: {config.mode}" + (" (an app bypasses DNS)" if bypassed else "")]
    for name, source in routes.items():
        human_lines.append(f"  {name:<26} {source}")
    _emit(ctx, {
        "status": "ok",
        "mode": config.mode,
        "bypass": bypassed,
        "categories": routes,
    }, human_lines)


@main.command()
@click.pass_context
def rotate(ctx):
    """Delete log entries older than the retention period."""
    config = _load(ctx)
    connection_store = ConnectionLogStore(_data_file(ctx, CONNECTIONS_DB), config.retention_days)
    dns_store = DnsLogStore(_data_file(ctx, DNS_LOGS_DB), config.retention_days)
    try:
        connections = connection_store.rotate()
        dns_logs = dns_store.rotate()
    finally:
        connection_store.close()
        dns_store.close()
    _emit(ctx, {
        "status": "ok",
        "connections_deleted": connections,
        "dns_logs_deleted": dns_logs,
        "config_dir": str(ctx.obj["config_dir"]),
    }, [f"Deleted {connections:,} connection and {dns_logs:,} DNS log entries "
        f"older than {config.retention_days} days."])
