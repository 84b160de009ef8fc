"""Main CLI entry point."""

import json
import sys
import time

import click
from rich.console import Console
from rich.table import Table

from ..core.aggregator import Aggregator
from ..core.alias_registry import JsonAliasRegistry
from ..core.error_classifier import ErrorClassifier
from ..core.events import EventType, InMemoryBroadcaster, WatchEvent
from ..core.file_discovery import FileDiscovery
from ..core.models import GroupBy, LogLevel, SortBy, SortOrder
from ..core.watcher import Watcher, WatcherSettings
from ..utils.config import ConfigManager
from ..utils.exceptions import LogMonitorError
from ..utils.logger import setup_logger
from ..utils.validators import build_query


console = Console()

LEVEL_STYLES = {
    "CRITICAL": "bold red",
    "ERROR": "red",
    "WARNING": "yellow",
    "INFO": "cyan",
    "DEBUG": "dim",
}

EVENT_STYLES = {
    EventType.CRITICAL_ERROR_ALERT: "bold red",
    EventType.WATCHER_FAILED: "red",
    EventType.PATH_NOT_FOUND: "yellow",
}


def _registry(ctx: click.Context, registry_file):
    cfg: ConfigManager = ctx.obj["config"]
    path = registry_file or cfg.get_registry_config().get("storage_file", "storage/user-aliases.json")
    return JsonAliasRegistry(path)


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.option('--config-dir', default='config', help='Configuration directory path')
@click.option('--app-log-file', help='Log file for application logs')
@click.pass_context
def main(ctx, verbose, config_dir, app_log_file):
    """Aggregate and live-monitor log files in per-user alias directories."""
    setup_logger(level="DEBUG" if verbose else "INFO", log_file=app_log_file)
    ctx.ensure_object(dict)
    ctx.obj["config"] = ConfigManager(config_dir)


@main.command('check-config')
@click.pass_context
def check_config(ctx):
    """Load configuration files and report what they contain."""
    cfg: ConfigManager = ctx.obj["config"]
    try:
        console.print("[green]Testing configuration...[/green]")
        console.print(f"Extensions: {cfg.get_supported_extensions()}")
        classifier = ErrorClassifier(config_manager=cfg)
        console.print(f"Classification rules: {[r.category for r in classifier.rules]}")
        console.print(f"Watcher settings: {WatcherSettings.from_config(cfg)}")
        console.print("[green]✓ Configuration test passed[/green]")
    except (OSError, LogMonitorError) as e:
        console.print(f"[red]Configuration test failed: {e}[/red]")
        sys.exit(1)


@main.command()
@click.option('--registry', 'registry_file', help='Alias storage JSON file')
@click.option('--user', 'users', multiple=True, help='User id (repeatable)')
@click.option('--alias', 'aliases', multiple=True, help='Alias name (repeatable)')
@click.option('--date', 'date_str', help='Calendar date YYYY-MM-DD (default today)')
@click.option('--level', 'levels', multiple=True,
              type=click.Choice([l.value for l in LogLevel], case_sensitive=False))
@click.option('--limit', type=int, default=None)
@click.option('--offset', type=int, default=0)
@click.option('--group-by', type=click.Choice([g.value for g in GroupBy]))
@click.option('--sort-by', type=click.Choice([s.value for s in SortBy]), default=SortBy.TIMESTAMP.value)
@click.option('--sort-order', type=click.Choice([o.value for o in SortOrder]), default=SortOrder.DESC.value)
@click.option('--metadata/--no-metadata', default=True, help='Include counts and grouping in JSON output')
@click.option('--output-format', '-f', default='human', type=click.Choice(['json', 'human']))
@click.pass_context
def aggregate(ctx, registry_file, users, aliases, date_str, levels, limit, offset,
              group_by, sort_by, sort_order, metadata, output_format):
    """Aggregate log entries across users and aliases."""
    cfg: ConfigManager = ctx.obj["config"]
    settings = cfg.get_aggregation_config()
    request = {
        "userIds": list(users),
        "aliasNames": list(aliases),
        "date": date_str,
        "logLevels": [l.upper() for l in levels],
        "limit": limit,
        "offset": offset,
        "groupBy": group_by,
        "sortBy": sort_by,
        "sortOrder": sort_order,
        "includeMetadata": metadata,
        "enableCache": False,
    }

    try:
        query = build_query(
            request,
            default_limit=settings.get("default_limit", 1000),
            max_limit=settings.get("max_limit", 10000),
        )
        aggregator = Aggregator(_registry(ctx, registry_file), config_manager=cfg)
        result = aggregator.aggregate(query)
    except LogMonitorError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    if output_format == 'json':
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    table = Table(title=f"{result.pagination.total} entries ({len(result.entries)} shown)")
    for column in ("Time", "User", "Alias", "File", "Level", "Category", "Message"):
        table.add_column(column)
    for entry in result.entries:
        level = entry.level.value
        table.add_row(
            entry.effective_timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            entry.user_id,
            entry.alias_name,
            entry.file_name,
            f"[{LEVEL_STYLES[level]}]{level}[/]",
            entry.category or "",
            entry.message[:120],
        )
    console.print(table)

    for failure in result.failures:
        console.print(f"[yellow]⚠ {failure.kind}: {failure.message}[/yellow]")


@main.command()
@click.argument('path')
@click.pass_context
def dates(ctx, path):
    """List the modified dates that have log files under PATH."""
    discovery = FileDiscovery(config_manager=ctx.obj["config"])
    try:
        available = discovery.available_dates(path)
    except LogMonitorError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    table = Table(title=path)
    table.add_column("Date")
    table.add_column("Files", justify="right")
    table.add_column("Size", justify="right")
    for day in available["dates"]:
        table.add_row(day["date"], str(day["fileCount"]), day["totalSizeFormatted"])
    console.print(table)


@main.command()
@click.option('--registry', 'registry_file', help='Alias storage JSON file')
@click.pass_context
def watch(ctx, registry_file):
    """Watch every alias directory and print change notifications."""
    cfg: ConfigManager = ctx.obj["config"]
    registry = _registry(ctx, registry_file)
    broadcaster = InMemoryBroadcaster()
    aggregator = Aggregator(registry, config_manager=cfg)

    def print_event(event: WatchEvent) -> None:
        style = EVENT_STYLES.get(event.type, "green")
        console.print(f"[{style}]{event.type.value}[/] {json.dumps(event.to_dict()['payload'])}")

    broadcaster.subscribe(print_event)
    broadcaster.subscribe(aggregator.invalidate_on)

    watcher = Watcher(broadcaster, config_manager=cfg)
    statuses = watcher.watch_registry(registry)
    for name, status in statuses.items():
        console.print(f"{name}: {status.value}")

    console.print("[blue]Watching for changes, press Ctrl+C to stop[/blue]")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        watcher.close()


@main.group()
def aliases():
    """Manage user aliases."""


@aliases.command('add')
@click.argument('user_id')
@click.argument('alias_name')
@click.argument('base_path')
@click.option('--registry', 'registry_file', help='Alias storage JSON file')
@click.pass_context
def add_alias(ctx, user_id, alias_name, base_path, registry_file):
    """Map ALIAS_NAME to BASE_PATH for USER_ID."""
    try:
        alias = _registry(ctx, registry_file).add_alias(user_id, alias_name, base_path)
    except LogMonitorError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    console.print(f"[green]Added {alias.user_id}/{alias.alias_name} -> {alias.base_path}[/green]")


@aliases.command('list')
@click.option('--registry', 'registry_file', help='Alias storage JSON file')
@click.pass_context
def list_aliases(ctx, registry_file):
    """List every user's aliases."""
    registry = _registry(ctx, registry_file)
    table = Table()
    for column in ("User", "Alias", "Path", "Accesses"):
        table.add_column(column)
    for user_id in registry.list_all_users():
        for alias in registry.get_aliases_for_user(user_id):
            table.add_row(user_id, alias.alias_name, alias.base_path, str(alias.access_count))
    console.print(table)


@aliases.command('remove')
@click.argument('user_id')
@click.argument('alias_name')
@click.option('--registry', 'registry_file', help='Alias storage JSON file')
@click.pass_context
def remove_alias(ctx, user_id, alias_name, registry_file):
    """Remove ALIAS_NAME from USER_ID."""
    if _registry(ctx, registry_file).remove_alias(user_id, alias_name):
        console.print(f"[green]Removed {user_id}/{alias_name}[/green]")
    else:
        console.print(f"[yellow]No alias {alias_name} for {user_id}[/yellow]")


if __name__ == '__main__':
    main()
