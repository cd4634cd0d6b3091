"""
Command-line interface for the dedup engine.

Operates on a JSON session store file; every command can emit its result as
JSON with ``--json`` for scripting.
"""

import json
from pathlib import Path
from typing import Any, List

import click
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from . import __version__
from .config import DEFAULT_CONFIG_FILE, ConfigManager, DedupConfig
from .core.errors import DedupError
from .engine.ingest import IngestOptions
from .service import DedupService
from .store.json_store import JsonSessionStore
from .utils.logging_setup import setup_logging

console = Console()

DEFAULT_STORE = "casededup_store.json"


def _load_input(path: Path) -> List[Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise click.ClickException(f"{path} is not valid JSON: {e}")

    if isinstance(data, dict):
        data = data.get("testCases", data.get("records"))
    if not isinstance(data, list):
        raise click.ClickException(f"{path} must contain a list of test cases or a 'testCases' list")
    return data


def _echo_json(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _service(ctx: click.Context) -> DedupService:
    obj = ctx.obj
    if "service" not in obj:
        try:
            config = obj["manager"].config
        except ValueError as e:
            raise click.ClickException(f"Invalid configuration: {e}")
        obj["service"] = DedupService(JsonSessionStore(obj["store_path"]), config)
    return obj["service"]


def _fail(error: DedupError) -> None:
    console.print(f"[red]✗ {error}[/red]")
    raise click.exceptions.Exit(1)


@click.group()
@click.version_option(__version__, prog_name="casededup")
@click.option("--store", "store_path", type=click.Path(dir_okay=False), default=DEFAULT_STORE,
              envvar="CASEDEDUP_STORE", show_default=True, help="JSON session store file")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="Path to config file")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.option("--log-dir", type=click.Path(file_okay=False), help="Also write JSON-lines logs to this directory")
@click.pass_context
def main(ctx, store_path, config_path, verbose, log_dir):
    """Deterministic deduplication of generated test cases."""
    setup_logging(
        level="DEBUG" if verbose else "WARNING",
        log_dir=Path(log_dir) if log_dir else None,
        file=bool(log_dir),
    )
    ctx.ensure_object(dict)
    ctx.obj["store_path"] = Path(store_path)
    ctx.obj["manager"] = ConfigManager(config_path)


@main.command()
@click.argument("input_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--project-id", help="Project the batch belongs to")
@click.option("--project-name", help="Human readable project name")
@click.option("--document", "documents", multiple=True, help="Source document name (repeatable)")
@click.option("--model", default="", help="Model that generated the batch")
@click.option("--continue-session", "continue_session_id", help="Append to an existing session")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
def ingest(ctx, input_file, project_id, project_name, documents, model, continue_session_id, as_json):
    """Deduplicate and store a batch of generated test cases."""
    records = _load_input(input_file)
    options = IngestOptions(
        document_names=list(documents) or [input_file.name],
        model=model,
        project_id=project_id,
        project_name=project_name,
        continue_session_id=continue_session_id,
    )
    try:
        result = _service(ctx).ingest(records, options)
    except DedupError as e:
        _fail(e)

    if as_json:
        _echo_json(result.to_dict())
        return

    table = Table(title=f"Ingest: {input_file.name}")
    table.add_column("Outcome", style="cyan")
    table.add_column("Count", justify="right")
    table.add_row("Saved", str(result.saved))
    table.add_row("Skipped", str(result.skipped))
    table.add_row("Exact duplicates", str(result.exact_duplicates))
    table.add_row("Auto-merged", str(result.auto_merged))
    table.add_row("Review required", str(result.review_required))
    console.print(table)
    console.print(f"Session: [bold]{result.session_id}[/bold]")

    for item in result.merge_conflicts:
        console.print(
            f"[yellow]Review[/yellow] {item.incoming.title!r} ~ {item.existing.title!r} "
            f"({item.score:.2f}): {item.reason}"
        )
    for warning in result.warnings:
        console.print(f"[yellow]⚠ {warning}[/yellow]")


@main.command()
@click.option("--project-id", help="Limit to one project (default: all)")
@click.option("--threshold", type=int, help="Maximum Hamming distance")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
def reconcile(ctx, project_id, threshold, yes, as_json):
    """Remove near-duplicate records already in the store."""
    service = _service(ctx)
    try:
        if not yes and not as_json:
            preview = service.preview_reconcile(project_id, threshold)
            if not preview.total_would_remove:
                console.print("[green]✓ No duplicates found[/green]")
                return
            if not click.confirm(f"Remove {preview.total_would_remove} duplicate record(s)?"):
                console.print("[yellow]Aborted[/yellow]")
                return
        result = service.reconcile(project_id, threshold)
    except DedupError as e:
        _fail(e)

    if as_json:
        _echo_json(result.to_dict())
        return

    for detail in result.details:
        console.print(
            f"Kept [bold]{detail.keep_id}[/bold] {detail.keep_title!r}, "
            f"removed {', '.join(detail.removed_ids)}"
        )
    console.print(
        f"[green]✓ {result.duplicate_groups} group(s), "
        f"{result.cases_removed} of {result.total_cases} record(s) removed[/green]"
    )


@main.command()
@click.option("--project-id", help="Limit to one project (default: all)")
@click.option("--threshold", type=int, help="Maximum Hamming distance")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
def preview(ctx, project_id, threshold, as_json):
    """Show duplicate groups without changing the store."""
    try:
        result = _service(ctx).preview_reconcile(project_id, threshold)
    except DedupError as e:
        _fail(e)

    if as_json:
        _echo_json(result.to_dict())
        return

    if not result.duplicate_groups:
        console.print("[green]✓ No duplicates found[/green]")
        return

    table = Table(title="Duplicate groups")
    table.add_column("#", justify="right")
    table.add_column("Keep", style="green")
    table.add_column("Would remove", style="red")
    for number, cluster in enumerate(result.duplicate_groups, 1):
        table.add_row(str(number), f"{cluster.keep_id} {cluster.keep.title}", ", ".join(cluster.remove_ids))
    console.print(table)
    console.print(f"Total would remove: [bold]{result.total_would_remove}[/bold]")


@main.command()
@click.option("--project-id", help="Limit to one project (default: all)")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
def backfill(ctx, project_id, as_json):
    """Compute SimHash for stored records that lack one."""
    try:
        result = _service(ctx).backfill_simhash(project_id)
    except DedupError as e:
        _fail(e)

    if as_json:
        _echo_json(result)
    else:
        console.print(f"[green]✓ Updated {result['updated']} record(s)[/green]")


@main.command()
@click.option("--project-id", help="Limit to one project (default: all)")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
def stats(ctx, project_id, as_json):
    """Summarize SimHash coverage and potential duplicates."""
    try:
        result = _service(ctx).reconciliation_stats(project_id)
    except DedupError as e:
        _fail(e)

    if as_json:
        _echo_json(result)
        return

    table = Table(title="Reconciliation stats")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Total cases", str(result["totalCases"]))
    table.add_row("With SimHash", str(result["withSimhash"]))
    table.add_row("Potential duplicates", str(result["potentialDuplicates"]))
    table.add_row("Estimated savings", f"{result['estimatedSavings']}%")
    console.print(table)


@main.group(name="config")
def config_group():
    """Manage dedup configuration."""
    pass


@config_group.command(name="init")
@click.option("--path", type=click.Path(dir_okay=False), default=DEFAULT_CONFIG_FILE, show_default=True,
              help="Path for config file")
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def config_init(path, force):
    """Write a config file with default values."""
    config_path = Path(path)
    if config_path.exists() and not force:
        if not click.confirm(f"Config file {path} already exists. Overwrite?"):
            console.print("[yellow]Aborted[/yellow]")
            return

    DedupConfig().save_to_file(config_path)
    console.print(f"[green]✓ Created config file at {path}[/green]")


@config_group.command(name="show")
@click.pass_context
def config_show(ctx):
    """Display the effective configuration, environment overrides included."""
    try:
        config = ctx.obj["manager"].config
    except ValueError as e:
        raise click.ClickException(f"Invalid configuration: {e}")

    yaml_str = yaml.dump(config.to_dict(), default_flow_style=False, sort_keys=False)
    syntax = Syntax(yaml_str, "yaml", theme="monokai", line_numbers=True)
    console.print(Panel(syntax, title="[bold cyan]Dedup Configuration[/bold cyan]", border_style="cyan"))


@config_group.command(name="validate")
@click.pass_context
def config_validate(ctx):
    """Validate the effective configuration."""
    manager = ctx.obj["manager"]
    try:
        config = manager.config
    except ValueError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise click.exceptions.Exit(1)

    issues = manager.validate_config(config)
    errors = [i for i in issues if not i.startswith("Warning")]
    for issue in issues:
        style = "yellow" if issue.startswith("Warning") else "red"
        console.print(f"[{style}]{issue}[/{style}]")

    if errors:
        console.print("[red]✗ Configuration has validation errors[/red]")
        raise click.exceptions.Exit(1)
    console.print("[green]✓ Configuration is valid[/green]")


if __name__ == "__main__":
    main()
