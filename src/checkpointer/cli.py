"""Command-line interface for the rule checkpoint engine."""

import json
from pathlib import Path
from typing import Any

import structlog
import typer
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .config import EngineConfig, load_config
from .models.checkpoint import CheckpointSource
from .models.results import CaptureOutcome
from .observability.logger import configure_logging
from .service import CheckpointService

app = typer.Typer(
    name="rule-checkpoint",
    help="Rule Checkpoint - Undo log and point-in-time restore for rule edits",
    add_completion=False,
)

console = Console()
logger = structlog.get_logger(__name__)

CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Configuration file")
DB_OPTION = typer.Option(None, "--db", help="Checkpoint database path")
ENTITY_DB_OPTION = typer.Option(None, "--entity-db", help="Rule database path")
SCOPE_OPTION = typer.Option(None, "--scope", "-s", help="Object/workflow id")
APPLICATION_OPTION = typer.Option(None, "--application", "-a", help="Application id")


@app.callback()
def main(
    ctx: typer.Context,
    log_level: str | None = typer.Option(
        None, "--log-level", help="Logging level (overrides the configured level)"
    ),
    json_logs: bool | None = typer.Option(
        None, "--json-logs/--console-logs", help="Log format (overrides the configured format)"
    ),
) -> None:
    """Configure logging for every command."""
    ctx.obj = {"log_level": log_level, "json_logs": json_logs}
    configure_logging(level=log_level or "WARNING", json_logs=bool(json_logs))


def _load(
    ctx: typer.Context,
    config_file: Path | None,
    db: Path | None,
    entity_db: Path | None = None,
) -> EngineConfig:
    try:
        config = load_config(config_file)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]ERROR: {e}[/red]")
        raise typer.Exit(code=1) from e

    # Command-line options win over the file and LOG_LEVEL / LOG_FORMAT
    overrides = ctx.obj or {}
    json_logs = overrides.get("json_logs")
    configure_logging(
        level=overrides.get("log_level") or config.logging.level,
        json_logs=config.logging.format == "json" if json_logs is None else json_logs,
        log_file=config.logging.file,
    )

    if db is not None:
        config.storage.db_path = db
    if entity_db is not None:
        config.storage.entity_db_path = entity_db
    return config


def _parse_batch(batch_file: Path) -> dict[str, Any]:
    """
    Read a batch of tool calls from YAML or JSON.

    Either a list of `{tool, params}` calls, or a mapping with `calls` plus
    optional `scope_id`, `application_id` and `description`.
    """
    try:
        with open(batch_file) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid batch file {batch_file}: {e}") from e

    if isinstance(data, list):
        data = {"calls": data}
    if not isinstance(data, dict) or not isinstance(data.get("calls"), list):
        raise ValueError(f"Batch file {batch_file} must contain a list of calls")

    for index, call in enumerate(data["calls"]):
        if not isinstance(call, dict) or not isinstance(call.get("tool"), str):
            raise ValueError(f"Call {index} in {batch_file} has no tool name")
    return data


@app.command()
def run(
    ctx: typer.Context,
    batch_file: Path = typer.Argument(..., help="YAML/JSON batch of tool calls", exists=True),
    scope_id: int | None = SCOPE_OPTION,
    application_id: int | None = APPLICATION_OPTION,
    description: str | None = typer.Option(None, "--description", "-d", help="Description"),
    source: str = typer.Option("API", "--source", help="Checkpoint source (LLM, MCP, API)"),
    config_file: Path | None = CONFIG_OPTION,
    db: Path | None = DB_OPTION,
    entity_db: Path | None = ENTITY_DB_OPTION,
) -> None:
    """
    Run a batch of tool calls inside one checkpoint.

    The checkpoint is committed when every call succeeds and rolled back
    when any call fails.

    Examples:
        rule-checkpoint run changes.yaml --scope 42
        rule-checkpoint run changes.json -s 42 -d "Add email field"
    """
    try:
        batch = _parse_batch(batch_file)
    except ValueError as e:
        console.print(f"[red]ERROR: {e}[/red]")
        raise typer.Exit(code=1) from e

    try:
        checkpoint_source = CheckpointSource(source.upper())
    except ValueError as e:
        console.print(f"[red]ERROR: Unknown source {source!r} (use LLM, MCP or API)[/red]")
        raise typer.Exit(code=1) from e

    scope = scope_id if scope_id is not None else batch.get("scope_id")
    if scope is None:
        console.print("[red]ERROR: No scope given (use --scope or scope_id in the batch)[/red]")
        raise typer.Exit(code=1)

    config = _load(ctx, config_file, db, entity_db)

    with CheckpointService.from_config(config) as service:
        started = service.begin(
            int(scope),
            description=description or batch.get("description"),
            user_command=f"run {batch_file.name}",
            source=checkpoint_source,
            application_id=(
                application_id if application_id is not None else batch.get("application_id")
            ),
        )
        checkpoint_id = started["checkpoint_id"]
        console.print(
            f"\n[bold blue]Checkpoint started:[/bold blue] [cyan]{checkpoint_id}[/cyan]\n"
        )

        table = Table(title="Tool Calls")
        table.add_column("#", justify="right")
        table.add_column("Tool", style="cyan")
        table.add_column("Captured", justify="right", style="green")
        table.add_column("Skipped", justify="right", style="yellow")
        table.add_column("Lost", justify="right", style="red")

        for index, call in enumerate(batch["calls"], start=1):
            try:
                result = service.run_tool(call["tool"], call.get("params") or {})
            except Exception as e:
                console.print(table)
                console.print(f"\n[red]ERROR: Call {index} ({call['tool']}) failed:[/red] {e}")
                outcome = service.rollback()
                console.print(f"[yellow]{outcome['message']}[/yellow]")
                raise typer.Exit(code=1) from e

            counts = {o: 0 for o in CaptureOutcome}
            for capture in result.captures:
                counts[capture.outcome] += 1
            table.add_row(
                str(index),
                call["tool"],
                str(counts[CaptureOutcome.CAPTURED]),
                str(counts[CaptureOutcome.SKIPPED]),
                str(counts[CaptureOutcome.LOST]),
            )

        console.print(table)
        outcome = service.commit()
        console.print(f"\n[green]SUCCESS: {outcome['message']}[/green]")

        checkpoint = service.checkpoint_store.get(checkpoint_id)
        if checkpoint and checkpoint.has_gaps:
            console.print(
                f"[yellow]WARNING: {checkpoint.capture_failures} change(s) could not be "
                "captured; this checkpoint cannot be fully restored[/yellow]"
            )


@app.command()
def history(
    ctx: typer.Context,
    scope_id: int | None = SCOPE_OPTION,
    application_id: int | None = APPLICATION_OPTION,
    limit: int | None = typer.Option(None, "--limit", "-n", help="Number of checkpoints"),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
    config_file: Path | None = CONFIG_OPTION,
    db: Path | None = DB_OPTION,
    entity_db: Path | None = ENTITY_DB_OPTION,
) -> None:
    """
    List finished checkpoints with the rules they touched.

    Examples:
        rule-checkpoint history --scope 42
        rule-checkpoint history --limit 5 --json
    """
    config = _load(ctx, config_file, db, entity_db)

    with CheckpointService.from_config(config) as service:
        entries = service.get_history(scope_id, application_id, limit)

    if as_json:
        console.print_json(json.dumps(entries))
        return

    if not entries:
        console.print("[yellow]No checkpoints found[/yellow]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Checkpoint", style="cyan")
    table.add_column("Created")
    table.add_column("Source")
    table.add_column("Status")
    table.add_column("Description")
    table.add_column("Changes")

    for entry in entries:
        status_style = "red" if entry["status"] == "rolled_back" else "green"
        changes = ", ".join(
            f"{rule['operation']} {rule['type']} {rule['name']}" for rule in entry["updated_rules"]
        )
        if entry.get("has_gaps"):
            changes += " [red](incomplete)[/red]"
        table.add_row(
            entry["id"],
            entry["created_at"][:19],
            entry["source"],
            f"[{status_style}]{entry['status']}[/{status_style}]",
            entry["description"],
            changes or "-",
        )

    console.print(table)


@app.command()
def status(
    ctx: typer.Context,
    scope_id: int | None = SCOPE_OPTION,
    application_id: int | None = APPLICATION_OPTION,
    config_file: Path | None = CONFIG_OPTION,
    db: Path | None = DB_OPTION,
    entity_db: Path | None = ENTITY_DB_OPTION,
) -> None:
    """
    Show checkpoints still in status active.

    Examples:
        rule-checkpoint status
        rule-checkpoint status --scope 42
    """
    config = _load(ctx, config_file, db, entity_db)

    with CheckpointService.from_config(config) as service:
        report = service.get_status(scope_id, application_id)

    summary = report["summary"]
    console.print(f"\n[bold blue]Active checkpoints:[/bold blue] {summary['total']}")
    for source, count in summary["by_source"].items():
        console.print(f"  {source}: {count}")

    if report["active_checkpoints"]:
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Checkpoint", style="cyan")
        table.add_column("Scope", justify="right")
        table.add_column("Started")
        table.add_column("Tools")
        for cp in report["active_checkpoints"]:
            table.add_row(
                cp["id"],
                str(cp["scope_id"]),
                cp["created_at"][:19],
                ", ".join(cp["tools_executed"]),
            )
        console.print(table)


@app.command()
def checkout(
    ctx: typer.Context,
    scope_id: int | None = SCOPE_OPTION,
    application_id: int | None = APPLICATION_OPTION,
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
    config_file: Path | None = CONFIG_OPTION,
    db: Path | None = DB_OPTION,
    entity_db: Path | None = ENTITY_DB_OPTION,
) -> None:
    """
    Summarize every rule changed across a scope's checkpoints.

    Examples:
        rule-checkpoint checkout --scope 42
        rule-checkpoint checkout --application 7 --json
    """
    config = _load(ctx, config_file, db, entity_db)

    with CheckpointService.from_config(config) as service:
        summary = service.get_checkout(scope_id, application_id)

    if as_json:
        console.print_json(json.dumps(summary))
        return

    console.print(
        f"\n[bold blue]Changes:[/bold blue] {summary['total_changes']} rule(s) across "
        f"{summary['total_checkpoints']} checkpoint(s)\n"
    )

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Group", style="cyan")
    table.add_column("Category")
    table.add_column("Rule")
    table.add_column("Operation")
    table.add_column("Checkpoint")

    for group in summary["object_groups"]:
        for category in group["categories"]:
            for rule in category["rules"]:
                table.add_row(
                    group["object_name"],
                    category["category_name"],
                    rule["name"],
                    rule["operation"],
                    rule["checkpoint_description"],
                )
    for key in ("application_category", "theme_category"):
        category = summary[key]
        if category:
            for rule in category["rules"]:
                table.add_row(
                    "-",
                    category["category_name"],
                    rule["name"],
                    rule["operation"],
                    rule["checkpoint_description"],
                )

    console.print(table)


@app.command()
def restore(
    ctx: typer.Context,
    checkpoint_id: str = typer.Argument(..., help="Checkpoint to restore to"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    config_file: Path | None = CONFIG_OPTION,
    db: Path | None = DB_OPTION,
    entity_db: Path | None = ENTITY_DB_OPTION,
) -> None:
    """
    Restore a scope to its state just before a checkpoint.

    The checkpoint and every later one in its scope are rolled back.

    Examples:
        rule-checkpoint restore 3f2a... --yes
    """
    if not yes and not typer.confirm(
        f"Revert checkpoint {checkpoint_id} and every later checkpoint of its scope?"
    ):
        console.print("[yellow]Aborted.[/yellow]")
        raise typer.Exit()

    config = _load(ctx, config_file, db, entity_db)

    with CheckpointService.from_config(config) as service:
        outcome = service.restore(checkpoint_id)

    if not outcome["success"]:
        console.print(f"[red]ERROR: {outcome['message']}[/red]")
        if "pending" in outcome:
            console.print(
                f"Applied {outcome['applied']} change(s), {outcome['pending']} pending. "
                "Run the restore again to resume."
            )
        raise typer.Exit(code=1)

    console.print(f"[green]SUCCESS: {outcome['message']}[/green]")
    console.print(
        f"  Checkpoints rolled back: {len(outcome['rolled_back_checkpoints'])}\n"
        f"  Changes reverted: {outcome['applied_entries']}"
    )


@app.command()
def delete(
    ctx: typer.Context,
    checkpoint_id: str = typer.Argument(..., help="Checkpoint to delete"),
    config_file: Path | None = CONFIG_OPTION,
    db: Path | None = DB_OPTION,
    entity_db: Path | None = ENTITY_DB_OPTION,
) -> None:
    """
    Delete a checkpoint and its undo log. Rules are not changed.

    Examples:
        rule-checkpoint delete 3f2a...
    """
    config = _load(ctx, config_file, db, entity_db)

    with CheckpointService.from_config(config) as service:
        outcome = service.delete(checkpoint_id)

    if not outcome["success"]:
        console.print(f"[red]ERROR: {outcome['message']}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]SUCCESS: {outcome['message']}[/green]")


@app.command("delete-all")
def delete_all(
    ctx: typer.Context,
    scope_id: int | None = SCOPE_OPTION,
    application_id: int | None = APPLICATION_OPTION,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    config_file: Path | None = CONFIG_OPTION,
    db: Path | None = DB_OPTION,
    entity_db: Path | None = ENTITY_DB_OPTION,
) -> None:
    """
    Delete every checkpoint of a scope (all checkpoints when unscoped).

    Examples:
        rule-checkpoint delete-all --scope 42 --yes
    """
    target = "all checkpoints" if scope_id is None and application_id is None else "checkpoints"
    if not yes and not typer.confirm(f"Delete {target} and their undo logs?"):
        console.print("[yellow]Aborted.[/yellow]")
        raise typer.Exit()

    config = _load(ctx, config_file, db, entity_db)

    with CheckpointService.from_config(config) as service:
        outcome = service.delete_all(scope_id, application_id)

    console.print(f"[green]SUCCESS: {outcome['message']}[/green]")


@app.command()
def version() -> None:
    """Show version information."""
    console.print(
        Panel.fit(
            "[bold]Rule Checkpoint[/bold]\n\n"
            f"Version: [cyan]{__version__}[/cyan]\n\n"
            "[bold]Features:[/bold]\n"
            "- Undo log captured around every rule tool\n"
            "- Commit, rollback and point-in-time restore\n"
            "- History and checkout summaries",
            title="Version Info",
        )
    )


if __name__ == "__main__":
    app()
