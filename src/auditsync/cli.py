"""
Command-line interface for auditsync.
"""

import asyncio
import sys
from functools import wraps
from pathlib import Path
from typing import List, Tuple

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import AuditConfig
from .database.connection import ConnectionConfig, ConnectionPool
from .exceptions import AuditSyncError, ConfigurationError
from .logging_config import setup_logging
from .schema.diff import DiffReport, DiffReporter, render_diff_report
from .schema.operations import OperationMode, SchemaChange
from .schema.reconciler import AuditRunResult, ReconciliationStatus, SchemaReconciler


console = Console()

DEFAULT_CONFIG = "etc/audit.json"

_STATUS_STYLES = {
    ReconciliationStatus.SYNCHRONIZED: "green",
    ReconciliationStatus.CREATED: "cyan",
    ReconciliationStatus.COLUMNS_ADDED: "cyan",
    ReconciliationStatus.PENDING: "yellow",
    ReconciliationStatus.ABSENT: "yellow",
    ReconciliationStatus.LOCK_TIMEOUT: "red",
    ReconciliationStatus.FAILED: "red",
}


def handle_errors(func):
    """Decorator to handle errors gracefully in CLI commands."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except AuditSyncError as e:
            console.print(f"[red]Error:[/red] {escape(str(e))}")
            sys.exit(1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted by user[/yellow]")
            sys.exit(0)
        except Exception as e:
            console.print(f"[red]Unexpected error:[/red] {escape(str(e))}")
            if "--debug" in sys.argv:
                import traceback
                traceback.print_exc()
            sys.exit(1)
    return wrapper


@click.group()
@click.version_option(__version__)
@click.option(
    "--debug", is_flag=True, help="Enable debug mode"
)
@click.pass_context
def main(ctx, debug):
    """auditsync: audit tables and triggers for MySQL data tables."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@main.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(),
    default=DEFAULT_CONFIG,
    help="Output configuration file path",
)
@handle_errors
def init(output: str):
    """Write an example configuration file."""
    path = Path(output)
    if path.exists():
        if not click.confirm(f"Configuration file {output} already exists. Overwrite?"):
            return

    path.parent.mkdir(parents=True, exist_ok=True)
    AuditConfig.from_dict(_example_config()).to_file(path)

    console.print(f"[green]✓[/green] Configuration file created: {output}")
    console.print("\n[yellow]Next steps:[/yellow]")
    console.print("1. Edit the database section and flag the tables to audit")
    console.print(f"2. Run: auditsync validate-config {output}")
    console.print(f"3. Run: auditsync audit {output} --dry-run")


@main.command("validate-config")
@click.argument("config", type=click.Path(exists=True), default=DEFAULT_CONFIG)
@handle_errors
def validate_config(config: str):
    """Validate a configuration file."""
    console.print(f"Validating configuration: {config}")

    try:
        audit_config = AuditConfig.from_file(config)
    except ConfigurationError as e:
        console.print(f"[red]✗[/red] Configuration error: {escape(str(e))}")
        sys.exit(1)

    console.print("[green]✓[/green] Configuration is valid")
    _display_config_summary(audit_config)


@main.command()
@click.argument("config", type=click.Path(exists=True), default=DEFAULT_CONFIG)
@click.option("--prune", is_flag=True, help="Remove the recorded table columns from the config")
@click.option(
    "--dry-run",
    is_flag=True,
    help="Show what would be done without making changes",
)
@click.option(
    "--force-triggers",
    is_flag=True,
    help="Recreate triggers even when they are up to date",
)
@click.option("--verbose", "-v", is_flag=True, help="Log every generated statement")
@click.pass_context
@handle_errors
def audit(ctx, config: str, prune: bool, dry_run: bool, force_triggers: bool, verbose: bool):
    """Create and update audit tables and triggers."""
    audit_config = AuditConfig.from_file(config)
    setup_logging(audit_config.logging, verbose=verbose, debug=ctx.obj.get("debug", False))

    if dry_run:
        console.print("[yellow]Dry run mode - no changes will be made[/yellow]")

    mode = OperationMode.DRY_RUN if dry_run else OperationMode.SAFE
    run, changes = asyncio.run(_run_audit(audit_config, mode, force_triggers, prune))

    if dry_run:
        _display_statements(changes)
    else:
        run.updated_config.to_file(config)

    _display_audit_summary(run)

    if not run.success:
        sys.exit(1)


@main.command()
@click.argument("config", type=click.Path(exists=True), default=DEFAULT_CONFIG)
@click.option("--full", "-f", is_flag=True, help="Show all columns")
@click.pass_context
@handle_errors
def diff(ctx, config: str, full: bool):
    """Compare data tables with audit tables."""
    audit_config = AuditConfig.from_file(config)
    setup_logging(audit_config.logging, debug=ctx.obj.get("debug", False))

    report = asyncio.run(_run_diff(audit_config, full))
    if not report.has_differences:
        console.print("[green]✓[/green] Audit tables match the data tables")
        return

    render_diff_report(report, console)

    if report.errors:
        sys.exit(1)


async def _run_audit(
    config: AuditConfig, mode: OperationMode, force_triggers: bool, prune: bool
) -> Tuple[AuditRunResult, List[SchemaChange]]:
    async with ConnectionPool(ConnectionConfig.from_settings(config.database)) as pool:
        reconciler = SchemaReconciler(pool, config, mode, force_triggers=force_triggers)
        run = await reconciler.reconcile_all(prune=prune)
        return run, reconciler.operations.changes


async def _run_diff(config: AuditConfig, full: bool) -> DiffReport:
    async with ConnectionPool(ConnectionConfig.from_settings(config.database)) as pool:
        return await DiffReporter(pool, config).diff_report(full=full)


def _example_config() -> dict:
    """An example configuration with the usual audit columns."""
    return {
        "database": {
            "host_name": "localhost",
            "port": 3306,
            "user_name": "${AUDIT_DB_USER}",
            "password": "${AUDIT_DB_PASSWORD}",
            "data_schema": "app_data",
            "audit_schema": "app_audit",
            "lock_wait_timeout": 30,
        },
        "audit_columns": [
            {
                "column_name": "audit_timestamp",
                "column_type": "timestamp not null default current_timestamp",
                "expression": "now()",
            },
            {
                "column_name": "audit_statement",
                "column_type": "enum('INSERT','DELETE','UPDATE') character set ascii collate ascii_general_ci not null",
                "value_type": "ACTION",
            },
            {
                "column_name": "audit_user",
                "column_type": "varchar(255) default null",
                "expression": "user()",
            },
        ],
        "audit_table_options": {
            "engine": "InnoDB",
            "character_set": "utf8mb4",
            "collation": "utf8mb4_general_ci",
        },
        "skip_variable": "@audit_skip",
        "additional_sql": [],
        "tables": {},
        "table_columns": {},
    }


def _display_config_summary(config: AuditConfig):
    """Display a summary of the configuration."""
    console.print("\n[blue]Configuration Summary[/blue]")

    db = config.database
    db_table = Table(title="Database")
    db_table.add_column("Host", style="cyan")
    db_table.add_column("User", style="magenta")
    db_table.add_column("Data Schema", style="green")
    db_table.add_column("Audit Schema", style="yellow")
    db_table.add_row(f"{db.host_name}:{db.port}", db.user_name, db.data_schema, db.audit_schema)
    console.print(db_table)

    columns_table = Table(title="Audit Columns")
    columns_table.add_column("Name", style="cyan")
    columns_table.add_column("Type", style="magenta")
    columns_table.add_column("Value", style="green")
    for column in config.audit_columns:
        value = "action" if column.value_type == "ACTION" else (column.expression or "null")
        columns_table.add_row(column.column_name, escape(column.column_type), escape(value))
    console.print(columns_table)

    audited = config.audited_tables()
    console.print(f"  Tables listed: {len(config.tables)}")
    console.print(f"  Tables audited: {len(audited)}")
    console.print(f"  Tables with recorded columns: {len(config.table_columns)}")
    if config.skip_variable:
        console.print(f"  Skip variable: {config.skip_variable}")


def _display_statements(changes: List[SchemaChange]):
    """Print the statements a dry run would have executed."""
    if not changes:
        console.print("No statements to execute")
        return

    console.print("\n[blue]Statements[/blue]")
    for change in changes:
        console.print(f"[dim]-- {escape(change.description)}[/dim]")
        console.print(escape(change.sql) + ";")


def _display_audit_summary(run: AuditRunResult):
    """Display the outcome per table."""
    table = Table(title="Audit Summary")
    table.add_column("Table", style="cyan")
    table.add_column("Status")
    table.add_column("New", justify="right")
    table.add_column("Obsolete", justify="right")
    table.add_column("Altered", justify="right")
    table.add_column("Triggers")

    for name, result in run.results.items():
        style = _STATUS_STYLES[result.status]
        table.add_row(
            name,
            f"[{style}]{result.status.value}[/{style}]",
            str(len(result.new_columns)),
            str(len(result.obsolete_columns)),
            str(len(result.altered_columns)),
            "recreated" if result.triggers_regenerated else "",
        )
    console.print(table)

    summary = run.get_summary()
    console.print(
        f"Tables: {summary['total_tables']}, "
        f"synchronized: {summary[ReconciliationStatus.SYNCHRONIZED.value]}, "
        f"failed: {len(summary['failed_tables'])}"
    )

    for table_name in run.new_tables:
        console.print(f"[cyan]New table {table_name} added to the config, not audited[/cyan]")

    for name, result in run.results.items():
        for error in result.errors:
            console.print(f"[red]{name}:[/red] {escape(error)}")


if __name__ == "__main__":
    main()
