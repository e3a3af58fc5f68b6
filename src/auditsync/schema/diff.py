"""
Read-only comparison of data tables, audit tables and the configuration.

Nothing in this module changes the database or the configuration. The
report is rendered for humans by :func:`render_diff_report`.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..config import AuditConfig
from ..database.connection import ConnectionPool
from ..database.introspection import SchemaIntrospector
from ..exceptions import CatalogReadError
from .columns import ColumnSet, comparable_definition
from .metadata import TableMetadata, compare_options


logger = logging.getLogger(__name__)


class ColumnView(str, Enum):
    """A perspective on a column."""

    CONFIG = "config"
    AUDIT = "audit"
    DATA = "data"


@dataclass
class ColumnObservation:
    """The type of one column as seen from each view it exists in."""

    name: str
    by_view: Dict[ColumnView, str] = field(default_factory=dict)

    def type_in(self, view: ColumnView) -> Optional[str]:
        return self.by_view.get(view)

    def normalized(self, view: ColumnView) -> str:
        """Type and nullability in ``view``, without defaults or collations."""
        return comparable_definition(self.by_view.get(view))

    @property
    def is_consistent(self) -> bool:
        """Present in every view with the same type and nullability."""
        if len(self.by_view) != len(ColumnView):
            return False
        return len({self.normalized(view) for view in self.by_view}) == 1


class TableStatus(str, Enum):
    MISSING = "missing"          # audited, no audit table
    OBSOLETE = "obsolete"        # audit table exists, table not audited
    NOT_AUDITED = "not_audited"  # data table without audit flag
    ABSENT = "absent"            # audited, not in the data schema


@dataclass
class TableDiff:
    table: str
    observations: List[ColumnObservation] = field(default_factory=list)
    option_differences: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.observations and not self.option_differences


@dataclass
class DiffReport:
    tables: List[TableDiff] = field(default_factory=list)
    table_statuses: Dict[str, TableStatus] = field(default_factory=dict)

    # Tables whose catalog could not be read, with the error message
    errors: Dict[str, str] = field(default_factory=dict)

    def tables_with(self, status: TableStatus) -> List[str]:
        return [name for name, s in self.table_statuses.items() if s == status]

    @property
    def has_differences(self) -> bool:
        return (
            bool(self.table_statuses)
            or bool(self.errors)
            or any(not t.is_empty for t in self.tables)
        )


def build_observations(
    audit_columns: ColumnSet,
    config_data: ColumnSet,
    live_audit: ColumnSet,
    live_data: ColumnSet,
) -> List[ColumnObservation]:
    """
    Collect the type of every column per view.

    Rows are ordered fixed audit columns first, then the remaining audit
    table columns, then the remaining data table columns. Fixed audit
    columns that are NOT NULL in the audit table get ``not null`` appended
    to their audit view, matching how configured types are written.
    """
    observations: Dict[str, ColumnObservation] = {}

    def observe(name: str, view: ColumnView, sql_type: str) -> None:
        if name not in observations:
            observations[name] = ColumnObservation(name=name)
        observations[name].by_view[view] = sql_type

    for column in audit_columns:
        observe(column.name, ColumnView.CONFIG, column.sql_type)

    for column in live_audit:
        sql_type = column.sql_type
        if audit_columns.contains(column.name) and column.is_nullable_raw == "NO":
            sql_type = f"{sql_type} not null"
        observe(column.name, ColumnView.AUDIT, sql_type)

    for column in live_data:
        observe(column.name, ColumnView.DATA, column.sql_type)

    for column in config_data:
        if not audit_columns.contains(column.name):
            observe(column.name, ColumnView.CONFIG, column.sql_type)

    return list(observations.values())


def remove_matching(observations: List[ColumnObservation]) -> List[ColumnObservation]:
    """Drop the rows whose audit view already agrees with the configuration."""
    kept = []
    for observation in observations:
        data = observation.normalized(ColumnView.DATA)
        audit = observation.normalized(ColumnView.AUDIT)
        config = observation.normalized(ColumnView.CONFIG)
        if (data != audit and audit != config) or (audit != config and config):
            kept.append(observation)
    return kept


class DiffReporter:
    """Compares the data and audit schemas of a configuration."""

    def __init__(self, pool: ConnectionPool, config: AuditConfig):
        self.config = config
        self.introspector = SchemaIntrospector(pool)
        self.audit_columns = ColumnSet.from_audit_columns(config.audit_columns)

    async def diff_report(self, full: bool = False) -> DiffReport:
        """Build the report; ``full`` keeps rows that match."""
        data_schema = self.config.database.data_schema
        audit_schema = self.config.database.audit_schema

        data_tables = await self.introspector.list_tables(data_schema)
        audit_tables = set(await self.introspector.list_tables(audit_schema))

        report = DiffReport()
        for name in data_tables:
            audited = self.config.is_audited(name)
            if not audited:
                status = TableStatus.OBSOLETE if name in audit_tables else TableStatus.NOT_AUDITED
                report.table_statuses[name] = status
                continue
            if name not in audit_tables:
                report.table_statuses[name] = TableStatus.MISSING
                continue

            try:
                table_diff = await self._diff_table(data_schema, audit_schema, name, full)
            except CatalogReadError as e:
                logger.error(f"Cannot compare table {name}: {e}")
                report.errors[name] = str(e)
                continue
            report.tables.append(table_diff)

        for name in self.config.audited_tables():
            if name not in data_tables:
                report.table_statuses[name] = TableStatus.ABSENT

        # Audit tables left behind by dropped data tables
        for name in sorted(audit_tables):
            if name not in report.table_statuses and not self.config.is_audited(name):
                report.table_statuses[name] = TableStatus.OBSOLETE

        logger.debug(
            f"Compared {len(report.tables)} tables, {len(report.table_statuses)} "
            f"tables need attention"
        )
        return report

    async def _diff_table(
        self, data_schema: str, audit_schema: str, name: str, full: bool
    ) -> TableDiff:
        data_meta = await self.introspector.get_table_metadata(data_schema, name)
        audit_meta = await self.introspector.get_table_metadata(audit_schema, name)
        data_columns = data_meta.columns if data_meta else ColumnSet()
        audit_columns = audit_meta.columns if audit_meta else ColumnSet()

        observations = build_observations(
            self.audit_columns,
            ColumnSet.from_type_map(self.config.table_columns.get(name)),
            audit_columns,
            data_columns,
        )
        if not full:
            observations = remove_matching(observations)

        # Compared against the configured options, not the data table.
        options = self.config.audit_table_options
        expected = TableMetadata(
            schema=audit_schema,
            name=name,
            engine=options.engine,
            character_set=options.character_set,
            collation=options.collation,
        )
        differences = []
        if audit_meta is not None:
            differences = [
                option for option in compare_options(expected, audit_meta)
                if expected.get_property(option) is not None
            ]

        return TableDiff(table=name, observations=observations, option_differences=differences)


def _highlight(observation: ColumnObservation) -> Dict[str, str]:
    name = escape(observation.name)
    types = {view: escape(observation.type_in(view) or "") for view in ColumnView}

    if observation.is_consistent:
        return {"name": name, **{view.value: t for view, t in types.items()}}

    reference = observation.normalized(ColumnView.CONFIG) or observation.normalized(ColumnView.DATA)
    cells = {"name": f"[red]{name}[/red]"}
    for view, text in types.items():
        if text and observation.normalized(view) != reference:
            text = f"[yellow]{text}[/yellow]"
        cells[view.value] = text
    return cells


def render_diff_report(report: DiffReport, console: Console) -> None:
    """Print one table per compared table, then the table status lists."""
    first = True
    for table_diff in report.tables:
        if table_diff.is_empty:
            continue
        if not first:
            console.print()
        first = False

        if table_diff.observations:
            table = Table(title=escape(table_diff.table), title_justify="left")
            table.add_column("column")
            table.add_column("data table")
            table.add_column("audit table")
            table.add_column("config")
            for observation in table_diff.observations:
                cells = _highlight(observation)
                table.add_row(
                    cells["name"],
                    cells[ColumnView.DATA.value],
                    cells[ColumnView.AUDIT.value],
                    cells[ColumnView.CONFIG.value],
                )
            console.print(table)
        else:
            console.print(escape(table_diff.table))

        if table_diff.option_differences:
            console.print(
                f"  [yellow]Table options differ:[/yellow] {', '.join(table_diff.option_differences)}"
            )

    labels = {
        TableStatus.MISSING: ("red", "Missing audit tables"),
        TableStatus.OBSOLETE: ("yellow", "Obsolete audit tables"),
        TableStatus.NOT_AUDITED: ("cyan", "New tables, not audited"),
        TableStatus.ABSENT: ("red", "Audited tables not in the data schema"),
    }
    for status, (color, label) in labels.items():
        names = report.tables_with(status)
        if names:
            console.print(f"\n[bold {color}]{label}[/bold {color}]")
            for name in names:
                console.print(f"  [{color}]{escape(name)}[/{color}]")

    if report.errors:
        console.print("\n[bold red]Tables that could not be compared[/bold red]")
        for name, error in report.errors.items():
            console.print(f"  [red]{escape(name)}:[/red] {escape(error)}")
