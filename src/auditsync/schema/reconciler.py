"""
Schema reconciliation core logic for auditsync.

For every audited data table the reconciler compares three column views:

* the live columns of the data table,
* the live columns of the audit table,
* the data columns recorded in the configuration by the previous run,

and decides whether to create the audit table, add audit columns, or
regenerate the audit triggers. Audit columns are only ever added. Obsolete
and altered columns are reported, never resolved automatically.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..config import AuditConfig
from ..database.connection import ConnectionPool
from ..database.introspection import SchemaIntrospector
from ..exceptions import CatalogReadError, DdlExecutionError, LockTimeoutError
from .columns import ColumnSet, combine, different_column_types, not_in_other_set
from .operations import AuditSchemaOperations, OperationMode, SchemaChange
from .triggers import TriggerManager, build_trigger_definitions, resolve_alias


logger = logging.getLogger(__name__)


class ReconciliationStatus(str, Enum):
    """Outcome of reconciling one table."""

    SYNCHRONIZED = "synchronized"    # audit table complete, triggers current
    CREATED = "created"              # audit table created in this pass
    COLUMNS_ADDED = "columns_added"  # audit columns added, triggers next pass
    PENDING = "pending"              # obsolete or altered columns need review
    ABSENT = "absent"                # audited table missing from the data schema
    LOCK_TIMEOUT = "lock_timeout"
    FAILED = "failed"


@dataclass
class ReconciliationResult:
    """Result of a reconciliation pass for one table."""

    table: str
    status: ReconciliationStatus = ReconciliationStatus.PENDING
    new_columns: ColumnSet = field(default_factory=ColumnSet)
    obsolete_columns: ColumnSet = field(default_factory=ColumnSet)
    altered_columns: ColumnSet = field(default_factory=ColumnSet)
    changes: List[SchemaChange] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    triggers_regenerated: bool = False

    # Data columns to record in the updated configuration, None to keep the old ones
    config_columns: Optional[ColumnSet] = None
    execution_time_ms: float = 0.0

    @property
    def failed(self) -> bool:
        return self.status in (ReconciliationStatus.FAILED, ReconciliationStatus.LOCK_TIMEOUT)


@dataclass
class AuditRunResult:
    """Result of reconciling every table of a configuration."""

    results: Dict[str, ReconciliationResult]
    updated_config: AuditConfig
    new_tables: List[str] = field(default_factory=list)
    absent_tables: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not any(result.failed for result in self.results.values())

    def get_summary(self) -> Dict[str, Any]:
        """Count tables per status."""
        summary = {status.value: 0 for status in ReconciliationStatus}
        for result in self.results.values():
            summary[result.status.value] += 1
        summary["total_tables"] = len(self.results)
        summary["new_tables"] = len(self.new_tables)
        summary["failed_tables"] = [
            name for name, result in self.results.items() if result.failed
        ]
        return summary


class SchemaReconciler:
    """
    Core schema reconciliation engine for auditsync.

    One instance serves one run against one configuration. Tables are
    processed one after the other; nothing is shared between passes except
    the catalog listing loaded by :meth:`load_catalog`.
    """

    def __init__(
        self,
        pool: ConnectionPool,
        config: AuditConfig,
        operation_mode: OperationMode = OperationMode.SAFE,
        force_triggers: bool = False,
    ):
        self.pool = pool
        self.config = config
        self.operation_mode = operation_mode
        self.force_triggers = force_triggers

        self.introspector = SchemaIntrospector(pool)
        self.operations = AuditSchemaOperations(
            pool, operation_mode, config.database.lock_wait_timeout
        )
        self.trigger_manager = TriggerManager(self.operations, self.introspector)

        self.audit_columns = ColumnSet.from_audit_columns(config.audit_columns)

        self._data_tables: Optional[List[str]] = None
        self._audit_tables: Optional[List[str]] = None

    @property
    def data_schema(self) -> str:
        return self.config.database.data_schema

    @property
    def audit_schema(self) -> str:
        return self.config.database.audit_schema

    async def load_catalog(self) -> None:
        """Read the table lists of the data and audit schemas."""
        self._data_tables = await self.introspector.list_tables(self.data_schema)
        self._audit_tables = await self.introspector.list_tables(self.audit_schema)
        logger.debug(
            f"Found {len(self._data_tables)} data tables and "
            f"{len(self._audit_tables)} audit tables"
        )

    async def _ensure_catalog(self) -> None:
        if self._data_tables is None or self._audit_tables is None:
            await self.load_catalog()

    async def reconcile_table(self, name: str) -> ReconciliationResult:
        """
        Reconcile one audited table.

        Raises:
            CatalogReadError: schema metadata could not be read
            DdlExecutionError: the server rejected a statement
            LockTimeoutError: the table could not be locked for trigger regeneration
        """
        start_time = asyncio.get_running_loop().time()
        await self._ensure_catalog()

        result = ReconciliationResult(table=name)
        try:
            await self._reconcile(name, result)
        finally:
            result.execution_time_ms = (asyncio.get_running_loop().time() - start_time) * 1000

        logger.debug(
            f"Reconciliation of {name}: {result.status.value} ({result.execution_time_ms:.1f}ms)"
        )
        return result

    async def _reconcile(self, name: str, result: ReconciliationResult) -> None:
        if name not in self._data_tables:
            logger.warning(
                f"Table {self.data_schema}.{name} is audited but does not exist in the data schema"
            )
            result.status = ReconciliationStatus.ABSENT
            return

        live_data = await self.introspector.get_columns(self.data_schema, name)

        if name not in self._audit_tables:
            result.changes.append(await self.create_audit_table(name, live_data))
            result.config_columns = live_data
            result.status = ReconciliationStatus.CREATED
            return

        live_audit = await self.introspector.get_columns(self.audit_schema, name)
        config_data = ColumnSet.from_type_map(self.config.table_columns.get(name))
        if not config_data:
            # First run for this table: nothing recorded to compare against.
            config_data = live_data

        target = combine(self.audit_columns, live_data)
        result.new_columns = not_in_other_set(target, live_audit)
        result.obsolete_columns = not_in_other_set(
            combine(self.audit_columns, config_data), target
        )
        result.altered_columns = different_column_types(live_data, config_data)
        self._log_column_info(name, result, config_data)

        # New and obsolete columns together look like a rename; keep the
        # recorded columns until an operator has looked at it.
        if result.new_columns and result.obsolete_columns:
            result.config_columns = config_data
        else:
            result.config_columns = live_data

        if result.new_columns:
            result.changes.append(
                await self.operations.add_columns(
                    self.audit_schema, name, result.new_columns, self.audit_columns.names()
                )
            )
            result.status = ReconciliationStatus.COLUMNS_ADDED
        elif result.obsolete_columns or result.altered_columns:
            logger.info(f"Triggers of {name} are not regenerated until its columns are reviewed")
            result.status = ReconciliationStatus.PENDING
        else:
            result.changes.extend(
                await self._create_triggers(name, live_data, result, self.force_triggers)
            )
            result.status = ReconciliationStatus.SYNCHRONIZED

    def _log_column_info(
        self, name: str, result: ReconciliationResult, config_data: ColumnSet
    ) -> None:
        if result.new_columns and result.obsolete_columns:
            logger.info(f"Found both new and obsolete columns for table {name}")

        for column in result.obsolete_columns:
            logger.info(f"Obsolete column {name}.{column.name}")

        for column in result.new_columns:
            logger.info(f"New column {name}.{column.name}")

        for column in result.altered_columns:
            previous = config_data.get(column.name)
            logger.info(
                f"Type of {name}.{column.name} has been altered from "
                f"{previous.sql_type if previous else '?'} to {column.sql_type}"
            )

    async def create_audit_table(
        self, name: str, data_columns: Optional[ColumnSet] = None
    ) -> SchemaChange:
        """Create the audit table of a data table."""
        if data_columns is None:
            data_columns = await self.introspector.get_columns(self.data_schema, name)

        logger.info(f"Creating audit table {self.audit_schema}.{name}")
        options = self.config.audit_table_options
        change = await self.operations.create_table(
            self.audit_schema,
            name,
            self.audit_columns,
            data_columns,
            engine=options.engine,
            character_set=options.character_set,
            collation=options.collation,
        )

        if self._audit_tables is not None and change.executed:
            self._audit_tables.append(name)
        return change

    async def create_missing_audit_tables(self) -> List[SchemaChange]:
        """Create the audit table of every audited table that has none."""
        await self._ensure_catalog()

        changes = []
        for name in list(self._data_tables):
            if self.config.is_audited(name) and name not in self._audit_tables:
                changes.append(await self.create_audit_table(name))
        return changes

    async def create_triggers(self, name: str, force: bool = True) -> List[SchemaChange]:
        """(Re)create the audit triggers of one table from its live columns."""
        data_columns = await self.introspector.get_columns(self.data_schema, name)
        result = ReconciliationResult(table=name)
        return await self._create_triggers(name, data_columns, result, force)

    async def _create_triggers(
        self,
        name: str,
        data_columns: ColumnSet,
        result: ReconciliationResult,
        force: bool,
    ) -> List[SchemaChange]:
        settings = self.config.get_table(name)
        definitions = build_trigger_definitions(
            self.data_schema,
            self.audit_schema,
            name,
            resolve_alias(name, settings.alias if settings else None),
            self.audit_columns,
            data_columns,
            self.config.skip_variable_for(name),
            self.config.additional_sql,
        )

        if not force and await self.trigger_manager.is_up_to_date(
            self.data_schema, name, definitions
        ):
            logger.debug(f"Triggers of {self.data_schema}.{name} are up to date")
            return []

        logger.info(f"Creating triggers for table {self.data_schema}.{name}")
        changes = await self.trigger_manager.regenerate(self.data_schema, name, definitions)
        result.triggers_regenerated = True
        return changes

    async def reconcile_all(self, prune: bool = False) -> AuditRunResult:
        """
        Reconcile every audited table of the configuration.

        A failure reading the table lists aborts the run. A failure on one
        table is recorded in its result and the run continues with the next.
        """
        await self.load_catalog()

        updated = self.config
        new_tables = []
        for name in self._data_tables:
            settings = self.config.get_table(name)
            if settings is None:
                logger.info(f"Found new table {name}, not listed in config file")
                updated = updated.with_new_table(name)
                new_tables.append(name)
            elif not settings.audit:
                logger.debug(f"Audit flag is not set in table {name}")

        absent_tables = [
            name for name in self.config.audited_tables() if name not in self._data_tables
        ]

        results: Dict[str, ReconciliationResult] = {}
        for name in list(self._data_tables):
            if not self.config.is_audited(name):
                continue

            try:
                result = await self.reconcile_table(name)
            except LockTimeoutError as e:
                logger.error(f"Skipping triggers of {name}: {e}")
                result = ReconciliationResult(
                    table=name, status=ReconciliationStatus.LOCK_TIMEOUT, errors=[str(e)]
                )
            except (CatalogReadError, DdlExecutionError) as e:
                logger.error(f"Reconciliation failed for {name}: {e}")
                result = ReconciliationResult(
                    table=name, status=ReconciliationStatus.FAILED, errors=[str(e)]
                )

            results[name] = result
            if result.config_columns is not None:
                updated = updated.with_table_columns(name, result.config_columns.to_type_map())

        for name in absent_tables:
            logger.warning(f"Audited table {name} not found in schema {self.data_schema}")
            results[name] = ReconciliationResult(table=name, status=ReconciliationStatus.ABSENT)

        execution = self.operations.get_execution_summary()
        logger.info(
            f"Run finished: {execution['successful']} of {execution['total_operations']} "
            f"statements executed, {execution['failed']} failed"
        )

        if prune:
            updated = updated.without_table_columns()

        return AuditRunResult(
            results=results,
            updated_config=updated,
            new_tables=new_tables,
            absent_tables=absent_tables,
        )
