"""
Configuration system for auditsync using Pydantic.

The configuration names the data and audit schemas, the fixed audit columns,
which tables are audited, and the column snapshot recorded by the previous
run. It is loaded once per run and never mutated: the reconciler returns an
updated copy which the caller writes back with :meth:`AuditConfig.to_file`.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    ValidationError,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


_TRUE_VALUES = {"1", "true", "yes", "on", "y"}
_FALSE_VALUES = {"0", "false", "no", "off", "n", ""}

# Longest alias for which "trg_<alias>_<action>" fits the 64-character
# identifier limit of MySQL
MAX_ALIAS_LENGTH = 64 - len("trg_") - len("_insert")


def parse_bool(value: Any) -> bool:
    """Interpret the boolean-like values found in hand written config files."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
    raise ValueError(f"Not a boolean value: {value!r}")


class DatabaseSettings(BaseModel):
    """Database connection and schema configuration."""

    host_name: str = Field("localhost", description="Database host")
    port: int = Field(3306, description="Database port")
    user_name: str = Field(..., description="Database user")
    password: str = Field("", description="Database password")
    data_schema: str = Field(..., description="Schema with the data tables")
    audit_schema: str = Field(..., description="Schema with the audit tables")
    charset: str = Field("utf8mb4", description="Connection character set")
    connect_timeout: int = Field(10, description="Connection timeout in seconds")
    lock_wait_timeout: int = Field(
        30, description="Seconds to wait for a table lock before giving up"
    )

    @field_validator("data_schema", "audit_schema")
    @classmethod
    def validate_schema_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Schema name is required")
        return v


class AuditColumn(BaseModel):
    """A fixed bookkeeping column present in every audit table."""

    model_config = ConfigDict(populate_by_name=True)

    column_name: str = Field(
        ...,
        validation_alias=AliasChoices("column_name", "name"),
        description="Column name",
    )
    column_type: str = Field(
        ...,
        validation_alias=AliasChoices("column_type", "type"),
        description="Full column definition, e.g. 'timestamp not null'",
    )
    expression: Optional[str] = Field(
        None, description="SQL expression assigned by the audit triggers"
    )
    value_type: Optional[Literal["ACTION"]] = Field(
        None, description="Assign the trigger action (INSERT, UPDATE, DELETE)"
    )


class TableOptions(BaseModel):
    """Table options applied to every audit table created by auditsync."""

    engine: Optional[str] = Field("InnoDB", description="Storage engine")
    character_set: Optional[str] = Field("utf8mb4", description="Default charset")
    collation: Optional[str] = Field(
        "utf8mb4_general_ci", description="Default collation"
    )


class TableSettings(BaseModel):
    """Audit settings of a single data table."""

    audit: bool = Field(False, description="Whether the table is audited")
    alias: Optional[str] = Field(
        None, description="Stable alias used to name the audit triggers"
    )
    skip: Optional[str] = Field(
        None, description="Skip variable overriding the global one"
    )

    @field_validator("audit", mode="before")
    @classmethod
    def validate_audit(cls, v: Any) -> bool:
        return parse_bool(v)

    def to_config_value(self, as_object: bool = False) -> Union[bool, Dict[str, Any]]:
        """Serialize back to the compact form used in config files."""
        if not as_object and self.alias is None and self.skip is None:
            return self.audit
        return self.model_dump(exclude_none=True)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        "INFO", description="Log level"
    )
    format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    file: Optional[str] = Field(None, description="Log file path")
    max_size: int = Field(10485760, description="Max log file size in bytes")  # 10MB
    backup_count: int = Field(5, description="Number of backup log files")


class AuditConfig(BaseSettings):
    """Main auditsync configuration."""

    database: DatabaseSettings = Field(..., description="Database configuration")
    audit_columns: List[AuditColumn] = Field(
        default_factory=list, description="Fixed audit columns"
    )
    audit_table_options: TableOptions = Field(
        default_factory=TableOptions, description="Options for new audit tables"
    )
    tables: Dict[str, TableSettings] = Field(
        default_factory=dict, description="Data tables and their audit flags"
    )
    table_columns: Dict[str, Dict[str, str]] = Field(
        default_factory=dict,
        description="Columns of each audited table as seen by the last run",
    )
    skip_variable: Optional[str] = Field(
        None, description="Session variable that disables auditing when set"
    )
    additional_sql: List[str] = Field(
        default_factory=list, description="Extra statements included in triggers"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )

    model_config = SettingsConfigDict(
        env_prefix="AUDITSYNC_",
        case_sensitive=False,
        extra="ignore",
    )

    # The file content before environment expansion, written back on save.
    _raw: Dict[str, Any] = PrivateAttr(default_factory=dict)

    @field_validator("tables", mode="before")
    @classmethod
    def normalize_tables(cls, v: Any) -> Dict[str, Any]:
        if v is None:
            return {}
        if not isinstance(v, dict):
            raise ValueError("'tables' must be a mapping of table name to settings")
        normalized = {}
        for name, setting in v.items():
            if isinstance(setting, (dict, TableSettings)):
                normalized[name] = setting
            else:
                normalized[name] = {"audit": setting}
        return normalized

    @field_validator("skip_variable")
    @classmethod
    def validate_skip_variable(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.startswith("@"):
            return f"@{v}"
        return v

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "AuditConfig":
        """Load configuration from a JSON or YAML file."""
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                if path.suffix.lower() in (".yaml", ".yml"):
                    raw = yaml.safe_load(f)
                else:
                    raw = json.load(f)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {path}")
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in configuration file: {e}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}")

        return cls.from_dict(raw)

    @classmethod
    def from_dict(cls, raw: Any) -> "AuditConfig":
        """Build a configuration from already parsed file content."""
        if not isinstance(raw, dict):
            raise ConfigurationError("Configuration must be a mapping")

        try:
            config = cls(**cls._expand_env_vars(raw))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

        config._raw = raw
        config.validate_config()
        return config

    @classmethod
    def _expand_env_vars(cls, data: Any) -> Any:
        """Recursively expand environment variables in configuration data."""
        if isinstance(data, dict):
            return {k: cls._expand_env_vars(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [cls._expand_env_vars(item) for item in data]
        elif isinstance(data, str):
            return os.path.expandvars(data)
        else:
            return data

    def validate_config(self) -> None:
        """Validate the entire configuration for consistency."""
        if self.database.data_schema == self.database.audit_schema:
            raise ConfigurationError(
                f"Data schema and audit schema must differ "
                f"(both are '{self.database.data_schema}')"
            )

        seen = set()
        for column in self.audit_columns:
            if column.column_name in seen:
                raise ConfigurationError(
                    f"Audit column '{column.column_name}' is defined more than once"
                )
            seen.add(column.column_name)

        for name, settings in self.tables.items():
            if settings.alias is not None and not settings.alias.strip():
                raise ConfigurationError(f"Table '{name}' has an empty alias")
            if settings.alias is not None and len(settings.alias) > MAX_ALIAS_LENGTH:
                raise ConfigurationError(
                    f"Alias of table '{name}' is longer than {MAX_ALIAS_LENGTH} characters"
                )

    def get_table(self, name: str) -> Optional[TableSettings]:
        """Get the settings of a table, None when it is not listed."""
        return self.tables.get(name)

    def is_audited(self, name: str) -> bool:
        settings = self.tables.get(name)
        return settings is not None and settings.audit

    def audited_tables(self) -> List[str]:
        """Names of all tables flagged for auditing, in configuration order."""
        return [name for name, settings in self.tables.items() if settings.audit]

    def skip_variable_for(self, name: str) -> Optional[str]:
        """The skip variable of a table, falling back to the global one."""
        settings = self.tables.get(name)
        if settings is not None and settings.skip:
            skip = settings.skip
            return skip if skip.startswith("@") else f"@{skip}"
        return self.skip_variable

    def with_table_columns(self, name: str, columns: Dict[str, str]) -> "AuditConfig":
        """Return a copy recording ``columns`` as the known columns of a table."""
        updated = self.model_copy(deep=True)
        updated.table_columns[name] = dict(columns)
        return updated

    def without_table_columns(self) -> "AuditConfig":
        """Return a copy without any recorded table columns."""
        updated = self.model_copy(deep=True)
        updated.table_columns = {}
        return updated

    def with_new_table(self, name: str, audit: bool = False) -> "AuditConfig":
        """Return a copy listing a table that was not in the configuration."""
        updated = self.model_copy(deep=True)
        updated.tables[name] = TableSettings(audit=audit)
        return updated

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for writing back, keeping unexpanded values from the file."""
        data = dict(self._raw) if self._raw else self.model_dump(
            exclude={"tables", "table_columns"}, exclude_none=True
        )
        raw_tables = data.get("tables") or {}

        data["tables"] = {
            name: settings.to_config_value(isinstance(raw_tables.get(name), dict))
            for name, settings in self.tables.items()
        }
        data["table_columns"] = {
            name: dict(columns) for name, columns in self.table_columns.items()
        }
        return data

    def to_file(self, path: Union[str, Path]) -> None:
        """Write the configuration in two phases: a temporary file, then a rename."""
        path = Path(path)
        tmp_path = path.with_name(path.name + ".tmp")
        data = self.to_dict()

        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                if path.suffix.lower() in (".yaml", ".yml"):
                    yaml.safe_dump(data, f, default_flow_style=False, indent=2, sort_keys=False)
                else:
                    json.dump(data, f, indent=4)
                    f.write("\n")
            os.replace(tmp_path, path)
        except Exception:
            tmp_path.unlink(missing_ok=True)
            raise
