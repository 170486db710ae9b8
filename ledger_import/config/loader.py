from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

"""Config loader.

Responsibilities:
- Load YAML config (default ``config/import.yml``)
- Validate against the bundled JSON schema (config_schema.json)
- Apply defaults (staging table names, batch size 100, ACT/MAIN/USD)
- Resolve the PostgreSQL DSN (env vars first, YAML fallback)
"""

SCHEMA_PATH = Path(__file__).with_name("config_schema.json")
DEFAULT_CONFIG_PATH = Path("config/import.yml")


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class DatabaseConfig:
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None

    def resolve_dsn(self) -> str:
        """Connection string, environment first.

        Order: DATABASE_URL / PGDSN, then PG* variables, then YAML values.
        """
        dsn_env = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or self.dsn
        if dsn_env:
            return dsn_env
        host = os.getenv("PGHOST", self.host or "localhost")
        port = os.getenv("PGPORT", str(self.port) if self.port else "5432")
        user = os.getenv("PGUSER", self.user or "postgres")
        password = os.getenv("PGPASSWORD", self.password or "")
        database = os.getenv("PGDATABASE", self.database or "postgres")
        dsn = f"host={host} port={port} user={user} dbname={database}"
        if password:
            dsn += f" password={password}"
        return dsn


@dataclass(frozen=True)
class StagingConfig:
    table: str = "financial_data_staging"
    mapping_table: str = "mapping_entries"
    ou_table: str = "organizational_units"
    batch_size: int = 100


@dataclass(frozen=True)
class DefaultsConfig:
    scenario: str = "ACT"
    version: str = "MAIN"
    currency: str = "USD"


@dataclass(frozen=True)
class ProcessorSettings:
    enabled: bool = True
    mapping_config_id: int | None = None
    target_account: str | None = None
    target_department: str | None = None


@dataclass(frozen=True)
class ImportConfig:
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    staging: StagingConfig = field(default_factory=StagingConfig)
    defaults: DefaultsConfig = field(default_factory=DefaultsConfig)
    processors: dict[str, ProcessorSettings] = field(default_factory=dict)
    error_log_dir: str = "./logs"

    def settings_for(self, processor_id: str) -> ProcessorSettings:
        return self.processors.get(processor_id, ProcessorSettings())


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the bundled JSON schema.

    Raises:
        ConfigError: schema file missing/unreadable or the data violates it
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise ConfigError(f"config validation failed at {where}: {e.message}") from e


def config_from_dict(data: dict[str, Any]) -> ImportConfig:
    """Validate raw config data and build ImportConfig with defaults applied."""
    _validate_config_schema(data)

    db_raw = data.get("database") or {}
    staging_raw = data.get("staging") or {}
    defaults_raw = data.get("defaults") or {}
    processors_raw = data.get("processors") or {}

    return ImportConfig(
        database=DatabaseConfig(**db_raw),
        staging=StagingConfig(**staging_raw),
        defaults=DefaultsConfig(**defaults_raw),
        processors={pid: ProcessorSettings(**(raw or {})) for pid, raw in processors_raw.items()},
        error_log_dir=data.get("error_log_dir", "./logs"),
    )


def load_config(path: Path) -> ImportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config root must be a mapping, got {type(data).__name__}")
    return config_from_dict(data)
