"""CRM engine configuration loading and validation.

Reads crm.toml from a config directory, parses all sections, and returns
a validated CrmConfig dataclass.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from crm.models import DEFAULT_PALETTE, DEFAULT_TAG_COLOR

CONFIG_FILENAME = "crm.toml"

# ${VAR_NAME} references inside config string values
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_DB_SCHEMA_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_HEX_COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")


class ConfigError(Exception):
    """Raised when crm configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from [crm.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class DatabaseConfig:
    """Database configuration from [crm.db] section.

    Connection credentials are never read from the TOML file; they come from
    ``DATABASE_URL`` / ``POSTGRES_*`` via :meth:`crm.db.Database.from_env`.
    """

    name: str = "crm"
    schema: str | None = None
    min_pool_size: int = 2
    max_pool_size: int = 10


@dataclass
class TagsConfig:
    default_color: str = DEFAULT_TAG_COLOR


@dataclass
class ImportConfig:
    """CSV import configuration from [crm.import] section."""

    max_reported_errors: int = 10
    tag_delimiter: str = ","


@dataclass
class DashboardConfig:
    """Dashboard aggregation sizes from [crm.dashboard] section.

    ``company_buckets`` and ``timeline_days`` are the fixed series lengths the
    aggregator pads to; ``palette`` is cycled by tag position for tags
    without a stored color.
    """

    company_buckets: int = 5
    timeline_days: int = 7
    recent_activity_limit: int = 10
    palette: tuple[str, ...] = DEFAULT_PALETTE


@dataclass
class CrmConfig:
    """Parsed and validated crm configuration."""

    name: str = "crm"
    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    tags: TagsConfig = field(default_factory=TagsConfig)
    csv_import: ImportConfig = field(default_factory=ImportConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)


def resolve_env_vars(value: Any) -> Any:
    """Substitute ``${VAR}`` references in every string nested in *value*.

    Raises :class:`ConfigError` naming each variable that is not set.
    """
    if isinstance(value, dict):
        return {key: resolve_env_vars(item) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]
    if not isinstance(value, str):
        return value

    missing = [name for name in _ENV_VAR_PATTERN.findall(value) if name not in os.environ]
    if missing:
        raise ConfigError(
            f"Unresolved environment variable(s) {', '.join(missing)} in config value {value!r}"
        )
    return _ENV_VAR_PATTERN.sub(lambda m: os.environ[m.group(1)], value)


def _positive_int(section: dict, key: str, default: int, path: str) -> int:
    raw = section.get(key, default)
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid {path}.{key}: {raw!r}. Must be an integer.") from exc
    if value <= 0:
        raise ConfigError(f"Invalid {path}.{key}: {value!r}. Must be a positive integer.")
    return value


def _color(value: Any, path: str) -> str:
    if not isinstance(value, str) or _HEX_COLOR_PATTERN.fullmatch(value) is None:
        raise ConfigError(f"Invalid {path}: {value!r}. Expected a '#RRGGBB' hex color.")
    return value


def _parse_db(crm_section: dict) -> DatabaseConfig:
    db_section = crm_section.get("db", {})
    db_name = str(db_section.get("name", "crm")).strip()
    if not db_name:
        raise ConfigError("crm.db.name must be a non-empty string")

    schema_raw = db_section.get("schema")
    schema: str | None = None
    if schema_raw is not None:
        if not isinstance(schema_raw, str) or not schema_raw.strip():
            raise ConfigError("crm.db.schema must be a non-empty string when set")
        schema = schema_raw.strip()
        if _DB_SCHEMA_PATTERN.fullmatch(schema) is None:
            raise ConfigError(
                f"Invalid crm.db.schema: {schema_raw!r}. "
                "Expected a valid SQL identifier-style value."
            )

    min_pool_size = _positive_int(db_section, "min_pool_size", 2, "crm.db")
    max_pool_size = _positive_int(db_section, "max_pool_size", 10, "crm.db")
    if min_pool_size > max_pool_size:
        raise ConfigError(
            f"crm.db.min_pool_size ({min_pool_size}) exceeds max_pool_size ({max_pool_size})"
        )
    return DatabaseConfig(
        name=db_name,
        schema=schema,
        min_pool_size=min_pool_size,
        max_pool_size=max_pool_size,
    )


def _parse_logging(crm_section: dict) -> LoggingConfig:
    logging_section = crm_section.get("logging", {})
    log_level = str(logging_section.get("level", "INFO")).upper()
    log_format = str(logging_section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(f"Invalid crm.logging.format: {log_format!r}. Expected 'text' or 'json'.")
    return LoggingConfig(
        level=log_level,
        format=log_format,
        log_root=logging_section.get("log_root"),
    )


def _parse_import(crm_section: dict) -> ImportConfig:
    import_section = crm_section.get("import", {})
    delimiter = import_section.get("tag_delimiter", ",")
    if not isinstance(delimiter, str) or len(delimiter) != 1:
        raise ConfigError(
            f"Invalid crm.import.tag_delimiter: {delimiter!r}. Expected a single character."
        )
    return ImportConfig(
        max_reported_errors=_positive_int(import_section, "max_reported_errors", 10, "crm.import"),
        tag_delimiter=delimiter,
    )


def _parse_dashboard(crm_section: dict) -> DashboardConfig:
    dashboard_section = crm_section.get("dashboard", {})
    raw_palette = dashboard_section.get("palette")
    palette = DEFAULT_PALETTE
    if raw_palette is not None:
        if not isinstance(raw_palette, list) or not raw_palette:
            raise ConfigError("crm.dashboard.palette must be a non-empty list of colors")
        palette = tuple(
            _color(c, f"crm.dashboard.palette[{i}]") for i, c in enumerate(raw_palette)
        )
    return DashboardConfig(
        company_buckets=_positive_int(dashboard_section, "company_buckets", 5, "crm.dashboard"),
        timeline_days=_positive_int(dashboard_section, "timeline_days", 7, "crm.dashboard"),
        recent_activity_limit=_positive_int(
            dashboard_section, "recent_activity_limit", 10, "crm.dashboard"
        ),
        palette=palette,
    )


def load_config(config_dir: Path) -> CrmConfig:
    """Load and validate a crm.toml from *config_dir*.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or has invalid values.
    """
    toml_path = config_dir / CONFIG_FILENAME

    if not toml_path.exists():
        raise ConfigError(f"Config file not found: {toml_path}")

    try:
        data = tomllib.loads(toml_path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    data = resolve_env_vars(data)

    crm_section = data.get("crm", {})
    if not isinstance(crm_section, dict):
        raise ConfigError("[crm] must be a TOML table")

    name = str(crm_section.get("name", "crm")).strip()
    if not name:
        raise ConfigError("crm.name must be a non-empty string")

    tags_section = crm_section.get("tags", {})
    default_color = _color(
        tags_section.get("default_color", DEFAULT_TAG_COLOR), "crm.tags.default_color"
    )

    return CrmConfig(
        name=name,
        db=_parse_db(crm_section),
        logging=_parse_logging(crm_section),
        tags=TagsConfig(default_color=default_color),
        csv_import=_parse_import(crm_section),
        dashboard=_parse_dashboard(crm_section),
    )
