"""
Migration configuration

YAML file with mysql, postgresql, conversion and run sections. Connection
settings can be overridden from the environment (.env is loaded first).
"""
import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List

import yaml
from dotenv import load_dotenv

from mysql2pg.errors import ConfigError


@dataclass
class MySQLConfig:
    host: str = ''
    port: int = 3306
    username: str = ''
    password: str = ''
    database: str = ''
    test_only: bool = False
    max_open_conns: int = 0
    max_idle_conns: int = 0
    conn_max_lifetime: int = 0


@dataclass
class PostgresConfig:
    host: str = ''
    port: int = 5432
    username: str = ''
    password: str = ''
    database: str = ''
    test_only: bool = False
    max_conns: int = 0


@dataclass
class ConversionOptions:
    tableddl: bool = False
    data: bool = False
    indexes: bool = False
    functions: bool = False
    users: bool = False
    grant: bool = False
    table_privileges: bool = False
    view: bool = False
    skip_existing_tables: bool = False
    use_table_list: bool = False
    table_list: List[str] = field(default_factory=list)
    exclude_use_table_list: bool = False
    exclude_table_list: List[str] = field(default_factory=list)
    lowercase_columns: bool = False
    validate_data: bool = False
    truncate_before_sync: bool = False
    use_copy: bool = True


@dataclass
class ConversionLimits:
    concurrency: int = 0
    bandwidth_mbps: int = 0
    max_ddl_per_batch: int = 0
    max_functions_per_batch: int = 0
    max_indexes_per_batch: int = 0
    max_users_per_batch: int = 0
    max_rows_per_batch: int = 0
    batch_insert_size: int = 0


@dataclass
class RunConfig:
    show_progress: bool = True
    error_log_path: str = ''
    enable_file_logging: bool = False
    log_file_path: str = ''
    show_console_logs: bool = True
    show_log_in_console: bool = False


@dataclass
class Config:
    mysql: MySQLConfig = field(default_factory=MySQLConfig)
    postgresql: PostgresConfig = field(default_factory=PostgresConfig)
    options: ConversionOptions = field(default_factory=ConversionOptions)
    limits: ConversionLimits = field(default_factory=ConversionLimits)
    run: RunConfig = field(default_factory=RunConfig)


# Applied to unset (zero) values after load
DEFAULTS = {
    'mysql': {'max_open_conns': 50, 'max_idle_conns': 20, 'conn_max_lifetime': 3600},
    'postgresql': {'max_conns': 20},
    'limits': {
        'concurrency': 1,
        'max_ddl_per_batch': 10,
        'max_functions_per_batch': 5,
        'max_indexes_per_batch': 20,
        'max_users_per_batch': 10,
        'max_rows_per_batch': 1000,
        'batch_insert_size': 10000,
    },
    'run': {'error_log_path': './errors.log', 'log_file_path': './conversion.log'},
}

ENV_OVERRIDES = {
    'mysql': {'MYSQL_HOST': 'host', 'MYSQL_PORT': 'port', 'MYSQL_USER': 'username',
              'MYSQL_PASS': 'password', 'MYSQL_DB': 'database'},
    'postgresql': {'PG_HOST': 'host', 'PG_PORT': 'port', 'PG_USER': 'username',
                   'PG_PASS': 'password', 'PG_DB': 'database'},
}


def _coerce(value: Any, current: Any, key: str) -> Any:
    """Convert a raw YAML/env value to the type of the dataclass default"""
    if value is None:
        return current
    if isinstance(current, bool):
        if isinstance(value, str):
            return value.strip().lower() in ('1', 'true', 'yes', 'on')
        return bool(value)
    if isinstance(current, int):
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"{key} must be an integer, got {value!r}") from e
    if isinstance(current, list):
        if isinstance(value, str):
            return [item.strip() for item in value.split(',') if item.strip()]
        return [str(item) for item in value]
    return str(value)


def _fill(section: Any, values: Dict[str, Any], prefix: str) -> None:
    if not isinstance(values, dict):
        raise ConfigError(f"Section {prefix} must be a mapping")
    for f in fields(section):
        if f.name in values:
            setattr(section, f.name, _coerce(values[f.name], getattr(section, f.name), f"{prefix}.{f.name}"))


def from_dict(raw: Dict[str, Any]) -> Config:
    """Build a Config from the parsed YAML document"""
    config = Config()
    raw = raw or {}
    _fill(config.mysql, raw.get('mysql') or {}, 'mysql')
    _fill(config.postgresql, raw.get('postgresql') or {}, 'postgresql')
    conversion = raw.get('conversion') or {}
    _fill(config.options, conversion.get('options') or {}, 'conversion.options')
    _fill(config.limits, conversion.get('limits') or {}, 'conversion.limits')
    _fill(config.run, raw.get('run') or {}, 'run')
    return config


def apply_env_overrides(config: Config) -> Config:
    """Environment variables win over file values"""
    for section_name, mapping in ENV_OVERRIDES.items():
        section = getattr(config, section_name)
        for env_key, attr in mapping.items():
            value = os.getenv(env_key)
            if value:
                setattr(section, attr, _coerce(value, getattr(section, attr), env_key))
    return config


def apply_defaults(config: Config) -> Config:
    """Fill zero/empty values with the documented defaults"""
    for section_name, defaults in DEFAULTS.items():
        section = getattr(config, section_name)
        for key, value in defaults.items():
            current = getattr(section, key)
            if not current or (isinstance(current, int) and current < 0):
                setattr(section, key, value)
    if not config.mysql.port:
        config.mysql.port = 3306
    if not config.postgresql.port:
        config.postgresql.port = 5432
    return config


def validate(config: Config) -> None:
    """Raise ConfigError for the first missing required field"""
    required = [
        (config.mysql.host, 'mysql.host'),
        (config.mysql.username, 'mysql.username'),
        (config.mysql.database, 'mysql.database'),
        (config.postgresql.host, 'postgresql.host'),
        (config.postgresql.username, 'postgresql.username'),
        (config.postgresql.database, 'postgresql.database'),
    ]
    for value, name in required:
        if not value:
            raise ConfigError(f"{name} is required")


def load_config(path: str) -> Config:
    """Load, override from env, apply defaults and validate"""
    load_dotenv()
    if not os.path.exists(path):
        raise ConfigError(f"Config file '{path}' not found")
    try:
        with open(path, encoding='utf-8') as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file {path}: {e}") from e
    if raw is not None and not isinstance(raw, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")

    config = apply_defaults(apply_env_overrides(from_dict(raw or {})))
    validate(config)
    return config
