"""
Error kinds raised by the migration engine
"""


class MigrationError(Exception):
    """Base class for all migration errors"""


class ConfigError(MigrationError):
    """Configuration is missing or invalid"""


class DatabaseConnectionError(MigrationError):
    """Could not connect or authenticate to MySQL or PostgreSQL"""


class CatalogError(MigrationError):
    """Metadata read from the MySQL catalog failed"""


class TranslateError(MigrationError):
    """A MySQL object could not be converted to PostgreSQL dialect"""


class ExecuteError(MigrationError):
    """A statement failed on the PostgreSQL side"""


class LoadError(MigrationError):
    """Row transfer into PostgreSQL failed"""


class ValidateError(MigrationError):
    """Row count validation could not be performed"""


class InternalError(MigrationError):
    """Unexpected engine state"""


IDEMPOTENT_MARKERS = (
    'duplicate key value violates unique constraint',
    'already exists',
)


def is_idempotent_error(message: str) -> bool:
    """True if a target error means the object is already in place"""
    return any(marker in message for marker in IDEMPOTENT_MARKERS)


def is_missing_role_error(message: str) -> bool:
    """True if a target error reports a role that does not exist"""
    return 'role' in message and 'does not exist' in message
