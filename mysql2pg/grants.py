"""
MySQL accounts and privileges to PostgreSQL roles and GRANT statements
"""
import re
from typing import List, Optional, Tuple

from mysql2pg.errors import TranslateError
from mysql2pg.models import TablePrivInfo, UserInfo
from mysql2pg.sqltext import escape_literal, quote_identifier

# Privileges that exist on PostgreSQL tables
TABLE_PRIVILEGES = ('SELECT', 'INSERT', 'UPDATE', 'DELETE', 'TRUNCATE', 'REFERENCES', 'TRIGGER')
# Account level privileges carried over from SHOW GRANTS
SCHEMA_PRIVILEGES = ('SELECT', 'INSERT', 'UPDATE', 'DELETE')

GRANT_RE = re.compile(r'^\s*GRANT\s+(.+?)\s+ON\s+(?:TABLE\s+)?(\S+)\s+TO\s+', re.IGNORECASE)


def parse_account(account: str) -> Tuple[str, str]:
    """Split 'user'@'host' (quotes optional) into (user, host)"""
    if '@' not in account:
        raise TranslateError(f"Invalid account name: {account}")
    user, host = account.rsplit('@', 1)
    return user.strip().strip("'`\""), host.strip().strip("'`\"")


def is_system_user(user: str) -> bool:
    return user.startswith('mysql.')


def pg_role_name(user: str) -> str:
    """PostgreSQL role name for a MySQL login"""
    return user.replace('.', '_')


def create_role_statement(role: str) -> str:
    return (f"DO $$ BEGIN IF NOT EXISTS (SELECT FROM pg_roles WHERE rolname = '{escape_literal(role)}') "
            f"THEN CREATE USER {quote_identifier(role)}; END IF; END $$;")


def convert_grant(grant: str, role: str, database: str = 'postgres') -> List[str]:
    """
    Convert one SHOW GRANTS line.

    MySQL grants are mapped onto the public schema as a whole, whatever
    table or database they name. Table level access comes from
    mysql.tables_priv instead (see convert_table_privilege).

    Args:
        grant: e.g. "GRANT SELECT, INSERT ON `shop`.* TO `app`@`%`"
        role: PostgreSQL role the privileges go to
        database: PostgreSQL database used for database level grants

    Returns:
        GRANT statements; empty for grants with no PostgreSQL counterpart
    """
    match = GRANT_RE.match(grant)
    if not match:
        return []
    privileges = [p.strip().upper() for p in match.group(1).split(',')]
    grantee = quote_identifier(role)

    if any(p.startswith('ALL') for p in privileges):
        return [
            f"GRANT ALL PRIVILEGES ON DATABASE {quote_identifier(database)} TO {grantee};",
            f"GRANT ALL PRIVILEGES ON ALL TABLES IN SCHEMA public TO {grantee};",
            f"GRANT ALL PRIVILEGES ON ALL SEQUENCES IN SCHEMA public TO {grantee};",
        ]

    statements = []
    for privilege in privileges:
        # column level grants such as SELECT (a, b)
        privilege = re.sub(r'\s*\(.*\)$', '', privilege)
        if privilege in SCHEMA_PRIVILEGES:
            statements.append(f"GRANT {privilege} ON ALL TABLES IN SCHEMA public TO {grantee};")
    return statements


def convert_user(user: UserInfo, database: str = 'postgres') -> Optional[List[str]]:
    """Role creation plus grants for one account; None for MySQL system accounts"""
    if not user.user:
        raise TranslateError(f"Empty user name for host {user.host}")
    if is_system_user(user.user):
        return None
    role = pg_role_name(user.user)
    statements = [create_role_statement(role)]
    for grant in user.grants:
        statements.extend(convert_grant(grant, role, database))
    return statements


def table_privileges(privileges: str) -> List[str]:
    """PostgreSQL privileges present in a tables_priv set string"""
    present = {p.strip().upper() for p in privileges.split(',') if p.strip()}
    return [p for p in TABLE_PRIVILEGES if p in present]


def convert_table_privilege(priv: TablePrivInfo) -> List[str]:
    """One GRANT per privilege in a mysql.tables_priv row"""
    if not priv.user or not priv.table:
        raise TranslateError(f"Incomplete table privilege row: {priv}")
    role = quote_identifier(pg_role_name(priv.user))
    return [f"GRANT {p} ON {quote_identifier(priv.table)} TO {role}"
            for p in table_privileges(priv.privileges)]
