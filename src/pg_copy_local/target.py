"""
Local target database preparation.

The target is created when missing and left alone when present; it is
never dropped or recreated here.
"""

import logging
from typing import List, Optional

from .config import RunConfig
from .errors import CommandFailed
from .pgtools import PostgresTools

logger = logging.getLogger(__name__)

DEFAULT_ENCODING = 'UTF8'
MAINTENANCE_DB = 'postgres'


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def detect_remote_encoding(config: RunConfig) -> str:
    """Character encoding of the remote database, UTF8 when it cannot be read"""
    sql = (f"SELECT pg_encoding_to_char(encoding) FROM pg_database "
           f"WHERE datname = {quote_literal(config.remote_db)};")
    result = PostgresTools.query(config.remote(MAINTENANCE_DB), sql, timeout=config.timeout)

    encoding = result.stdout.strip() if result.ok else ''
    if not result.ok:
        logger.warning(f"Could not read remote encoding ({result.stderr.strip() or 'no output'}); "
                       f"falling back to {DEFAULT_ENCODING}")
    return encoding or DEFAULT_ENCODING


def parse_database_list(listing: str) -> List[str]:
    """Database names from `psql -lqt` output (first column of each row)"""
    names = []
    for line in listing.splitlines():
        name = line.split('|', 1)[0].strip()
        if name:
            names.append(name)
    return names


def local_database_exists(config: RunConfig, name: Optional[str] = None) -> bool:
    name = name or config.local_db
    result = PostgresTools.list_databases(config.local(MAINTENANCE_DB), timeout=config.timeout)
    if not result.ok:
        raise CommandFailed('psql -l', result.returncode, result.stderr)
    return name in parse_database_list(result.stdout)


def prepare_target_database(config: RunConfig, encoding: str) -> bool:
    """Create the local database if absent; returns True when it was created"""
    if local_database_exists(config):
        logger.info(f"Local database {config.local_db} already exists. Skipping createdb.")
        return False

    logger.info(f"Creating local database {config.local_db} with encoding {encoding}")
    result = PostgresTools.create_database(config.local(MAINTENANCE_DB), config.local_db,
                                           encoding, timeout=config.timeout)
    if not result.ok:
        raise CommandFailed('createdb', result.returncode, result.stderr)
    return True
