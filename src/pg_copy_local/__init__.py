"""
PostgreSQL Remote-to-Local Copy Tool - Copy a remote database to the local server with pg_dump/pg_restore

This package provides a CLI tool that copies a PostgreSQL database from a remote server to the
local one using the PostgreSQL client binaries (pg_dump, pg_dumpall, pg_restore, psql, createdb).
It has zero external Python dependencies and only uses the Python standard library.

Main features:
- Directory-format parallel dump and restore (-j jobs)
- Globals (roles, tablespaces) captured to globals.sql, applied only on request
- Local target created with the remote encoding, never dropped
- Failure detection from both exit status and "error:" lines in the tool logs
- Optional table-by-table row-count verification with a CSV report
- Config file or command-line support

Usage:
    pg-copy-local -H remote-db.example.com -U dbuser -d mydb --verify
    pg-copy-local --config copy.json
"""

__version__ = "1.0.0"
__license__ = "MIT"

from .config import RunConfig, PgConnection
from .errors import (
    PgCopyError,
    ConfigError,
    DependencyMissing,
    DumpFailed,
    RestoreFailed,
    CommandFailed,
)
from .pgtools import PostgresTools
from .pg_copy import DatabaseCopyTool, CopyResult

__all__ = [
    "DatabaseCopyTool",
    "CopyResult",
    "PostgresTools",
    "RunConfig",
    "PgConnection",
    "PgCopyError",
    "ConfigError",
    "DependencyMissing",
    "DumpFailed",
    "RestoreFailed",
    "CommandFailed",
]
