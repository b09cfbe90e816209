"""
Row-count verification between the remote source and the local copy.

Every user base table in the restored database is counted on both sides.
A count that cannot be read is recorded as the sentinel "-1" and the run
moves on to the next table. Differences are reported, never raised.
"""

import csv
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, NamedTuple, Optional

from .config import PgConnection, RunConfig
from .pgtools import PostgresTools

logger = logging.getLogger(__name__)

SENTINEL_COUNT = '-1'
COUNTS_FILE = 'verify_counts.csv'
TABLES_FILE = 'verify_tables.csv'
REPORT_HEADER = ['schema.table', 'remote_count', 'local_count']

LIST_TABLES_SQL = """
SELECT table_schema, table_name
FROM information_schema.tables
WHERE table_type = 'BASE TABLE'
  AND table_schema NOT IN ('pg_catalog', 'information_schema')
  AND table_schema NOT LIKE 'pg_toast%'
  AND table_schema NOT LIKE 'pg_temp%'
ORDER BY table_schema || '.' || table_name;
"""

_NUMERIC = re.compile(r'^[0-9]+$')


class TableRef(NamedTuple):
    schema: str
    name: str

    @property
    def qualified(self) -> str:
        return f"{self.schema}.{self.name}"

    def quoted(self) -> str:
        return '.'.join('"' + part.replace('"', '""') + '"' for part in (self.schema, self.name))


@dataclass
class VerificationRecord:
    table: str
    remote_count: str
    local_count: str

    @property
    def mismatched(self) -> bool:
        return self.remote_count != self.local_count


@dataclass
class VerificationSummary:
    records: List[VerificationRecord] = field(default_factory=list)
    report_file: Optional[Path] = None
    tables_file: Optional[Path] = None
    enumeration_failed: bool = False

    @property
    def tables_checked(self) -> int:
        return len(self.records)

    @property
    def mismatches(self) -> int:
        return sum(1 for record in self.records if record.mismatched)

    @property
    def total_remote(self) -> int:
        return sum(int(r.remote_count) for r in self.records if is_count(r.remote_count))

    @property
    def total_local(self) -> int:
        return sum(int(r.local_count) for r in self.records if is_count(r.local_count))

    @property
    def has_differences(self) -> bool:
        return self.mismatches > 0 or self.total_remote != self.total_local

    def summary_line(self) -> str:
        return (f"Summary: tables checked={self.tables_checked} mismatched={self.mismatches} "
                f"total_rows_remote={self.total_remote} total_rows_local={self.total_local}")


def is_count(value: str) -> bool:
    return bool(_NUMERIC.match(value))


def list_tables(conn: PgConnection, timeout: Optional[float] = None) -> Optional[List[TableRef]]:
    """User base tables of conn.database, or None if the catalog could not be read"""
    result = PostgresTools.query(conn, LIST_TABLES_SQL, timeout=timeout, field_separator='\t')
    if not result.ok:
        logger.warning(f"Could not list tables in {conn.database}: {result.stderr.strip()}")
        return None

    tables = []
    for line in result.stdout.splitlines():
        if not line.strip():
            continue
        schema, _, name = line.partition('\t')
        tables.append(TableRef(schema, name))
    return tables


def count_rows(conn: PgConnection, table: TableRef, timeout: Optional[float] = None) -> str:
    """Row count as text, or the sentinel when the query fails"""
    result = PostgresTools.query(conn, f"SELECT count(*) FROM {table.quoted()};", timeout=timeout)
    count = result.stdout.strip()
    if not result.ok or not count:
        logger.warning(f"Count failed for {table.qualified} on {conn.host}: {result.stderr.strip()}")
        return SENTINEL_COUNT
    return count


class TableVerifier:
    """Compare row counts of every local table against the remote source"""

    def __init__(self, config: RunConfig, output_dir):
        self.config = config
        self.output_dir = Path(output_dir)
        self.remote = config.remote()
        self.local = config.local()

    def check_table(self, table: TableRef) -> VerificationRecord:
        remote_count = count_rows(self.remote, table, self.config.timeout)
        local_count = count_rows(self.local, table, self.config.timeout)
        record = VerificationRecord(table.qualified, remote_count, local_count)
        if record.mismatched:
            logger.warning(f"  {table.qualified}: remote={remote_count} local={local_count}")
        else:
            logger.debug(f"  {table.qualified}: {remote_count} rows")
        return record

    def run(self) -> VerificationSummary:
        summary = VerificationSummary(
            report_file=self.output_dir / COUNTS_FILE,
            tables_file=self.output_dir / TABLES_FILE,
        )

        tables = list_tables(self.local, self.config.timeout)
        if tables is None:
            summary.enumeration_failed = True
            logger.warning("Verification skipped: table enumeration failed")
            return summary

        with open(summary.tables_file, 'w', encoding='utf-8') as f:
            for table in tables:
                f.write(f"{table.qualified}\n")

        logger.info(f"Verifying row counts for {len(tables)} tables")
        workers = min(self.config.verify_workers, len(tables)) or 1
        if workers > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                summary.records = list(executor.map(self.check_table, tables))
        else:
            summary.records = [self.check_table(table) for table in tables]

        write_report(summary.report_file, summary.records)
        logger.info(f"Verification results saved to: {summary.report_file}")
        logger.info(summary.summary_line())
        if summary.has_differences:
            logger.warning(f"Differences detected. See {summary.report_file} for details.")
        return summary


def write_report(report_file, records: List[VerificationRecord]) -> None:
    with open(report_file, 'w', encoding='utf-8', newline='') as f:
        writer = csv.writer(f, lineterminator='\n')
        writer.writerow(REPORT_HEADER)
        for record in records:
            writer.writerow([record.table, record.remote_count, record.local_count])


def verify_row_counts(config: RunConfig, output_dir) -> VerificationSummary:
    return TableVerifier(config, output_dir).run()
