#!/usr/bin/env python3
"""
PostgreSQL Remote-to-Local Copy Tool
Copy a remote PostgreSQL database to the local server with pg_dump -Fd,
pg_dumpall --globals-only and pg_restore, then optionally compare row counts.
No external Python dependencies - uses the PostgreSQL client binaries.
"""

import argparse
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .config import RunConfig, build_config, load_config_file, sample_config
from .dumpdir import log_paths, resolve_dump_dir
from .errors import (
    EXIT_INTERRUPTED,
    EXIT_OK,
    EXIT_USAGE,
    CommandFailed,
    ConfigError,
    DumpFailed,
    PgCopyError,
    RestoreFailed,
    StageFailed,
)
from .pgtools import PostgresTools, classify_stage
from .target import MAINTENANCE_DB, detect_remote_encoding, prepare_target_database
from .verify import VerificationSummary, verify_row_counts

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

GLOBALS_FILE = 'globals.sql'
TOTAL_STEPS = 7


@dataclass
class CopyResult:
    """Artifacts and outcome of a finished copy"""

    dump_dir: Path
    globals_file: Path
    dump_log: Path
    restore_log: Path
    encoding: Optional[str] = None
    database_created: bool = False
    verification: Optional[VerificationSummary] = None


class DatabaseCopyTool:
    """Dump a remote database, restore it locally and optionally verify row counts"""

    def __init__(self, config: RunConfig):
        self.config = config

    @staticmethod
    def _banner(step: int, title: str):
        logger.info("=" * 50)
        logger.info(f"{step}/{TOTAL_STEPS} - {title}")
        logger.info("=" * 50)

    def _dump(self, result: CopyResult):
        self._banner(1, "DUMPING REMOTE DATABASE (DIRECTORY FORMAT)")
        command = PostgresTools.dump_database(
            self.config.remote(),
            result.dump_dir,
            jobs=self.config.jobs,
            log_path=result.dump_log,
            timeout=self.config.timeout
        )
        stage = classify_stage(command, result.dump_log)
        if stage.failed:
            raise DumpFailed(result.dump_log, stage.returncode, stage.error_lines, stage.timed_out)

    def _dump_globals(self, result: CopyResult):
        self._banner(2, f"DUMPING GLOBALS (ROLES, TABLESPACES) TO {result.globals_file}")
        command = PostgresTools.dump_globals(
            self.config.remote(),
            result.globals_file,
            log_path=result.dump_log,
            timeout=self.config.timeout
        )
        stage = classify_stage(command, result.dump_log)
        if stage.failed:
            raise DumpFailed(result.dump_log, stage.returncode, stage.error_lines,
                             stage.timed_out, stage='pg_dumpall')

    def _apply_globals(self, result: CopyResult):
        self._banner(3, f"APPLY GLOBALS TO LOCAL POSTGRES? apply-globals={int(self.config.apply_globals)}")
        if not self.config.apply_globals:
            logger.info(f"Skipping automatic globals apply. File available at: {result.globals_file}")
            return

        logger.warning("Applying globals.sql to local postgres (you should review this file before running)")
        command = PostgresTools.run_script(
            self.config.local(MAINTENANCE_DB),
            result.globals_file,
            timeout=self.config.timeout
        )
        if not command.ok:
            raise CommandFailed(f"psql -f {result.globals_file}", command.returncode)

    def _prepare_target(self, result: CopyResult):
        self._banner(4, "CREATING LOCAL TARGET DATABASE (WITH SAME ENCODING AS REMOTE)")
        result.encoding = detect_remote_encoding(self.config)
        logger.info(f"Detected remote encoding: {result.encoding}")
        result.database_created = prepare_target_database(self.config, result.encoding)

    def _restore(self, result: CopyResult):
        self._banner(5, "RESTORING DUMP INTO LOCAL DATABASE")
        command = PostgresTools.restore_database(
            self.config.local(),
            result.dump_dir,
            jobs=self.config.jobs,
            log_path=result.restore_log,
            timeout=self.config.timeout
        )
        stage = classify_stage(command, result.restore_log)
        if stage.failed:
            raise RestoreFailed(result.restore_log, stage.returncode, stage.error_lines, stage.timed_out)

    def _vacuum(self):
        self._banner(6, "VACUUM ANALYZE LOCAL DATABASE")
        command = PostgresTools.execute(self.config.local(), "VACUUM VERBOSE ANALYZE;",
                                        timeout=self.config.timeout)
        if not command.ok:
            raise CommandFailed('VACUUM VERBOSE ANALYZE', command.returncode)

    def _verify(self, result: CopyResult):
        self._banner(7, "OPTIONAL VERIFICATION OF TABLE AND ROW COUNTS")
        if not self.config.verify:
            logger.info("Skipping verification (use --verify to compare row counts)")
            return

        logger.info("Verification: comparing table list and row counts (remote vs local). This may be slow.")
        result.verification = verify_row_counts(self.config, result.dump_dir)

    def run(self) -> CopyResult:
        """Run every stage in order; the first failure raises a PgCopyError"""
        PostgresTools.check_postgres_tools()

        dump_dir = resolve_dump_dir(self.config.dump_dir, self.config.overwrite_dir)
        logs = log_paths(dump_dir)
        logger.info(f"Final dump dir: {dump_dir}")

        result = CopyResult(
            dump_dir=dump_dir,
            globals_file=dump_dir / GLOBALS_FILE,
            dump_log=logs.dump_log,
            restore_log=logs.restore_log,
        )

        self._dump(result)
        self._dump_globals(result)
        self._apply_globals(result)
        self._prepare_target(result)
        self._restore(result)
        self._vacuum()
        self._verify(result)

        logger.info("=" * 50)
        logger.info("COPY COMPLETED SUCCESSFULLY")
        logger.info("=" * 50)
        logger.info(f"Done. Dump directory: {result.dump_dir}")
        logger.info(f"Recommended next steps: review {result.globals_file} and any extension "
                    f"requirements. Run integrity checks as needed.")
        return result


class _ArgumentParser(argparse.ArgumentParser):
    """Unknown or malformed flags exit with the usage status"""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(EXIT_USAGE, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog='pg-copy-local',
        description='PostgreSQL Remote-to-Local Copy Tool - pg_dump -Fd / pg_restore with optional row-count verification',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment:
  REMOTE_PGPASS         Optional password for the remote server (passed as PGPASSWORD to remote commands only)
  LOCAL_PGPASS          Optional password for the local server (passed as PGPASSWORD to local commands only)

Examples:
  # Copy mydb from a remote host into a local database called mydb_copy with 8 jobs
  REMOTE_PGPASS=secret LOCAL_PGPASS=localpass \\
    pg-copy-local -H 192.168.10.41 -U dbuser -d mydb -u localuser -L mydb_copy -j 8

  # Copy and compare row counts of every table afterwards
  pg-copy-local -H db.example.com -U dbuser -d mydb --verify

  # Reuse the dump directory of an earlier run instead of picking mydb_1, mydb_2, ...
  pg-copy-local -H db.example.com -U dbuser -d mydb -D ./pg_dumps/mydb --overwrite-dir

  # Give up on any client command that runs longer than two hours
  pg-copy-local -H db.example.com -U dbuser -d mydb --timeout 7200

  # Use a config file (flags override file values)
  pg-copy-local --config copy.json

  # Show sample config
  pg-copy-local --sample-config
        """
    )

    required = parser.add_argument_group('required')
    required.add_argument('-H', '--remote-host', type=str, help='Remote PostgreSQL host (or IP)')
    required.add_argument('-U', '--remote-user', type=str, help='Remote PostgreSQL user')
    required.add_argument('-d', '--remote-db', type=str, help='Remote database name to copy')

    parser.add_argument('-P', '--remote-port', type=int, help='Remote PostgreSQL port (default: 5432)')
    parser.add_argument('-L', '--local-db', type=str, help='Local target database name (default: same as remote)')
    parser.add_argument('-u', '--local-user', type=str, help='Local PostgreSQL user (default: current user)')
    parser.add_argument('-p', '--local-port', type=int, help='Local PostgreSQL port (default: 5432)')
    parser.add_argument('-j', '--jobs', type=int, help='Number of parallel jobs for dump/restore (default: CPU count or 4)')
    parser.add_argument('-D', '--dump-dir', type=str, help='Directory to store dump (default: ./pg_dumps/<dbname>_YYYY-MM-DD)')
    parser.add_argument('--apply-globals', action='store_true', help='After dumping, apply globals.sql to local postgres (CAUTION)')
    parser.add_argument('--verify', action='store_true', help='After restore, run row-count verification for all user tables (may be slow)')
    parser.add_argument('--overwrite-dir', action='store_true', help='If dump_dir already exists, remove it before dumping (DANGEROUS)')
    parser.add_argument('--verify-workers', type=int, help='Tables verified concurrently (default: 1)')
    parser.add_argument('--timeout', type=float, help='Kill any client command running longer than this many seconds (default: no limit)')
    parser.add_argument('--config', type=str, help='Path to JSON config file')
    parser.add_argument('--sample-config', action='store_true', help='Print sample configuration')
    parser.add_argument('--verbose', action='store_true', help='Enable verbose logging')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    argv = sys.argv[1:] if argv is None else argv

    if not argv:
        parser.print_help()
        return EXIT_USAGE

    args = parser.parse_args(argv)

    # Set logging level
    if args.verbose:
        logging.getLogger('pg_copy_local').setLevel(logging.DEBUG)

    # Show sample config and exit
    if args.sample_config:
        print(json.dumps(sample_config(), indent=2))
        return EXIT_OK

    try:
        file_config = load_config_file(args.config) if args.config else None
        config = build_config(args, file_config=file_config)
    except ConfigError as err:
        logger.error(str(err))
        parser.print_help(sys.stderr)
        return err.exit_code

    for line in config.describe():
        logger.info(line)

    try:
        DatabaseCopyTool(config).run()
        return EXIT_OK

    except StageFailed as err:
        for line in err.error_lines:
            logger.error(f"  {line}")
        logger.error(str(err))
        return err.exit_code
    except PgCopyError as err:
        logger.error(str(err))
        return err.exit_code
    except KeyboardInterrupt:
        logger.info("Operation cancelled by user")
        return EXIT_INTERRUPTED
    except Exception as err:
        logger.error(f"Unexpected error: {err}", exc_info=True)
        return EXIT_USAGE


if __name__ == '__main__':
    sys.exit(main())
