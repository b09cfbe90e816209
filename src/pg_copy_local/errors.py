"""
Error types raised by the copy pipeline.
Each error carries the process exit code that the CLI returns for it.
"""

from typing import List, Optional


EXIT_OK = 0
EXIT_USAGE = 1
EXIT_CONFIG = 2
EXIT_DEPENDENCY = 3
EXIT_DUMP_FAILED = 10
EXIT_RESTORE_FAILED = 11
EXIT_COMMAND_FAILED = 12
EXIT_INTERRUPTED = 130


class PgCopyError(Exception):
    """Base class for all pipeline failures"""

    exit_code = EXIT_USAGE


class ConfigError(PgCopyError):
    """Missing or invalid run configuration"""

    exit_code = EXIT_CONFIG


class DependencyMissing(PgCopyError):
    """Required PostgreSQL client binaries are not installed"""

    exit_code = EXIT_DEPENDENCY

    def __init__(self, missing: List[str]):
        self.missing = list(missing)
        super().__init__(f"Required command not found: {', '.join(self.missing)}")


class StageFailed(PgCopyError):
    """A dump or restore stage failed; points at the log that explains why"""

    stage = "stage"

    def __init__(self, log_path, returncode: Optional[int] = None,
                 error_lines: Optional[List[str]] = None, timed_out: bool = False,
                 stage: Optional[str] = None):
        if stage:
            self.stage = stage
        self.log_path = log_path
        self.returncode = returncode
        self.error_lines = list(error_lines or [])
        self.timed_out = timed_out

        if timed_out:
            reason = "timed out"
        elif self.error_lines:
            reason = "reported errors"
        else:
            reason = f"exited with status {returncode}"
        super().__init__(f"{self.stage} {reason}. See {log_path}")


class DumpFailed(StageFailed):
    exit_code = EXIT_DUMP_FAILED
    stage = "pg_dump"


class RestoreFailed(StageFailed):
    exit_code = EXIT_RESTORE_FAILED
    stage = "pg_restore"


class CommandFailed(PgCopyError):
    """Any other external command in the pipeline failed"""

    exit_code = EXIT_COMMAND_FAILED

    def __init__(self, command: str, returncode: Optional[int], detail: str = ''):
        self.command = command
        self.returncode = returncode
        self.detail = detail.strip()
        message = f"{command} failed with status {returncode}"
        if self.detail:
            message += f": {self.detail}"
        super().__init__(message)
