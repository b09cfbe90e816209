"""
Wrappers around the PostgreSQL client binaries (pg_dump, pg_dumpall,
pg_restore, psql, createdb) and the log scan that decides whether a
dump or restore really succeeded.
"""

import logging
import os
import re
import shutil
import subprocess
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, IO, List, Optional

from .config import PgConnection
from .errors import DependencyMissing

logger = logging.getLogger(__name__)

REQUIRED_TOOLS = ['pg_dump', 'pg_dumpall', 'pg_restore', 'psql', 'createdb']

# A line starting with this marker fails the stage even when the exit status is 0
ERROR_MARKER = re.compile(r'^error:', re.IGNORECASE)


@dataclass
class CommandResult:
    """Outcome of one external command"""

    returncode: Optional[int]
    stdout: str = ''
    stderr: str = ''
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


@dataclass
class StageResult:
    """Combined verdict of exit status and log contents for a dump/restore stage"""

    returncode: Optional[int]
    error_lines: List[str]
    timed_out: bool = False

    @property
    def failed(self) -> bool:
        return self.returncode != 0 or self.timed_out or bool(self.error_lines)


def find_error_lines(text: str) -> List[str]:
    """Return every line that starts with 'error:' (any case)"""
    return [line for line in text.splitlines() if ERROR_MARKER.match(line)]


def read_error_lines(log_path) -> List[str]:
    try:
        with open(log_path, 'r', encoding='utf-8', errors='replace') as f:
            return find_error_lines(f.read())
    except FileNotFoundError:
        return []


def classify_stage(result: CommandResult, log_path) -> StageResult:
    """A stage fails on non-zero exit, on timeout, or when its log contains an error line"""
    return StageResult(
        returncode=result.returncode,
        error_lines=read_error_lines(log_path),
        timed_out=result.timed_out,
    )


def pg_env(password: Optional[str] = None) -> Dict[str, str]:
    """Environment for one client command, with PGPASSWORD scoped to it"""
    env = dict(os.environ)
    env.pop('PGPASSWORD', None)
    if password:
        env['PGPASSWORD'] = password
    return env


def run_logged(cmd: List[str], log_path, env: Optional[Dict[str, str]] = None,
               timeout: Optional[float] = None, append: bool = False,
               stdout: Optional[IO] = None) -> CommandResult:
    """Run a command, copying its stderr to log_path and to our own stderr as it arrives"""
    logger.info(f"Executing command: {' '.join(cmd)}")
    expired = threading.Event()

    with open(log_path, 'a' if append else 'w', encoding='utf-8') as log:
        try:
            process = subprocess.Popen(
                cmd,
                stdout=stdout,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                env=env,
                encoding='utf-8',
                errors='replace'
            )
        except FileNotFoundError:
            raise DependencyMissing([cmd[0]])

        timer = None
        if timeout:
            def _expire():
                if process.poll() is None:
                    expired.set()
                    process.kill()

            timer = threading.Timer(timeout, _expire)
            timer.daemon = True
            timer.start()

        try:
            for line in process.stderr:
                log.write(line)
                log.flush()
                sys.stderr.write(line)
                sys.stderr.flush()
            returncode = process.wait()
        finally:
            if timer:
                timer.cancel()
            process.stderr.close()

    if expired.is_set():
        logger.error(f"{cmd[0]} killed after {timeout:g}s timeout")
    return CommandResult(returncode=returncode, timed_out=expired.is_set())


def run_captured(cmd: List[str], env: Optional[Dict[str, str]] = None,
                 timeout: Optional[float] = None) -> CommandResult:
    """Run a command and capture its output"""
    logger.debug(f"Executing command: {' '.join(cmd)}")
    try:
        process = subprocess.run(
            cmd,
            capture_output=True,
            stdin=subprocess.DEVNULL,
            env=env,
            timeout=timeout,
            encoding='utf-8',
            errors='replace'
        )
    except FileNotFoundError:
        raise DependencyMissing([cmd[0]])
    except subprocess.TimeoutExpired:
        logger.error(f"{cmd[0]} killed after {timeout:g}s timeout")
        return CommandResult(returncode=None, timed_out=True)

    return CommandResult(returncode=process.returncode, stdout=process.stdout, stderr=process.stderr)


def run_passthrough(cmd: List[str], env: Optional[Dict[str, str]] = None,
                    timeout: Optional[float] = None) -> CommandResult:
    """Run a command with its output going straight to the terminal"""
    logger.info(f"Executing command: {' '.join(cmd)}")
    try:
        process = subprocess.run(cmd, stdin=subprocess.DEVNULL, env=env, timeout=timeout)
    except FileNotFoundError:
        raise DependencyMissing([cmd[0]])
    except subprocess.TimeoutExpired:
        logger.error(f"{cmd[0]} killed after {timeout:g}s timeout")
        return CommandResult(returncode=None, timed_out=True)

    return CommandResult(returncode=process.returncode)


class PostgresTools:
    """Invoke the PostgreSQL client binaries with explicit connection parameters"""

    @staticmethod
    def check_postgres_tools(tools: Optional[List[str]] = None) -> None:
        """Raise DependencyMissing unless every client binary is on PATH"""
        missing = [tool for tool in (tools or REQUIRED_TOOLS) if shutil.which(tool) is None]
        if missing:
            logger.error(f"Missing required tools: {', '.join(missing)}")
            logger.error("Please install the PostgreSQL client tools: apt-get install postgresql-client")
            raise DependencyMissing(missing)

    @staticmethod
    def dump_database(conn: PgConnection, dump_dir: Path, jobs: int, log_path,
                      timeout: Optional[float] = None) -> CommandResult:
        """Directory-format parallel dump of conn.database into dump_dir"""
        logger.info(f"Dumping database '{conn.database}' from {conn.host}:{conn.port} with {jobs} jobs")
        cmd = [
            'pg_dump',
            *conn.args(),
            '-Fd',
            '-j', str(jobs),
            '-f', str(dump_dir),
            '-v',
            conn.database
        ]
        return run_logged(cmd, log_path, env=pg_env(conn.password), timeout=timeout)

    @staticmethod
    def dump_globals(conn: PgConnection, output_file: Path, log_path,
                     timeout: Optional[float] = None) -> CommandResult:
        """Dump roles and tablespaces as plain SQL; stderr is appended to log_path"""
        cmd = [
            'pg_dumpall',
            *conn.args(),
            '--globals-only'
        ]
        with open(output_file, 'w', encoding='utf-8') as out:
            result = run_logged(cmd, log_path, env=pg_env(conn.password),
                                timeout=timeout, append=True, stdout=out)

        file_size = os.path.getsize(output_file)
        logger.info(f"Globals dump written to {output_file} ({file_size:,} bytes)")
        return result

    @staticmethod
    def restore_database(conn: PgConnection, dump_dir: Path, jobs: int, log_path,
                         timeout: Optional[float] = None) -> CommandResult:
        """Parallel restore of a directory-format dump into conn.database"""
        logger.info(f"Restoring into database '{conn.database}' at {conn.host}:{conn.port} with {jobs} jobs")
        cmd = [
            'pg_restore',
            *conn.args(),
            '-d', conn.database,
            '-j', str(jobs),
            '-e',
            '-v',
            str(dump_dir)
        ]
        return run_logged(cmd, log_path, env=pg_env(conn.password), timeout=timeout)

    @staticmethod
    def query(conn: PgConnection, sql: str, timeout: Optional[float] = None,
              field_separator: Optional[str] = None) -> CommandResult:
        """Run a single statement with unaligned, tuples-only output"""
        cmd = ['psql', *conn.args(), '-d', conn.database, '-At']
        if field_separator is not None:
            cmd.extend(['-F', field_separator])
        cmd.extend(['-c', sql])
        return run_captured(cmd, env=pg_env(conn.password), timeout=timeout)

    @staticmethod
    def execute(conn: PgConnection, sql: str, timeout: Optional[float] = None) -> CommandResult:
        """Run a statement, letting psql print its output to the terminal"""
        cmd = ['psql', *conn.args(), '-d', conn.database, '-c', sql]
        return run_passthrough(cmd, env=pg_env(conn.password), timeout=timeout)

    @staticmethod
    def run_script(conn: PgConnection, script: Path, timeout: Optional[float] = None) -> CommandResult:
        """Feed a SQL file to psql"""
        cmd = ['psql', *conn.args(), '-d', conn.database, '-f', str(script)]
        return run_passthrough(cmd, env=pg_env(conn.password), timeout=timeout)

    @staticmethod
    def list_databases(conn: PgConnection, timeout: Optional[float] = None) -> CommandResult:
        """psql -lqt catalog listing"""
        cmd = ['psql', *conn.args(), '-lqt']
        return run_captured(cmd, env=pg_env(conn.password), timeout=timeout)

    @staticmethod
    def create_database(conn: PgConnection, name: str, encoding: str,
                        template: str = 'template0', timeout: Optional[float] = None) -> CommandResult:
        cmd = [
            'createdb',
            *conn.args(),
            '-T', template,
            '-E', encoding,
            name
        ]
        logger.info(f"Executing command: {' '.join(cmd)}")
        return run_captured(cmd, env=pg_env(conn.password), timeout=timeout)
