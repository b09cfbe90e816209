"""
Run configuration for the copy pipeline.

Values come from three places, in increasing priority: built-in defaults,
an optional JSON config file and command-line flags. Passwords come only
from the REMOTE_PGPASS / LOCAL_PGPASS environment variables and are never
logged or written anywhere.
"""

import getpass
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_PORT = 5432
DEFAULT_LOCAL_HOST = 'localhost'
DEFAULT_DUMP_ROOT = 'pg_dumps'
REMOTE_PASSWORD_ENV = 'REMOTE_PGPASS'
LOCAL_PASSWORD_ENV = 'LOCAL_PGPASS'


@dataclass(frozen=True)
class PgConnection:
    """Connection parameters handed to a single client command"""

    host: str
    port: int
    user: str
    database: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)

    def args(self) -> List[str]:
        return ['-h', self.host, '-p', str(self.port), '-U', self.user]

    def with_database(self, database: str) -> 'PgConnection':
        return PgConnection(self.host, self.port, self.user, database, self.password)


@dataclass(frozen=True)
class RunConfig:
    """Everything one copy run needs, resolved once at startup"""

    remote_host: str
    remote_user: str
    remote_db: str
    local_db: str
    local_user: str
    jobs: int
    dump_dir: Path
    remote_port: int = DEFAULT_PORT
    local_host: str = DEFAULT_LOCAL_HOST
    local_port: int = DEFAULT_PORT
    apply_globals: bool = False
    verify: bool = False
    overwrite_dir: bool = False
    timeout: Optional[float] = None
    verify_workers: int = 1
    remote_password: Optional[str] = field(default=None, repr=False)
    local_password: Optional[str] = field(default=None, repr=False)

    def remote(self, database: Optional[str] = None) -> PgConnection:
        return PgConnection(self.remote_host, self.remote_port, self.remote_user,
                            database or self.remote_db, self.remote_password)

    def local(self, database: Optional[str] = None) -> PgConnection:
        return PgConnection(self.local_host, self.local_port, self.local_user,
                            database or self.local_db, self.local_password)

    def describe(self) -> List[str]:
        """Human readable summary of the run, without credentials"""
        return [
            f"Remote: {self.remote_host}:{self.remote_port} db={self.remote_db} user={self.remote_user}",
            f"Local:  host={self.local_host} port={self.local_port} db={self.local_db} user={self.local_user}",
            f"Requested dump dir: {self.dump_dir}  jobs={self.jobs}  "
            f"apply-globals={int(self.apply_globals)} verify={int(self.verify)} "
            f"overwrite-dir={int(self.overwrite_dir)}",
        ]


def default_jobs() -> int:
    """Parallel jobs for pg_dump/pg_restore: CPU count, or 4 if unknown"""
    return os.cpu_count() or 4


def default_local_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return 'postgres'


def default_dump_dir(remote_db: str, today: Optional[date] = None) -> Path:
    today = today or date.today()
    return Path('.') / DEFAULT_DUMP_ROOT / f"{remote_db}_{today.isoformat()}"


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load configuration from JSON file"""
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = json.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {config_path}")
    except json.JSONDecodeError as err:
        raise ConfigError(f"Invalid JSON in config file: {err}")

    if not isinstance(config, dict):
        raise ConfigError(f"Config file must contain a JSON object: {config_path}")

    for section in ('remote', 'local', 'options'):
        value = config.get(section, {})
        if not isinstance(value, dict):
            raise ConfigError(f"Config section '{section}' must be an object")
        if 'password' in value:
            logger.warning(f"Ignoring 'password' in config section '{section}'; "
                           f"use {REMOTE_PASSWORD_ENV} / {LOCAL_PASSWORD_ENV} instead")

    return config


def sample_config() -> Dict[str, Any]:
    """Sample configuration printed by --sample-config"""
    return {
        "remote": {
            "host": "192.168.10.41",
            "port": 5432,
            "user": "dbuser",
            "database": "mydb"
        },
        "local": {
            "host": "localhost",
            "port": 5432,
            "user": "localuser",
            "database": "mydb_copy"
        },
        "options": {
            "jobs": 8,
            "dump_dir": "./pg_dumps/mydb",
            "apply_globals": False,
            "verify": True,
            "overwrite_dir": False,
            "timeout": None,
            "verify_workers": 1
        }
    }


def _pick(flag_value, section: Mapping[str, Any], key: str, default=None):
    """Command-line value wins over the config file, which wins over the default"""
    if flag_value is not None:
        return flag_value
    value = section.get(key)
    return default if value is None else value


def _positive_int(name: str, value) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    if number < 1:
        raise ConfigError(f"{name} must be positive, got {number}")
    return number


def _flag(flag_value: bool, section: Mapping[str, Any], key: str) -> bool:
    """A switch is on when given on the command line or set to true in the config file"""
    value = section.get(key)
    if value is None:
        value = False
    elif not isinstance(value, bool):
        raise ConfigError(f"{key} must be true or false, got {value!r}")
    return bool(flag_value) or value


def build_config(args, environ: Optional[Mapping[str, str]] = None,
                 file_config: Optional[Dict[str, Any]] = None,
                 today: Optional[date] = None) -> RunConfig:
    """Resolve the run configuration from parsed arguments, config file and environment

    This is the only place that reads credentials from the environment.
    """
    environ = os.environ if environ is None else environ
    file_config = file_config or {}
    remote = file_config.get('remote', {})
    local = file_config.get('local', {})
    options = file_config.get('options', {})

    remote_host = _pick(args.remote_host, remote, 'host')
    remote_user = _pick(args.remote_user, remote, 'user')
    remote_db = _pick(args.remote_db, remote, 'database')

    missing = [flag for flag, value in (('-H remote_host', remote_host),
                                        ('-U remote_db_user', remote_user),
                                        ('-d remote_dbname', remote_db)) if not value]
    if missing:
        raise ConfigError(f"Missing required parameters: {', '.join(missing)}")

    timeout = _pick(args.timeout, options, 'timeout')
    if timeout is not None:
        try:
            timeout = float(timeout)
        except (TypeError, ValueError):
            raise ConfigError(f"timeout must be a number of seconds, got {timeout!r}")
        if timeout <= 0:
            raise ConfigError(f"timeout must be positive, got {timeout}")

    dump_dir = _pick(args.dump_dir, options, 'dump_dir')

    return RunConfig(
        remote_host=str(remote_host),
        remote_user=str(remote_user),
        remote_db=str(remote_db),
        remote_port=_positive_int('remote port', _pick(args.remote_port, remote, 'port', DEFAULT_PORT)),
        local_host=str(_pick(None, local, 'host', DEFAULT_LOCAL_HOST)),
        local_port=_positive_int('local port', _pick(args.local_port, local, 'port', DEFAULT_PORT)),
        local_user=str(_pick(args.local_user, local, 'user') or default_local_user()),
        local_db=str(_pick(args.local_db, local, 'database', remote_db)),
        jobs=_positive_int('jobs', _pick(args.jobs, options, 'jobs', default_jobs())),
        dump_dir=Path(dump_dir) if dump_dir else default_dump_dir(str(remote_db), today),
        apply_globals=_flag(args.apply_globals, options, 'apply_globals'),
        verify=_flag(args.verify, options, 'verify'),
        overwrite_dir=_flag(args.overwrite_dir, options, 'overwrite_dir'),
        timeout=timeout,
        verify_workers=_positive_int('verify workers', _pick(args.verify_workers, options, 'verify_workers', 1)),
        remote_password=environ.get(REMOTE_PASSWORD_ENV) or None,
        local_password=environ.get(LOCAL_PASSWORD_ENV) or None,
    )
