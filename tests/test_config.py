"""
Tests for run configuration: defaults, config file merging and credentials.
"""

import json
from datetime import date
from pathlib import Path

import pytest

from pg_copy_local.config import (
    LOCAL_PASSWORD_ENV,
    REMOTE_PASSWORD_ENV,
    build_config,
    default_dump_dir,
    load_config_file,
    sample_config,
)
from pg_copy_local.errors import EXIT_CONFIG, ConfigError
from pg_copy_local.pg_copy import build_parser

REQUIRED = ['-H', 'db.example.com', '-U', 'dbuser', '-d', 'mydb']


def parse(*extra):
    return build_parser().parse_args(REQUIRED + list(extra))


def test_defaults():
    config = build_config(parse(), environ={}, today=date(2024, 1, 2))

    assert config.remote_port == 5432
    assert config.local_port == 5432
    assert config.local_host == 'localhost'
    assert config.local_db == 'mydb'
    assert config.dump_dir == Path('pg_dumps/mydb_2024-01-02')
    assert config.jobs >= 1
    assert config.verify_workers == 1
    assert config.timeout is None
    assert not (config.apply_globals or config.verify or config.overwrite_dir)
    assert config.remote_password is None
    assert config.local_password is None


def test_flags_override_defaults():
    config = build_config(parse('-P', '6543', '-L', 'mydb_copy', '-u', 'me', '-p', '5433',
                                '-j', '8', '-D', '/tmp/dumps/x', '--verify', '--apply-globals',
                                '--overwrite-dir', '--timeout', '60', '--verify-workers', '3'),
                          environ={})

    assert config.remote_port == 6543
    assert config.local_db == 'mydb_copy'
    assert config.local_user == 'me'
    assert config.local_port == 5433
    assert config.jobs == 8
    assert config.dump_dir == Path('/tmp/dumps/x')
    assert config.verify and config.apply_globals and config.overwrite_dir
    assert config.timeout == 60.0
    assert config.verify_workers == 3


def test_passwords_come_from_environment_and_stay_hidden():
    environ = {REMOTE_PASSWORD_ENV: 'remote-secret', LOCAL_PASSWORD_ENV: 'local-secret'}
    config = build_config(parse(), environ=environ)

    assert config.remote().password == 'remote-secret'
    assert config.local().password == 'local-secret'
    assert 'secret' not in repr(config)
    assert 'secret' not in repr(config.remote())
    assert not any('secret' in line for line in config.describe())


def test_connections_target_the_right_databases():
    config = build_config(parse('-L', 'copy'), environ={})

    assert config.remote().database == 'mydb'
    assert config.local().database == 'copy'
    assert config.local('postgres').database == 'postgres'
    assert config.remote().args() == ['-h', 'db.example.com', '-p', '5432', '-U', 'dbuser']


@pytest.mark.parametrize('missing', ['-H', '-U', '-d'])
def test_missing_required_identifier(missing):
    argv = list(REQUIRED)
    index = argv.index(missing)
    del argv[index:index + 2]
    args = build_parser().parse_args(argv)

    with pytest.raises(ConfigError) as excinfo:
        build_config(args, environ={})
    assert excinfo.value.exit_code == EXIT_CONFIG


@pytest.mark.parametrize('extra', [['-j', '0'], ['-p', '-1'], ['--timeout', '0'], ['--verify-workers', '0']])
def test_non_positive_values_rejected(extra):
    with pytest.raises(ConfigError):
        build_config(parse(*extra), environ={})


def test_config_file_supplies_values(tmp_path):
    path = tmp_path / 'copy.json'
    path.write_text(json.dumps({
        "remote": {"host": "file-host", "user": "file-user", "database": "filedb", "port": 6000},
        "local": {"host": "127.0.0.1", "database": "filedb_copy", "password": "ignored"},
        "options": {"jobs": 2, "verify": True}
    }))
    file_config = load_config_file(str(path))

    config = build_config(build_parser().parse_args(['-P', '7000']), environ={}, file_config=file_config)

    assert config.remote_host == 'file-host'
    assert config.remote_port == 7000
    assert config.local_host == '127.0.0.1'
    assert config.local_db == 'filedb_copy'
    assert config.local_password is None
    assert config.jobs == 2
    assert config.verify


@pytest.mark.parametrize('value', ["false", "true", 0, 1, "no"])
def test_config_file_switches_must_be_booleans(value):
    file_config = {"remote": {"host": "h", "user": "u", "database": "db"},
                   "options": {"verify": value}}

    with pytest.raises(ConfigError):
        build_config(build_parser().parse_args([]), environ={}, file_config=file_config)


def test_config_file_switches_combine_with_flags():
    file_config = {"remote": {"host": "h", "user": "u", "database": "db"},
                   "options": {"verify": False, "apply_globals": True, "overwrite_dir": None}}

    config = build_config(build_parser().parse_args(['--verify']), environ={}, file_config=file_config)

    assert config.verify
    assert config.apply_globals
    assert not config.overwrite_dir


def test_sample_config_is_loadable(tmp_path):
    path = tmp_path / 'sample.json'
    path.write_text(json.dumps(sample_config()))

    config = build_config(build_parser().parse_args([]), environ={},
                          file_config=load_config_file(str(path)))
    assert config.remote_db == 'mydb'
    assert config.local_db == 'mydb_copy'


def test_config_file_errors(tmp_path):
    with pytest.raises(ConfigError):
        load_config_file(str(tmp_path / 'missing.json'))

    bad = tmp_path / 'bad.json'
    bad.write_text('{not json')
    with pytest.raises(ConfigError):
        load_config_file(str(bad))

    wrong = tmp_path / 'wrong.json'
    wrong.write_text('{"remote": []}')
    with pytest.raises(ConfigError):
        load_config_file(str(wrong))


def test_default_dump_dir():
    assert default_dump_dir('sales', date(2025, 3, 9)) == Path('pg_dumps') / 'sales_2025-03-09'
