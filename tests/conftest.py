"""
Shared fixtures: an in-memory stand-in for the PostgreSQL client binaries.
"""

import re
import sys
from pathlib import Path

import pytest

# Add the src directory to the path so we can import the package
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from pg_copy_local.pgtools import CommandResult, PostgresTools  # noqa: E402

REMOTE_HOST = "db.example.com"
COUNT_SQL = re.compile(r'FROM "((?:[^"]|"")*)"\."((?:[^"]|"")*)"')

FAKED_METHODS = [
    'check_postgres_tools',
    'dump_database',
    'dump_globals',
    'restore_database',
    'query',
    'execute',
    'run_script',
    'list_databases',
    'create_database',
]


class FakePostgres:
    """Records every client command and answers from dicts of table -> row count"""

    def __init__(self, remote_tables=None, encoding='UTF8'):
        self.remote_tables = dict(remote_tables or {})
        self.local_tables = {}
        self.local_databases = {'postgres', 'template0', 'template1'}
        self.encoding = encoding
        self.dump_stderr = "pg_dump: dumping contents of table\n"
        self.dump_returncode = 0
        self.restore_stderr = "pg_restore: processing data for table\n"
        self.restore_returncode = 0
        self.dump_globals_stderr = ""
        self.dump_globals_returncode = 0
        self.run_script_returncode = 0
        self.execute_returncode = 0
        self.failing_counts = set()  # (side, "schema.table")
        self.list_tables_fails = False
        self.list_databases_fails = False
        self.calls = []

    def install(self, monkeypatch):
        for name in FAKED_METHODS:
            monkeypatch.setattr(PostgresTools, name, getattr(self, name))
        return self

    def called(self, name):
        return [call for call in self.calls if call[0] == name]

    @staticmethod
    def side(conn):
        return 'remote' if conn.host == REMOTE_HOST else 'local'

    def check_postgres_tools(self, tools=None):
        self.calls.append(('check_postgres_tools',))

    def dump_database(self, conn, dump_dir, jobs, log_path, timeout=None):
        self.calls.append(('dump_database', conn, Path(dump_dir), jobs))
        Path(dump_dir).mkdir()
        (Path(dump_dir) / 'toc.dat').write_text('toc')
        Path(log_path).write_text(self.dump_stderr)
        return CommandResult(self.dump_returncode)

    def dump_globals(self, conn, output_file, log_path, timeout=None):
        self.calls.append(('dump_globals', conn, Path(output_file)))
        Path(output_file).write_text("CREATE ROLE dbuser;\n")
        with open(log_path, "a") as log:
            log.write(self.dump_globals_stderr)
        return CommandResult(self.dump_globals_returncode)

    def run_script(self, conn, script, timeout=None):
        self.calls.append(('run_script', conn, Path(script)))
        return CommandResult(self.run_script_returncode)

    def list_databases(self, conn, timeout=None):
        self.calls.append(('list_databases', conn))
        if self.list_databases_fails:
            return CommandResult(2, stderr='psql: error: connection refused')
        rows = [f" {name:<10}| postgres | UTF8 | C | C |" for name in sorted(self.local_databases)]
        return CommandResult(0, stdout="\n".join(rows) + "\n \n")

    def create_database(self, conn, name, encoding, template='template0', timeout=None):
        self.calls.append(('create_database', conn, name, encoding, template))
        self.local_databases.add(name)
        return CommandResult(0)

    def restore_database(self, conn, dump_dir, jobs, log_path, timeout=None):
        self.calls.append(('restore_database', conn, Path(dump_dir), jobs))
        Path(log_path).write_text(self.restore_stderr)
        self.local_tables = dict(self.remote_tables)
        return CommandResult(self.restore_returncode)

    def execute(self, conn, sql, timeout=None):
        self.calls.append(('execute', conn, sql))
        return CommandResult(self.execute_returncode)

    def query(self, conn, sql, timeout=None, field_separator=None):
        self.calls.append(('query', conn, sql))
        side = self.side(conn)

        if 'pg_encoding_to_char' in sql:
            return CommandResult(0, stdout=f"{self.encoding}\n")

        if 'information_schema.tables' in sql:
            if self.list_tables_fails:
                return CommandResult(1, stderr='ERROR: permission denied for schema')
            tables = sorted(self.local_tables if side == 'local' else self.remote_tables)
            lines = [field_separator.join(t.split('.', 1)) for t in tables]
            return CommandResult(0, stdout="\n".join(lines) + "\n")

        match = COUNT_SQL.search(sql)
        if match:
            table = '.'.join(part.replace('""', '"') for part in match.groups())
            tables = self.local_tables if side == 'local' else self.remote_tables
            if (side, table) in self.failing_counts or table not in tables:
                return CommandResult(1, stderr=f'ERROR: permission denied for table {table}')
            return CommandResult(0, stdout=f"{tables[table]}\n")

        raise AssertionError(f"unexpected query: {sql}")


@pytest.fixture
def fake_pg(monkeypatch):
    fake = FakePostgres({'public.users': 10, 'public.orders': 5})
    return fake.install(monkeypatch)
