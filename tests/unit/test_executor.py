"""
Unit tests for backup executor (clusterdump/backup/executor.py).

Tests BackupExecutor for orchestrating complete backup runs.
"""

import os
import signal
from unittest.mock import MagicMock, patch

from freezegun import freeze_time

from clusterdump.backup.executor import BackupExecutor, RunInterrupted, run_backup
from clusterdump.backup.lock import LockManager
from clusterdump.backup.sources import SourceError
from clusterdump.models import Role, RunStatus


CAUGHT_UP = {'Slave_IO_Running': 'Yes', 'Slave_SQL_Running': 'Yes', 'Seconds_Behind_Master': 0}
LAGGING = {'Slave_IO_Running': 'Yes', 'Slave_SQL_Running': 'No', 'Seconds_Behind_Master': None}


def _prom(config):
    with open(os.path.join(config['METRICS_DIR'], config['METRICS_FILENAME'])) as f:
        return f.read()


class TestBackupExecutor:
    """Test BackupExecutor end to end against a fake source."""

    def test_executor_initialization(self, config, fake_source):
        executor = BackupExecutor(config, source=fake_source)

        assert executor.source is fake_source
        assert executor.host_identity == 'testdb'
        assert executor.lock.lock_file.name == 'mariadb_backup.lock'
        assert executor.run is None

    @freeze_time("2024-01-15 02:00:00")
    def test_primary_with_two_databases(self, config, fake_source):
        """Test a primary with 2 databases: exit 0, 2 artifacts, metrics, nothing purged, lock gone."""
        result = BackupExecutor(config, source=fake_source).execute()

        assert result.status is RunStatus.SUCCESS
        assert result.exit_code == 0
        assert result.role is Role.PRIMARY

        backup_dir = os.path.join(config['DUMP_DEST'], 'testdb.2024-01-15')
        assert sorted(os.listdir(backup_dir)) == ['app.sql.xz.enc', 'billing.sql.xz.enc']
        assert result.dump_result.succeeded == 2

        prom = _prom(config)
        for database in ('app', 'billing'):
            size = os.path.getsize(os.path.join(backup_dir, f'{database}.sql.xz.enc'))
            assert f'node_file_database_dump_size_bytes{{database="{database}"}} {float(size)}' in prom
            assert f'node_file_database_dump_latest_mtime{{database="{database}"}}' in prom

        assert result.retention == {'files_deleted': 0, 'dirs_deleted': 0, 'errors': []}
        assert not os.path.exists(config['LOCK_FILE'])
        assert fake_source.cleaned_up is True

    def test_caught_up_secondary_is_backed_up(self, config, make_source):
        source = make_source(databases=['app'], replication=dict(CAUGHT_UP))

        result = BackupExecutor(config, source=source).execute()

        assert result.status is RunStatus.SUCCESS
        assert result.role is Role.SECONDARY
        assert source.dumped == ['app']

    def test_partial_dump_failure_still_succeeds(self, config, make_source):
        """Test per-database failures do not change the exit code."""
        source = make_source(databases=['a', 'b', 'c'], failing=['b'])

        result = BackupExecutor(config, source=source).execute()

        assert result.exit_code == 0
        assert result.dump_result.failed_databases == ['b']
        assert 'node_file_database_dump_size_bytes{database="c"}' in _prom(config)
        assert 'database="b"' not in _prom(config)

    def test_retention_runs_after_successful_dump(self, config, fake_source, set_age):
        old_dir = os.path.join(config['DUMP_DEST'], 'testdb.2023-12-01')
        os.makedirs(old_dir)
        old_file = os.path.join(old_dir, 'app.sql.xz.enc')
        with open(old_file, 'wb') as f:
            f.write(b'old')
        set_age(old_file, 30)

        result = BackupExecutor(config, source=fake_source).execute()

        assert result.status is RunStatus.SUCCESS
        assert not os.path.exists(old_dir)
        assert result.retention['files_deleted'] == 1


class TestCleanExits:
    """Test runs that end without error and without a dump."""

    def test_lock_held_elsewhere(self, config, fake_source):
        """Test another node's lock ends the run with exit 0 and is left in place."""
        with open(config['LOCK_FILE'], 'w') as f:
            f.write("4242\nmaria-db-02\n")

        result = BackupExecutor(config, source=fake_source).execute()

        assert result.status is RunStatus.LOCK_HELD
        assert result.exit_code == 0
        assert fake_source.dumped == []
        assert open(config['LOCK_FILE']).read().startswith('4242')

    def test_role_undeterminable(self, config, make_source):
        """Test a lagging replica without writes skips the dump and releases the lock."""
        source = make_source(databases=['app'], replication=dict(LAGGING), processes=[])

        result = BackupExecutor(config, source=source).execute()

        assert result.status is RunStatus.ROLE_UNDETERMINABLE
        assert result.exit_code == 0
        assert source.dumped == []
        assert os.listdir(config['DUMP_DEST']) == []
        assert not os.path.exists(config['LOCK_FILE'])


class TestFatalErrors:
    """Test runs that fail with exit 1."""

    def test_database_not_running(self, config, make_source):
        source = make_source(databases=['app'], alive=False)

        result = BackupExecutor(config, source=source).execute()

        assert result.status is RunStatus.FAILED
        assert result.exit_code == 1
        assert 'MySQL is not running' in result.reason
        assert not os.path.exists(config['LOCK_FILE'])

    def test_lock_not_taken_when_database_down(self, config, make_source):
        lock = MagicMock(spec=LockManager)
        source = make_source(alive=False)

        BackupExecutor(config, source=source, lock=lock).execute()

        lock.acquire.assert_not_called()
        lock.release.assert_called_once()

    def test_enumeration_failure_skips_retention_but_publishes_metrics(self, config, make_source, set_age):
        """Test an empty database list is fatal, keeps old backups and still writes metrics."""
        old_dir = os.path.join(config['DUMP_DEST'], 'testdb.2023-12-01')
        os.makedirs(old_dir)
        old_file = os.path.join(old_dir, 'app.sql.xz.enc')
        with open(old_file, 'wb') as f:
            f.write(b'old')
        set_age(old_file, 30)
        source = make_source(databases=['information_schema'])

        result = BackupExecutor(config, source=source).execute()

        assert result.status is RunStatus.FAILED
        assert result.exit_code == 1
        assert os.path.exists(old_file)
        assert result.retention is None
        assert 'node_file_database_dump_size_bytes{database="app"}' in _prom(config)
        assert not os.path.exists(config['LOCK_FILE'])

    def test_database_list_query_failure_publishes_metrics(self, config, make_source):
        """Test a failing SHOW DATABASES is fatal and still writes metrics."""
        source = make_source(databases=['app'])
        source.list_databases = MagicMock(side_effect=SourceError("Query failed (SHOW DATABASES)"))

        result = BackupExecutor(config, source=source).execute()

        assert result.status is RunStatus.FAILED
        assert 'SHOW DATABASES' in result.reason
        assert result.retention is None
        assert os.path.exists(os.path.join(config['METRICS_DIR'], config['METRICS_FILENAME']))
        assert not os.path.exists(config['LOCK_FILE'])

    def test_unusable_destination_is_fatal(self, config, fake_source, tmp_path):
        """Test a destination that is not a directory ends the run with exit 1."""
        blocker = tmp_path / 'blocker'
        blocker.write_text('not a directory')
        config['DUMP_DEST'] = str(blocker)

        result = BackupExecutor(config, source=fake_source).execute()

        assert result.status is RunStatus.FAILED
        assert result.exit_code == 1
        assert result.completed_at is not None
        assert fake_source.dumped == []
        assert not os.path.exists(config['LOCK_FILE'])

    def test_status_query_failure(self, config, make_source):
        source = make_source(databases=['app'])
        source.replication_status = MagicMock(side_effect=SourceError("Query failed (SHOW SLAVE STATUS)"))

        result = BackupExecutor(config, source=source).execute()

        assert result.status is RunStatus.FAILED
        assert not os.path.exists(config['LOCK_FILE'])

    def test_missing_password_file(self, config, fake_source):
        config['AES_PASSWORD_FILE'] = os.path.join(config['DUMP_DEST'], 'no-such-file')

        result = BackupExecutor(config, source=fake_source).execute()

        assert result.status is RunStatus.FAILED
        assert 'Cannot read password file' in result.reason
        assert fake_source.dumped == []
        assert not os.path.exists(config['LOCK_FILE'])

    def test_metrics_failure_is_not_fatal(self, config, fake_source):
        metrics = MagicMock()
        metrics.publish.side_effect = PermissionError("read-only collector dir")

        result = BackupExecutor(config, source=fake_source, metrics=metrics).execute()

        assert result.status is RunStatus.SUCCESS
        assert result.metrics_path is None


class TestInterruption:
    """Test signal handling."""

    def test_signal_releases_lock_and_exits_nonzero(self, config, make_source):
        """Test a SIGTERM during the dump releases the lock before the run unwinds."""
        source = make_source(databases=['app', 'billing'])
        executor = BackupExecutor(config, source=source)
        lock_seen = []

        def dump_then_signal(database, output):
            lock_seen.append(os.path.exists(config['LOCK_FILE']))
            executor._handle_signal(signal.SIGTERM, None)

        source.dump_database = dump_then_signal

        result = executor.execute()

        assert lock_seen == [True]
        assert result.status is RunStatus.INTERRUPTED
        assert result.exit_code == 1
        assert 'SIGTERM' in result.reason
        assert not os.path.exists(config['LOCK_FILE'])

    def test_handlers_installed_during_run_and_restored(self, config, fake_source):
        previous = signal.getsignal(signal.SIGTERM)
        executor = BackupExecutor(config, source=fake_source)
        installed = []

        def check_handler():
            installed.append(signal.getsignal(signal.SIGTERM))

        fake_source.ping = check_handler
        executor.execute()

        assert installed == [executor._handle_signal]
        assert signal.getsignal(signal.SIGTERM) is previous

    def test_cancel_stops_before_next_database(self, config, make_source):
        """Test cancel() kills the current dump and no further database is attempted."""
        source = make_source(databases=['app', 'billing'])
        executor = BackupExecutor(config, source=source)
        real_dump = source.dump_database

        def dump_then_cancel(database, output):
            real_dump(database, output)
            executor.cancel(signal.SIGTERM)

        source.dump_database = dump_then_cancel

        result = executor.execute()

        assert source.terminated is True
        assert source.dumped == ['app']
        assert result.status is RunStatus.INTERRUPTED
        assert result.retention is None
        assert not os.path.exists(config['LOCK_FILE'])

    def test_run_interrupted_message(self):
        assert str(RunInterrupted(signal.SIGHUP)) == 'Interrupted by SIGHUP'


class TestRunBackup:

    @patch('clusterdump.backup.executor.time.sleep')
    def test_jitter_before_lock(self, mock_sleep, config, fake_source):
        config['LOCK_JITTER_MS'] = 100

        run_backup(config, source=fake_source)

        delay = mock_sleep.call_args.args[0]
        assert 0.001 <= delay <= 0.1

    @patch('clusterdump.backup.executor.MariaDBSource')
    def test_run_backup_builds_source_from_config(self, mock_source_class, config):
        mock_source_class.return_value.ping.side_effect = SourceError("down")

        result = run_backup(config)

        mock_source_class.assert_called_once_with(config)
        assert result.exit_code == 1
