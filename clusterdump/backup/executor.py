"""
Backup executor - orchestrates one backup run.

Workflow:
1. Check that the database is alive
2. Wait a random jitter, then acquire the cluster lock
3. Detect the replication role; skip the run if undeterminable
4. Dump, compress and encrypt every database
5. Purge expired backups (only if the dump stage succeeded)
6. Publish metrics
7. Release the lock (on every path, including signals)
"""

import random
import signal
import logging
import time
from datetime import datetime
from typing import Any, Dict, Optional

from clusterdump.models import LockResult, Role, Run, RunStatus
from clusterdump.utils.crypto import EncryptionError, FileEncryptor
from .compression import normalize_host_identity
from .dump import DumpPipeline, EnumerationError
from .lock import LockError, LockManager
from .metrics import MetricsPublisher
from .retention import RetentionError, RetentionManager
from .role import RoleDetector
from .sources import DatabaseUnavailableError, MariaDBSource, SourceError


logger = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)


class RunInterrupted(Exception):
    """Raised from a signal handler to abort the run."""

    def __init__(self, signum: int):
        self.signum = signum
        super().__init__(f"Interrupted by {signal.Signals(signum).name}")


class BackupExecutor:
    """
    Orchestrates the complete backup workflow for the local node.
    """

    def __init__(self, config: Dict[str, Any], source=None, lock=None, encryptor=None,
                 retention=None, metrics=None):
        """
        Initialize backup executor.

        Collaborators default to the ones built from config; tests pass their own.

        Args:
            config: Settings dict (see clusterdump.config.get_config)
        """
        self.config = config
        self.source = source or MariaDBSource(config)
        self.lock = lock or LockManager(config['LOCK_FILE'], config.get('LOCK_STALE_CHECK', False))
        self.encryptor = encryptor
        self.retention = retention or RetentionManager(config.get('KEEP_DIRNAME', 'keep'))
        self.metrics = metrics or MetricsPublisher(
            config['METRICS_DIR'],
            config.get('METRICS_FILENAME', 'node_file_database_backup.prom'),
            config.get('METRICS_RECENT_DIRS', 7)
        )
        self.host_identity = config.get('HOST_IDENTITY') or normalize_host_identity()
        self.run = None
        self._previous_handlers = {}
        self._cancel_signum = None

    def execute(self) -> Run:
        """
        Execute one backup run.

        Returns:
            Run describing the outcome; Run.exit_code is the process exit code
        """
        self.run = Run(started_at=datetime.now(), host_identity=self.host_identity)
        logger.info(f"Starting backup run for {self.host_identity}")

        self._install_signal_handlers()
        try:
            self.run.status = self._execute_workflow()

        except RunInterrupted as e:
            self.run.status = RunStatus.INTERRUPTED
            self.run.reason = str(e)
            logger.error(f"Backup run aborted: {e}")

        except (SourceError, EnumerationError, EncryptionError, LockError, OSError) as e:
            self.run.status = RunStatus.FAILED
            self.run.reason = str(e)
            logger.error(f"Backup run failed: {e}")

        finally:
            self.lock.release()
            self.source.cleanup()
            self._restore_signal_handlers()
            self.run.completed_at = datetime.now()

        logger.info(f"Backup run finished: {self.run.status.value} (exit code {self.run.exit_code})")
        return self.run

    def _execute_workflow(self) -> RunStatus:
        """Execute the main workflow steps and return the final status."""
        # Step 1: Liveness
        self.source.ping()

        # Step 2: Cluster lock
        self._sleep_jitter()
        if self.lock.acquire() is LockResult.ALREADY_HELD:
            self.run.reason = "Lock held by another node"
            return RunStatus.LOCK_HELD
        self._check_cancelled()

        # Step 3: Role
        self.run.role = RoleDetector(self.source).detect_role()
        if not self.run.role.backup_eligible:
            self.run.reason = "No write queries found and replication is not running or caught up"
            logger.info(f"{self.run.reason}. Exiting.")
            return RunStatus.ROLE_UNDETERMINABLE

        if self.run.role is Role.SECONDARY:
            logger.info("Replication is good, proceeding with backup on secondary server.")
        else:
            logger.info("Proceeding with backup on primary server.")

        # Step 4: Dumps
        pipeline = DumpPipeline(
            self.source,
            self._get_encryptor(),
            self.config.get('EXCLUDED_SCHEMAS'),
            self.config.get('COMPRESSION_PRESET', 1),
            check_cancelled=self._check_cancelled
        )
        try:
            self.run.dump_result = pipeline.run_dumps(
                self.config['DUMP_DEST'], self.host_identity, datetime.now().date()
            )
        except (EnumerationError, SourceError, OSError):
            # Metrics still reflect the failed attempt; retention is skipped
            self._publish_metrics()
            raise
        self._check_cancelled()

        # Step 5: Retention
        self._purge()

        # Step 6: Metrics
        self._publish_metrics()

        return RunStatus.SUCCESS

    def _get_encryptor(self) -> FileEncryptor:
        if self.encryptor is None:
            self.encryptor = FileEncryptor.from_password_file(
                self.config['AES_PASSWORD_FILE'],
                self.config.get('ENCRYPTION_PBKDF2_ITERATIONS', 0)
            )
        return self.encryptor

    def _purge(self):
        try:
            self.run.retention = self.retention.purge(
                self.config['DUMP_DEST'], self.config['DUMP_EXPIRE_DAYS']
            )
        except RetentionError as e:
            logger.error(f"Retention skipped: {e}")

    def _publish_metrics(self):
        try:
            self.run.metrics_path = self.metrics.publish(self.config['DUMP_DEST'], self.host_identity)
        except OSError as e:
            logger.error(f"Failed to publish metrics: {e}")

    def _sleep_jitter(self):
        jitter_ms = self.config.get('LOCK_JITTER_MS', 0)
        if jitter_ms > 0:
            time.sleep(random.randint(1, jitter_ms) / 1000.0)

    def cancel(self, signum: int):
        """
        Ask a run executing in another thread to stop.

        The current mysqldump is killed and the run raises RunInterrupted at
        its next checkpoint, releasing the lock from its own thread.
        """
        self._cancel_signum = signum
        logger.warning(f"Cancelling backup run due to {signal.Signals(signum).name} signal.")
        self.source.terminate_dump()

    def _check_cancelled(self):
        if self._cancel_signum is not None:
            raise RunInterrupted(self._cancel_signum)

    def _handle_signal(self, signum, frame):
        self.lock.release()
        logger.warning(f"Lockfile released due to {signal.Signals(signum).name} signal.")
        raise RunInterrupted(signum)

    def _install_signal_handlers(self):
        for signum in HANDLED_SIGNALS:
            try:
                self._previous_handlers[signum] = signal.signal(signum, self._handle_signal)
            except ValueError:
                # Not in the main thread (e.g. under a thread-pool scheduler)
                logger.debug(f"Cannot install handler for {signal.Signals(signum).name}")

    def _restore_signal_handlers(self):
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers = {}


def run_backup(config: Dict[str, Any], source: Optional[MariaDBSource] = None) -> Run:
    """
    Execute one backup run from configuration.

    Args:
        config: Settings dict
        source: Optional database source override

    Returns:
        Run with results
    """
    executor = BackupExecutor(config, source=source)
    return executor.execute()
