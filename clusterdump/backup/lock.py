"""
Cluster-wide advisory lock.

Every node of the cluster runs the backup on the same schedule; the marker
file on shared storage lets only one of them proceed. The marker records
the owning pid and hostname for troubleshooting.

Usage:
    lock = LockManager('/mnt/shared/mariadb_backup.lock')
    if lock.acquire() is LockResult.ACQUIRED:
        try:
            ...
        finally:
            lock.release()
"""

import os
import socket
import logging
from pathlib import Path
from typing import Optional, Tuple

from clusterdump.models import LockResult


logger = logging.getLogger(__name__)


class LockError(Exception):
    """Raised when the lock marker cannot be written."""
    pass


class LockManager:
    """
    Exclusive-create lock marker with idempotent release.

    Only the instance that created the marker ever removes it.
    """

    def __init__(self, lock_file: str, stale_check: bool = False):
        """
        Initialize lock manager.

        Args:
            lock_file: Path of the marker, normally on storage shared by all nodes
            stale_check: Reclaim markers left by dead processes on this host
        """
        self.lock_file = Path(lock_file)
        self.stale_check = stale_check
        self.hostname = socket.gethostname()
        self._held = False

    @property
    def is_held(self) -> bool:
        return self._held

    def acquire(self) -> LockResult:
        """
        Create the lock marker.

        Returns:
            LockResult.ACQUIRED, or LockResult.ALREADY_HELD if the marker exists

        Raises:
            LockError: If the marker cannot be created for any other reason
        """
        if self._held:
            return LockResult.ACQUIRED

        if self._create_marker():
            return LockResult.ACQUIRED

        if self.stale_check and self._is_stale():
            logger.warning(f"Removing stale lockfile {self.lock_file} ({self._describe_owner()})")
            try:
                self.lock_file.unlink()
            except FileNotFoundError:
                pass
            if self._create_marker():
                return LockResult.ACQUIRED

        logger.info(
            f"Lockfile {self.lock_file} exists ({self._describe_owner()}). "
            f"Another instance may be running on a different server."
        )
        return LockResult.ALREADY_HELD

    def release(self):
        """Remove the marker if this instance holds it. Safe to call repeatedly."""
        if not self._held:
            return

        self._held = False
        try:
            self.lock_file.unlink()
            logger.info(f"Lockfile {self.lock_file} removed.")
        except FileNotFoundError:
            logger.warning(f"Lockfile {self.lock_file} was already removed.")

    def _create_marker(self) -> bool:
        try:
            fd = os.open(str(self.lock_file), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        except OSError as e:
            raise LockError(f"Failed to create lockfile {self.lock_file}: {e}")

        self._held = True
        with os.fdopen(fd, 'w') as f:
            f.write(f"{os.getpid()}\n")
            f.write(f"{self.hostname}\n")

        logger.info(f"Lockfile created at {self.lock_file} with PID {os.getpid()}")
        return True

    def _read_owner(self) -> Tuple[Optional[int], Optional[str]]:
        try:
            lines = self.lock_file.read_text().splitlines()
        except OSError:
            return None, None

        pid = None
        if lines and lines[0].strip().isdigit():
            pid = int(lines[0].strip())
        hostname = lines[1].strip() if len(lines) > 1 else None
        return pid, hostname

    def _describe_owner(self) -> str:
        pid, hostname = self._read_owner()
        return f"pid={pid}, host={hostname}"

    def _is_stale(self) -> bool:
        """A marker is stale only if it names this host and a pid that is gone."""
        pid, hostname = self._read_owner()
        if pid is None or hostname != self.hostname:
            return False
        return not _pid_alive(pid)


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True
