"""
Retention policy enforcement for backups.

Removes dump files older than the expiry window from the destination tree,
then removes backup directories left empty. Anything under the keep
directory is preserved regardless of age.
"""

import time
import logging
from pathlib import Path
from typing import Any, Dict, List

from .compression import DUMP_EXTENSION


logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


class RetentionError(Exception):
    """Raised when the destination cannot be scanned."""
    pass


class RetentionManager:
    """
    Manages retention policy enforcement for the backup destination.
    """

    def __init__(self, keep_dirname: str = 'keep'):
        """
        Args:
            keep_dirname: Name of the directory exempt from retention
        """
        self.keep_dirname = keep_dirname

    def purge(self, destination_root: str, expiry_days: int) -> Dict[str, Any]:
        """
        Delete expired dump files and empty backup directories.

        A file is expired when its age in whole days exceeds expiry_days.

        Args:
            destination_root: Backup destination
            expiry_days: Retention window in days

        Returns:
            Dict with summary of cleanup operations:
            {
                'files_deleted': int,
                'dirs_deleted': int,
                'errors': List[str]
            }

        Raises:
            RetentionError: If the destination cannot be listed
        """
        root = Path(destination_root)
        if not root.is_dir():
            raise RetentionError(f"Destination does not exist: {destination_root}")

        summary = {
            'files_deleted': 0,
            'dirs_deleted': 0,
            'errors': []
        }

        now = time.time()
        for file_path in self._candidate_files(root):
            try:
                age_days = int((now - file_path.stat().st_mtime) // SECONDS_PER_DAY)
                if age_days <= expiry_days:
                    continue
                logger.info(f"Removing {file_path}.")
                file_path.unlink()
                summary['files_deleted'] += 1
            except OSError as e:
                error_msg = f"Failed to remove {file_path}: {e}"
                logger.error(error_msg)
                summary['errors'].append(error_msg)

        for dir_path in sorted(root.iterdir()):
            if not dir_path.is_dir() or dir_path.is_symlink() or dir_path.name == self.keep_dirname:
                continue
            try:
                if any(dir_path.iterdir()):
                    continue
                logger.info(f"Removing {dir_path}.")
                dir_path.rmdir()
                summary['dirs_deleted'] += 1
            except OSError as e:
                error_msg = f"Failed to remove directory {dir_path}: {e}"
                logger.error(error_msg)
                summary['errors'].append(error_msg)

        logger.info(
            f"Purge complete. Files deleted: {summary['files_deleted']}, "
            f"directories deleted: {summary['dirs_deleted']}, errors: {len(summary['errors'])}"
        )
        return summary

    def _candidate_files(self, root: Path) -> List[Path]:
        """Regular dump files at depth one or two, outside the keep directory."""
        marker = f".{DUMP_EXTENSION}"
        candidates = []

        for entry in sorted(root.iterdir()):
            if entry.name == self.keep_dirname:
                continue
            if entry.is_file():
                children = [entry]
            elif entry.is_dir() and not entry.is_symlink():
                children = [child for child in sorted(entry.iterdir()) if child.is_file()]
            else:
                continue

            for child in children:
                if child.is_symlink() or marker not in child.name:
                    continue
                candidates.append(child)

        return candidates
