"""
Backup health metrics for the node_exporter text-file collector.

Published gauges:
- node_file_database_backup_dir_recent_size_bytes{backup_dir}
- node_file_database_backup_dir_average_size_bytes
- node_file_database_dump_size_bytes{database}
- node_file_database_dump_latest_mtime{database}
"""

import os
import logging
from pathlib import Path
from typing import List

from prometheus_client import CollectorRegistry, Gauge, write_to_textfile

from .compression import COMPRESSED_EXTENSION, ENCRYPTED_EXTENSION, database_from_filename


logger = logging.getLogger(__name__)


def disk_usage_bytes(path: str) -> int:
    """Allocated size of a directory tree in bytes (same basis as ``du``)."""
    total = 0
    for dirpath, dirnames, filenames in os.walk(path):
        total += os.lstat(dirpath).st_blocks * 512
        for filename in filenames:
            total += os.lstat(os.path.join(dirpath, filename)).st_blocks * 512
    return total


class MetricsPublisher:
    """Computes size/age gauges over recent backup directories and writes them atomically."""

    def __init__(self, metrics_dir: str, metrics_filename: str = 'node_file_database_backup.prom',
                 recent_dirs: int = 7):
        """
        Args:
            metrics_dir: Text-file collector directory
            metrics_filename: Name of the .prom file inside metrics_dir
            recent_dirs: Number of recent backup directories to report
        """
        self.metrics_dir = metrics_dir
        self.metrics_filename = metrics_filename
        self.recent_dirs = recent_dirs

    @property
    def output_path(self) -> str:
        return os.path.join(self.metrics_dir, self.metrics_filename)

    def recent_backup_dirs(self, destination_root: str, host_identity: str) -> List[Path]:
        """Backup directories of this host, newest first."""
        root = Path(destination_root)
        if not root.is_dir():
            return []

        dirs = [
            entry for entry in root.iterdir()
            if entry.is_dir() and entry.name.startswith(host_identity)
        ]
        dirs.sort(key=lambda entry: (-entry.stat().st_mtime, entry.name))
        return dirs[:self.recent_dirs]

    def build_registry(self, destination_root: str, host_identity: str) -> CollectorRegistry:
        registry = CollectorRegistry()

        dir_size = Gauge(
            'node_file_database_backup_dir_recent_size_bytes',
            'On-disk size of a recent database backup directory',
            ['backup_dir'],
            registry=registry
        )
        average_size = Gauge(
            'node_file_database_backup_dir_average_size_bytes',
            'Average on-disk size of recent database backup directories',
            registry=registry
        )
        dump_size = Gauge(
            'node_file_database_dump_size_bytes',
            'Size of the latest encrypted dump per database',
            ['database'],
            registry=registry
        )
        dump_mtime = Gauge(
            'node_file_database_dump_latest_mtime',
            'Modification time of the latest encrypted dump per database',
            ['database'],
            registry=registry
        )

        recent = self.recent_backup_dirs(destination_root, host_identity)

        total = 0
        for backup_dir in recent:
            size = disk_usage_bytes(str(backup_dir))
            dir_size.labels(backup_dir=str(backup_dir)).set(size)
            total += size

        average_size.set(total // len(recent) if recent else 0)

        if recent:
            pattern = f"*.{COMPRESSED_EXTENSION}.{ENCRYPTED_EXTENSION}"
            for artifact in sorted(recent[0].rglob(pattern)):
                if not artifact.is_file():
                    continue
                stat = artifact.stat()
                database = database_from_filename(artifact.name)
                dump_size.labels(database=database).set(stat.st_size)
                dump_mtime.labels(database=database).set(int(stat.st_mtime))

        return registry

    def publish(self, destination_root: str, host_identity: str) -> str:
        """
        Regenerate the metrics file.

        The file is written to a pid-suffixed temporary name and renamed into
        place, so the collector never reads a partial file.

        Returns:
            Path of the metrics file
        """
        registry = self.build_registry(destination_root, host_identity)

        os.makedirs(self.metrics_dir, exist_ok=True)
        logger.info(f"Writing prom file {self.output_path}.")
        write_to_textfile(self.output_path, registry)
        return self.output_path
