"""
Backup module for clusterdump.

This module handles the core backup functionality including:
- Cluster lock
- Replication role detection
- Database dumps (mysqldump, xz, encryption)
- Retention policy enforcement
- Metrics publishing
- Execution orchestration
"""

from .executor import BackupExecutor, run_backup
from .lock import LockManager
from .role import RoleDetector, classify_role
from .sources import MariaDBSource
from .dump import DumpPipeline
from .retention import RetentionManager
from .metrics import MetricsPublisher

__all__ = [
    'BackupExecutor',
    'run_backup',
    'LockManager',
    'RoleDetector',
    'classify_role',
    'MariaDBSource',
    'DumpPipeline',
    'RetentionManager',
    'MetricsPublisher'
]
