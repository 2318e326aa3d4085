"""
Run and dump records for a single backup invocation.

Nothing here is persisted; a Run lives for one process and is reported
through the log and the exit code.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class LockResult(Enum):
    ACQUIRED = 'acquired'
    ALREADY_HELD = 'already_held'


class Role(Enum):
    """Replication role of the local node as far as backups are concerned."""

    PRIMARY = 'primary'
    SECONDARY = 'secondary'
    UNDETERMINABLE = 'undeterminable'

    @property
    def backup_eligible(self) -> bool:
        return self is not Role.UNDETERMINABLE


class DumpOutcome(Enum):
    SUCCESS = 'success'
    DUMP_FAILED = 'dump_failed'
    ENCRYPTION_FAILED = 'encryption_failed'


class RunStatus(Enum):
    """Final outcome of a Run and the exit code it maps to."""

    SUCCESS = 'success'
    LOCK_HELD = 'lock_held'
    ROLE_UNDETERMINABLE = 'role_undeterminable'
    FAILED = 'failed'
    INTERRUPTED = 'interrupted'

    @property
    def exit_code(self) -> int:
        if self in (RunStatus.FAILED, RunStatus.INTERRUPTED):
            return 1
        return 0


@dataclass
class DumpRecord:
    database: str
    compressed_path: str
    artifact_path: str
    outcome: Optional[DumpOutcome] = None
    encrypted: bool = False
    error_message: Optional[str] = None
    size_bytes: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is DumpOutcome.SUCCESS


@dataclass
class DumpResult:
    backup_dir: str
    records: List[DumpRecord] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.records)

    @property
    def succeeded(self) -> int:
        return sum(1 for record in self.records if record.succeeded)

    @property
    def failed_databases(self) -> List[str]:
        return [record.database for record in self.records if not record.succeeded]


@dataclass
class Run:
    started_at: datetime
    host_identity: str
    role: Optional[Role] = None
    dump_result: Optional[DumpResult] = None
    status: Optional[RunStatus] = None
    reason: Optional[str] = None
    completed_at: Optional[datetime] = None
    retention: Optional[Dict[str, Any]] = None
    metrics_path: Optional[str] = None

    @property
    def exit_code(self) -> int:
        if self.status is None:
            return 1
        return self.status.exit_code
