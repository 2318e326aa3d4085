"""
Replication role detection.

Decides whether the local node is safe to back up without per-node role
configuration:

1. A server that is not a replica is treated as the primary.
2. A replica is safe when both replication threads run and lag is zero.
3. Otherwise in-flight write statements mark the node as the primary.
4. Anything else is undeterminable and the run is skipped.
"""

import re
import logging
from typing import Any, Dict, List, Optional

from clusterdump.models import Role


logger = logging.getLogger(__name__)

# Statement keyword after optional leading whitespace and comments
WRITE_STATEMENT_PATTERN = re.compile(
    r'\A(?:\s|/\*.*?\*/|--[^\n]*(?:\n|\Z)|#[^\n]*(?:\n|\Z))*'
    r'(INSERT|UPDATE|DELETE|ALTER|CREATE|DROP)\b',
    re.IGNORECASE | re.DOTALL
)


def classify_role(
    replica_configured: bool,
    io_running: Optional[str] = None,
    sql_running: Optional[str] = None,
    lag_seconds: Optional[int] = None,
    write_query_count: int = 0
) -> Role:
    """
    Classify the node from replication status and write activity.

    Args:
        replica_configured: Whether the server reports replica status at all
        io_running: Replica I/O thread state ('Yes', 'No', 'Connecting', ...)
        sql_running: Replica SQL thread state
        lag_seconds: Seconds behind the source, None if unknown
        write_query_count: Number of in-flight write statements

    Returns:
        Role
    """
    if not replica_configured:
        return Role.PRIMARY

    if io_running == 'Yes' and sql_running == 'Yes' and lag_seconds == 0:
        return Role.SECONDARY

    if write_query_count > 0:
        return Role.PRIMARY

    return Role.UNDETERMINABLE


def count_write_queries(process_list: List[Dict[str, Any]]) -> int:
    """Count processlist rows executing a write statement."""
    count = 0
    for row in process_list:
        if row.get('Command') != 'Query':
            continue
        info = row.get('Info') or ''
        if WRITE_STATEMENT_PATTERN.match(info):
            count += 1
    return count


def _status_field(status: Dict[str, Any], *names):
    for name in names:
        if name in status:
            return status[name]
    return None


def _parse_lag(value) -> Optional[int]:
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class RoleDetector:
    """Runs the status queries against a source and classifies the node."""

    def __init__(self, source):
        """
        Args:
            source: MariaDBSource (or anything with replication_status/process_list)
        """
        self.source = source

    def detect_role(self) -> Role:
        """
        Determine the backup role of the local node.

        Raises:
            SourceError: If the status queries fail
        """
        status = self.source.replication_status()

        if status is None:
            logger.info("This server is not a replication slave.")
            return classify_role(False)

        io_running = _status_field(status, 'Slave_IO_Running', 'Replica_IO_Running')
        sql_running = _status_field(status, 'Slave_SQL_Running', 'Replica_SQL_Running')
        lag_seconds = _parse_lag(_status_field(status, 'Seconds_Behind_Master', 'Seconds_Behind_Source'))

        role = classify_role(True, io_running, sql_running, lag_seconds)
        if role is Role.SECONDARY:
            logger.info("Replication is running and caught up.")
            return role

        logger.info(
            f"Replication is not caught up. Slave_IO_Running: {io_running}, "
            f"Slave_SQL_Running: {sql_running}, Seconds_Behind_Master: {lag_seconds}"
        )

        write_queries = count_write_queries(self.source.process_list())
        role = classify_role(True, io_running, sql_running, lag_seconds, write_queries)

        if role is Role.PRIMARY:
            logger.info(f"Found {write_queries} write queries, indicating this is the primary server.")
        else:
            logger.info("No write queries found and replication is not running or caught up.")

        return role
