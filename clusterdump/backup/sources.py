"""
MariaDB/MySQL source for backup operations.

Metadata (liveness, database list, replication status, process list) is read
through a pymysql connection; dumps are streamed from the mysqldump client.
"""

import os
import shutil
import logging
import subprocess
import tempfile
from typing import Any, BinaryIO, Dict, List, Optional

import pymysql
import pymysql.cursors


logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class SourceError(Exception):
    """Raised when the database cannot be queried or dumped."""
    pass


class DatabaseUnavailableError(SourceError):
    """Raised when the database server does not answer a ping."""
    pass


class MariaDBSource:
    """
    Handler for a local MariaDB/MySQL server.

    The pymysql connection is opened lazily and reused for every metadata
    query of a run.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize database source.

        Args:
            config: Settings dict with keys:
                - MYSQL_HOST / MYSQL_PORT: server address
                - MYSQL_USER / MYSQL_PASSWORD: credentials (optional with a defaults file)
                - MYSQL_DEFAULTS_FILE: client option file (e.g. /root/.my.cnf)
                - MYSQL_CONNECT_TIMEOUT: connect timeout in seconds
                - MYSQLDUMP_BIN: mysqldump executable
        """
        self.host = config.get('MYSQL_HOST', 'localhost')
        self.port = config.get('MYSQL_PORT', 3306)
        self.user = config.get('MYSQL_USER')
        self.password = config.get('MYSQL_PASSWORD')
        self.defaults_file = config.get('MYSQL_DEFAULTS_FILE')
        self.connect_timeout = config.get('MYSQL_CONNECT_TIMEOUT', 10)
        self.mysqldump_bin = config.get('MYSQLDUMP_BIN', 'mysqldump')

        self.connection = None
        self._dump_process = None

    def _has_defaults_file(self) -> bool:
        return bool(self.defaults_file) and os.path.exists(self.defaults_file)

    def _connect(self):
        """
        Establish the metadata connection.

        Raises:
            SourceError: If connection fails
        """
        connect_kwargs = {
            'host': self.host,
            'port': self.port,
            'charset': 'utf8mb4',
            'connect_timeout': self.connect_timeout,
            'cursorclass': pymysql.cursors.DictCursor,
        }
        if self.user:
            connect_kwargs['user'] = self.user
        if self.password:
            connect_kwargs['password'] = self.password
        if self._has_defaults_file():
            connect_kwargs['read_default_file'] = self.defaults_file

        try:
            self.connection = pymysql.connect(**connect_kwargs)
        except pymysql.MySQLError as e:
            raise SourceError(f"Failed to connect to {self.host}:{self.port}: {e}")

    def _query(self, sql: str) -> List[Dict[str, Any]]:
        if self.connection is None:
            self._connect()

        try:
            with self.connection.cursor() as cursor:
                cursor.execute(sql)
                return list(cursor.fetchall())
        except pymysql.MySQLError as e:
            raise SourceError(f"Query failed ({sql}): {e}")

    def ping(self):
        """
        Check that the server is alive.

        Raises:
            DatabaseUnavailableError: If the server cannot be reached
        """
        try:
            if self.connection is None:
                self._connect()
            self.connection.ping(reconnect=False)
        except (SourceError, pymysql.MySQLError) as e:
            raise DatabaseUnavailableError(f"MySQL is not running: {e}")

    def list_databases(self, excluded: Optional[List[str]] = None) -> List[str]:
        """
        List databases on the server.

        Args:
            excluded: Schema names to leave out (e.g. information_schema)

        Returns:
            Database names in server order
        """
        excluded = set(excluded or [])
        rows = self._query("SHOW DATABASES")
        return [
            row['Database'] for row in rows
            if row.get('Database') and row['Database'] not in excluded
        ]

    def replication_status(self) -> Optional[Dict[str, Any]]:
        """
        Return the replica status row, or None if this server is not a replica.
        """
        rows = self._query("SHOW SLAVE STATUS")
        return rows[0] if rows else None

    def process_list(self) -> List[Dict[str, Any]]:
        """Return the rows of SHOW FULL PROCESSLIST."""
        return self._query("SHOW FULL PROCESSLIST")

    def dump_command(self, database: str) -> List[str]:
        """Build the mysqldump command line for a single database."""
        cmd = [self.mysqldump_bin]
        # --defaults-extra-file must be the first option
        if self._has_defaults_file():
            cmd.append(f"--defaults-extra-file={self.defaults_file}")
        cmd += ['--databases', database, '--single-transaction', '--skip-lock-tables']
        return cmd

    def dump_database(self, database: str, output: BinaryIO):
        """
        Stream a consistent logical dump of one database into a binary file object.

        Args:
            database: Database name
            output: Writable binary stream (e.g. a compressor)

        Raises:
            SourceError: If mysqldump cannot run or exits non-zero
        """
        cmd = self.dump_command(database)

        with tempfile.TemporaryFile() as stderr_file:
            try:
                proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=stderr_file)
            except OSError as e:
                raise SourceError(f"Failed to start {self.mysqldump_bin}: {e}")

            self._dump_process = proc
            returncode = None
            try:
                try:
                    shutil.copyfileobj(proc.stdout, output, CHUNK_SIZE)
                except OSError as e:
                    raise SourceError(f"Failed to write dump of {database}: {e}")
                finally:
                    proc.stdout.close()

                returncode = proc.wait()
            finally:
                # Never leave mysqldump running when the copy was cut short
                if returncode is None:
                    proc.kill()
                    proc.wait()
                self._dump_process = None

            if returncode != 0:
                stderr_file.seek(0)
                stderr = stderr_file.read().decode('utf-8', errors='replace').strip()
                raise SourceError(f"mysqldump exited with {returncode} for {database}: {stderr}")

    def terminate_dump(self):
        """
        Kill the mysqldump process of a dump in progress, if any.

        Called from another thread; the dump then fails with a non-zero exit.
        """
        proc = self._dump_process
        if proc is not None and proc.poll() is None:
            logger.warning(f"Killing mysqldump (pid {proc.pid})")
            proc.kill()

    def cleanup(self):
        """Close the metadata connection."""
        if self.connection:
            try:
                self.connection.close()
            except pymysql.MySQLError as e:
                logger.debug(f"Ignoring error while closing connection: {e}")
            self.connection = None
