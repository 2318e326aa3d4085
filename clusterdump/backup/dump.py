"""
Dump pipeline - one compressed, encrypted artifact per database.

For each database:
1. Stream mysqldump output through xz into <db>.sql.xz
2. Encrypt to <db>.sql.xz.enc
3. Remove <db>.sql.xz once encryption succeeded

A failure on one database is logged and the next one is attempted. When
encryption fails the compressed file is left behind for manual recovery.
"""

import os
import logging
from datetime import date as date_type
from typing import Callable, List, Optional

from clusterdump.models import DumpOutcome, DumpRecord, DumpResult
from clusterdump.utils.crypto import EncryptionError
from .compression import (
    CompressionError,
    compressed_filename,
    create_compressed_dump,
    encrypted_filename,
    generate_backup_dirname,
    get_archive_size,
    remove_partial,
)
from .sources import SourceError


logger = logging.getLogger(__name__)


class EnumerationError(Exception):
    """Raised when the server returns no databases to back up."""
    pass


class DumpPipeline:
    """Dumps every user database of a source into a dated backup directory."""

    def __init__(self, source, encryptor, excluded_schemas: Optional[List[str]] = None,
                 compression_preset: int = 1, check_cancelled: Optional[Callable[[], None]] = None):
        """
        Args:
            source: MariaDBSource providing list_databases/dump_database
            encryptor: FileEncryptor used for every artifact
            excluded_schemas: System schemas never dumped
            compression_preset: xz preset for the dump stream
            check_cancelled: Called before each database and before each
                encryption; raises to abort the remaining work
        """
        self.source = source
        self.encryptor = encryptor
        self.excluded_schemas = excluded_schemas or []
        self.compression_preset = compression_preset
        self.check_cancelled = check_cancelled or (lambda: None)

    def run_dumps(self, destination_root: str, host_identity: str, backup_date: date_type) -> DumpResult:
        """
        Dump all databases into <destination_root>/<host_identity>.<date>.

        Returns:
            DumpResult with one record per attempted database

        Raises:
            EnumerationError: If the database list is empty
            SourceError: If the database list cannot be queried
            OSError: If the backup directory cannot be created
        """
        backup_dir = os.path.join(destination_root, generate_backup_dirname(host_identity, backup_date))
        logger.info(f"Starting local dump to {backup_dir}.")

        databases = self.source.list_databases(self.excluded_schemas)
        if not databases:
            raise EnumerationError("Failed to retrieve database list.")

        os.makedirs(backup_dir, exist_ok=True)
        result = DumpResult(backup_dir=backup_dir)

        for database in databases:
            self.check_cancelled()
            result.records.append(self._dump_one(database, backup_dir))

        logger.info(
            f"Dump complete: {result.succeeded}/{result.attempted} databases succeeded"
            + (f", failed: {', '.join(result.failed_databases)}" if result.failed_databases else "")
        )
        return result

    def _dump_one(self, database: str, backup_dir: str) -> DumpRecord:
        record = DumpRecord(
            database=database,
            compressed_path=os.path.join(backup_dir, compressed_filename(database)),
            artifact_path=os.path.join(backup_dir, encrypted_filename(database)),
        )

        logger.info(f"Dumping {database} to {record.compressed_path}.")
        try:
            create_compressed_dump(
                record.compressed_path,
                lambda stream: self.source.dump_database(database, stream),
                self.compression_preset
            )
        except (SourceError, CompressionError) as e:
            record.outcome = DumpOutcome.DUMP_FAILED
            record.error_message = str(e)
            logger.error(f"mysqldump failed for {database}: {e}. Skipping to next database.")
            return record

        logger.info(f"Dump of {database} successful.")
        self.check_cancelled()

        logger.info(f"Encrypting {record.compressed_path}.")
        try:
            self.encryptor.encrypt_file(record.compressed_path, record.artifact_path)
        except EncryptionError as e:
            record.outcome = DumpOutcome.ENCRYPTION_FAILED
            record.error_message = str(e)
            logger.error(f"Encryption of {record.compressed_path} failed: {e}")
            return record

        record.encrypted = True
        record.outcome = DumpOutcome.SUCCESS
        record.size_bytes = get_archive_size(record.artifact_path)
        remove_partial(record.compressed_path)
        logger.info(f"Encryption of {record.compressed_path} complete ({record.size_bytes} bytes).")
        return record
