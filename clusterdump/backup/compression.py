"""
Compression and naming for dump artifacts.

Dumps are streamed into an xz container at a low preset:
  <destination>/<host>.<YYYY-MM-DD>/<database>.sql.xz
and encrypted to <database>.sql.xz.enc afterwards.
"""

import os
import lzma
import socket
from datetime import date as date_type
from typing import Callable, BinaryIO, Optional


DUMP_EXTENSION = 'sql'
COMPRESSED_EXTENSION = 'xz'
ENCRYPTED_EXTENSION = 'enc'


class CompressionError(Exception):
    """Raised when a compressed dump cannot be written."""
    pass


def create_compressed_dump(
    output_path: str,
    write_dump: Callable[[BinaryIO], None],
    preset: int = 1
) -> str:
    """
    Stream a dump into an xz-compressed file.

    Args:
        output_path: Full path of the .sql.xz file to create
        write_dump: Callable that writes the raw dump into the given stream
        preset: xz preset (0-9), low values favour speed

    Returns:
        output_path

    Raises:
        CompressionError: If the compressed file cannot be written
        Exception: Whatever write_dump raises (partial file is removed first)
    """
    if not 0 <= preset <= 9:
        raise ValueError(f"Invalid xz preset: {preset}. Valid range: 0-9")

    try:
        with lzma.open(output_path, 'wb', preset=preset) as compressed:
            write_dump(compressed)
        return output_path
    except (lzma.LZMAError, OSError) as e:
        remove_partial(output_path)
        raise CompressionError(f"Failed to compress {output_path}: {e}")
    except Exception:
        remove_partial(output_path)
        raise


def remove_partial(path: str):
    """Remove a partially written file, if present."""
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


def normalize_host_identity(hostname: Optional[str] = None) -> str:
    """
    Derive the cluster-wide identity of a host.

    Takes the short hostname and strips a trailing node ordinal so that every
    member of a cluster shares one name, e.g. ``maria-db-02.example.com``
    becomes ``maria-db``.

    Args:
        hostname: Hostname to normalize (defaults to the local hostname)

    Returns:
        Normalized host identity
    """
    if hostname is None:
        hostname = socket.gethostname()

    short_name = hostname.split('.')[0]

    # Cut at the last '-' that is followed by a digit
    for index in range(len(short_name) - 2, -1, -1):
        if short_name[index] == '-' and short_name[index + 1].isdigit():
            return short_name[:index]

    return short_name


def generate_backup_dirname(host_identity: str, backup_date: date_type) -> str:
    """
    Generate the backup directory name for a run.

    Format: {host_identity}.{YYYY-MM-DD}
    """
    return f"{host_identity}.{backup_date.strftime('%Y-%m-%d')}"


def compressed_filename(database: str) -> str:
    return f"{database}.{DUMP_EXTENSION}.{COMPRESSED_EXTENSION}"


def encrypted_filename(database: str) -> str:
    return f"{compressed_filename(database)}.{ENCRYPTED_EXTENSION}"


def database_from_filename(filename: str) -> str:
    """Recover the database name from an artifact filename (prefix before the first dot)."""
    return os.path.basename(filename).split('.', 1)[0]


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an artifact in bytes.

    Raises:
        CompressionError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise CompressionError(f"Archive not found: {archive_path}")
    except OSError as e:
        raise CompressionError(f"Failed to get archive size: {e}")
