"""
Shared pytest fixtures for clusterdump tests.

This module provides fixtures for:
- Test configuration rooted in a temporary directory
- A fake database source (no MariaDB server needed)
- Encryption fixtures and an OpenSSL-compatible decrypt helper
- Backup tree helpers for retention/metrics tests
"""

import os
import time

import pytest
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from clusterdump.config import get_config
from clusterdump.backup.sources import DatabaseUnavailableError, SourceError
from clusterdump.utils.crypto import FileEncryptor, derive_key_and_iv


TEST_PASSWORD = b'test_password_123'


class FakeSource:
    """
    In-memory stand-in for MariaDBSource.

    Args:
        databases: Names returned by list_databases
        failing: Databases whose dump raises SourceError
        replication: Row returned by replication_status (None = not a replica)
        processes: Rows returned by process_list
        alive: False makes ping() raise DatabaseUnavailableError
    """

    def __init__(self, databases=None, failing=None, replication=None, processes=None, alive=True):
        self.databases = list(databases or [])
        self.failing = set(failing or [])
        self.replication = replication
        self.processes = list(processes or [])
        self.alive = alive
        self.dumped = []
        self.terminated = False
        self.cleaned_up = False

    def ping(self):
        if not self.alive:
            raise DatabaseUnavailableError("MySQL is not running: connection refused")

    def list_databases(self, excluded=None):
        excluded = set(excluded or [])
        return [name for name in self.databases if name not in excluded]

    def replication_status(self):
        return self.replication

    def process_list(self):
        return self.processes

    def dump_database(self, database, output):
        self.dumped.append(database)
        output.write(f"-- MariaDB dump of {database}\n".encode())
        if database in self.failing:
            raise SourceError(f"mysqldump exited with 2 for {database}: Got error: 1045")
        output.write(f"CREATE DATABASE `{database}`;\n".encode() * 100)

    def terminate_dump(self):
        self.terminated = True

    def cleanup(self):
        self.cleaned_up = True


@pytest.fixture
def password_file(tmp_path):
    """Password file holding TEST_PASSWORD on its first line."""
    path = tmp_path / '.pass.pass'
    path.write_bytes(TEST_PASSWORD + b'\n')
    return path


@pytest.fixture
def config(tmp_path, password_file):
    """
    Testing configuration with every path inside tmp_path.

    Host identity: testdb
    """
    settings = get_config(
        'testing',
        DUMP_DEST=str(tmp_path / 'dumps'),
        LOCK_FILE=str(tmp_path / 'shared' / 'mariadb_backup.lock'),
        METRICS_DIR=str(tmp_path / 'node_exporter'),
        LOG_FILE=str(tmp_path / 'logs' / 'clusterdump.log'),
        AES_PASSWORD_FILE=str(password_file),
    )
    os.makedirs(settings['DUMP_DEST'], exist_ok=True)
    os.makedirs(os.path.dirname(settings['LOCK_FILE']), exist_ok=True)
    return settings


@pytest.fixture
def fake_source():
    """Primary node (not a replica) with two databases."""
    return FakeSource(databases=['information_schema', 'app', 'billing', 'performance_schema'])


@pytest.fixture
def encryptor():
    return FileEncryptor(TEST_PASSWORD)


@pytest.fixture
def decrypt():
    """
    Decrypt bytes in the ``openssl enc -aes-128-cbc -md sha256`` format.
    """
    def _decrypt(data, password=TEST_PASSWORD, iterations=0):
        assert data[:8] == b'Salted__'
        salt = data[8:16]
        key, iv = derive_key_and_iv(password, salt, iterations)
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(data[16:]) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        return unpadder.update(padded) + unpadder.finalize()

    return _decrypt


@pytest.fixture
def set_age():
    """Set a path's mtime to `days` days (plus an hour) in the past."""
    def _set_age(path, days):
        timestamp = time.time() - days * 86400 - 3600
        os.utime(path, (timestamp, timestamp))
        return timestamp

    return _set_age


@pytest.fixture
def make_source():
    """Factory for FakeSource instances with custom databases/replication state."""
    return FakeSource
