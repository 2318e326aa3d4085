"""
Encryption of dump artifacts.

Produces the OpenSSL ``enc`` container (``Salted__`` + 8-byte salt +
AES-128-CBC ciphertext with PKCS7 padding) so artifacts can be restored
without this tool:

    openssl enc -d -aes-128-cbc -md sha256 -pass file:/root/.pass.pass -in db.sql.xz.enc

With PBKDF2 enabled, add ``-pbkdf2 -iter <iterations>``.
"""

import os
from pathlib import Path

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


SALT_MAGIC = b'Salted__'
SALT_LENGTH = 8
KEY_LENGTH = 16  # AES-128
IV_LENGTH = 16
CHUNK_SIZE = 1024 * 1024


class EncryptionError(Exception):
    """Raised when an artifact cannot be encrypted."""
    pass


def derive_key_and_iv(password: bytes, salt: bytes, iterations: int = 0):
    """
    Derive AES key and IV the way ``openssl enc`` does.

    Args:
        password: Passphrase bytes
        salt: 8-byte salt
        iterations: 0 for EVP_BytesToKey (SHA-256, one round), otherwise PBKDF2 iterations

    Returns:
        (key, iv) tuple
    """
    if iterations:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH + IV_LENGTH,
            salt=salt,
            iterations=iterations,
        )
        material = kdf.derive(password)
    else:
        material = b''
        block = b''
        while len(material) < KEY_LENGTH + IV_LENGTH:
            digest = hashes.Hash(hashes.SHA256())
            digest.update(block + password + salt)
            block = digest.finalize()
            material += block

    return material[:KEY_LENGTH], material[KEY_LENGTH:KEY_LENGTH + IV_LENGTH]


def read_password_file(password_file: str) -> bytes:
    """
    Read the passphrase from the first line of a password file.

    Raises:
        EncryptionError: If the file is missing, unreadable or empty
    """
    try:
        content = Path(password_file).read_bytes()
    except OSError as e:
        raise EncryptionError(f"Cannot read password file {password_file}: {e}")

    lines = content.splitlines()
    password = lines[0] if lines else b''
    if not password:
        raise EncryptionError(f"Password file {password_file} is empty")
    return password


class FileEncryptor:
    """Encrypts files with a symmetric key derived from a pre-provisioned passphrase."""

    def __init__(self, password: bytes, iterations: int = 0):
        """
        Args:
            password: Passphrase bytes
            iterations: PBKDF2 iterations (0 keeps the legacy OpenSSL key derivation)
        """
        self._password = password
        self.iterations = iterations

    @classmethod
    def from_password_file(cls, password_file: str, iterations: int = 0) -> 'FileEncryptor':
        return cls(read_password_file(password_file), iterations)

    def encrypt_file(self, source_path: str, output_path: str) -> str:
        """
        Encrypt source_path into output_path.

        A partially written output file is removed on failure.

        Returns:
            output_path

        Raises:
            EncryptionError: If reading, encrypting or writing fails
        """
        salt = os.urandom(SALT_LENGTH)
        key, iv = derive_key_and_iv(self._password, salt, self.iterations)

        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        padder = padding.PKCS7(algorithms.AES.block_size).padder()

        try:
            with open(source_path, 'rb') as src, open(output_path, 'wb') as dst:
                dst.write(SALT_MAGIC + salt)
                while True:
                    chunk = src.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    dst.write(encryptor.update(padder.update(chunk)))
                dst.write(encryptor.update(padder.finalize()) + encryptor.finalize())
            return output_path
        except OSError as e:
            try:
                os.remove(output_path)
            except FileNotFoundError:
                pass
            raise EncryptionError(f"Failed to encrypt {source_path}: {e}")
