"""Passphrase-based file encryption with Argon2id and AES-256-GCM.

Encrypted file layout::

    [u16 big-endian name length][original name, UTF-8]
    [16-byte salt][12-byte nonce][ciphertext + 16-byte tag]

The length-prefixed name is authenticated as associated data, so the stored
name cannot be altered without decryption failing.
"""

import logging
import os
import struct
import time

from argon2.low_level import Type, hash_secret_raw
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..vfs.errors import translate_errors


logger = logging.getLogger(__name__)

SALT_SIZE = 16
NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32

# Argon2id parameters; changing them breaks existing files
ARGON2_TIME_COST = 1
ARGON2_MEMORY_COST_KIB = 64 * 1024
ARGON2_PARALLELISM = 4

_NAME_LENGTH = struct.Struct(">H")
MAX_NAME_BYTES = 0xFFFF


class CryptoError(Exception):
    """Base exception for file encryption."""
    pass


class MalformedEncryptedFileError(CryptoError):
    """Raised when the input is too short or its header is inconsistent."""
    pass


class DecryptionError(CryptoError):
    """Raised when authentication fails (wrong passphrase or corrupted data)."""
    pass


def derive_key(passphrase: str, salt: bytes) -> bytes:
    return hash_secret_raw(
        secret=passphrase.encode("utf-8"),
        salt=salt,
        time_cost=ARGON2_TIME_COST,
        memory_cost=ARGON2_MEMORY_COST_KIB,
        parallelism=ARGON2_PARALLELISM,
        hash_len=KEY_SIZE,
        type=Type.ID,
    )


def default_encrypted_name() -> str:
    """Name for a new encrypted file, e.g. ``enc_1718000000.enc``."""
    return f"enc_{int(time.time())}.enc"


def encrypt_file(src: str, dst: str, passphrase: str) -> None:
    """
    Encrypt ``src`` into ``dst``, recording the source file name.

    Args:
        src: Plaintext file path
        dst: Output path
        passphrase: Non-empty passphrase

    Raises:
        CryptoError: If the passphrase is empty or the name is too long
        VFSError: If a file cannot be read or written
    """
    if not passphrase:
        raise CryptoError("passphrase must not be empty")

    name = os.path.basename(src).encode("utf-8")
    if len(name) > MAX_NAME_BYTES:
        raise CryptoError(f"file name too long to store ({len(name)} bytes)")

    with translate_errors("read", src):
        with open(src, "rb") as handle:
            plaintext = handle.read()

    salt = os.urandom(SALT_SIZE)
    nonce = os.urandom(NONCE_SIZE)
    header = _NAME_LENGTH.pack(len(name)) + name
    ciphertext = AESGCM(derive_key(passphrase, salt)).encrypt(nonce, plaintext, header)

    with translate_errors("write", dst):
        with open(dst, "wb") as out:
            out.write(header)
            out.write(salt)
            out.write(nonce)
            out.write(ciphertext)

    logger.info(f"Encrypted {src} -> {dst} ({len(plaintext)} bytes)")


def _is_plain_name(name: str) -> bool:
    if name in ("", ".", ".."):
        return False
    return not any(sep in name for sep in ("/", "\\", "\x00", os.sep))


def decrypt_file(src: str, dst_dir: str, passphrase: str) -> str:
    """
    Decrypt ``src`` into ``dst_dir`` under the name stored in the file.

    Args:
        src: Encrypted file path
        dst_dir: Directory to write the plaintext into
        passphrase: Passphrase used for encryption

    Returns:
        str: The recovered file name

    Raises:
        MalformedEncryptedFileError: If the file is truncated or its header is invalid
        DecryptionError: If the passphrase is wrong or the data was modified
        VFSError: If a file cannot be read or written
    """
    with translate_errors("read", src):
        with open(src, "rb") as handle:
            data = handle.read()

    if len(data) < _NAME_LENGTH.size:
        raise MalformedEncryptedFileError("invalid encrypted file")

    (name_length,) = _NAME_LENGTH.unpack_from(data)
    offset = _NAME_LENGTH.size + name_length
    if len(data) < offset + SALT_SIZE + NONCE_SIZE + TAG_SIZE:
        raise MalformedEncryptedFileError("invalid encrypted file")

    header = data[:offset]
    salt = data[offset:offset + SALT_SIZE]
    nonce = data[offset + SALT_SIZE:offset + SALT_SIZE + NONCE_SIZE]
    ciphertext = data[offset + SALT_SIZE + NONCE_SIZE:]

    try:
        plaintext = AESGCM(derive_key(passphrase, salt)).decrypt(nonce, ciphertext, header)
    except InvalidTag as e:
        raise DecryptionError("decryption failed (wrong password?)") from e

    try:
        name = header[_NAME_LENGTH.size:].decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedEncryptedFileError("stored file name is not valid UTF-8") from e
    if not _is_plain_name(name):
        raise MalformedEncryptedFileError(f"stored file name is not a plain file name: {name!r}")

    target = os.path.join(dst_dir, name)
    with translate_errors("write", target):
        fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as out:
            out.write(plaintext)

    logger.info(f"Decrypted {src} -> {target}")
    return name
