"""File encryption for local files."""

from .file_cipher import (
    CryptoError, DecryptionError, MalformedEncryptedFileError, decrypt_file,
    default_encrypted_name, encrypt_file
)

__all__ = [
    'CryptoError',
    'DecryptionError',
    'MalformedEncryptedFileError',
    'decrypt_file',
    'default_encrypted_name',
    'encrypt_file',
]
