"""AES-256-GCM encryption of secrets at rest.

Wallet keys are stored encrypted under a key derived from a password with
scrypt. The token layout is ``base64(salt | nonce | tag | ciphertext)``, so a
token carries everything needed to decrypt it except the password.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import os
import secrets
from typing import Mapping, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import EncryptionError

ENCRYPTION_KEY_ENV = "GENESIS_ENCRYPTION_KEY"
DEFAULT_ENCRYPTION_KEY = "genesis-default-key-change-in-production"

KEY_LENGTH = 32
NONCE_LENGTH = 16
SALT_LENGTH = 32
TAG_LENGTH = 16

# scrypt cost parameters (N, r, p)
SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1


def derive_key(password: str, salt: bytes) -> bytes:
    return hashlib.scrypt(
        password.encode("utf-8"),
        salt=salt,
        n=SCRYPT_N,
        r=SCRYPT_R,
        p=SCRYPT_P,
        dklen=KEY_LENGTH,
    )


def encrypt(data: str, password: str) -> str:
    """Encrypt ``data`` with a fresh salt and nonce and return a base64 token."""
    salt = secrets.token_bytes(SALT_LENGTH)
    nonce = secrets.token_bytes(NONCE_LENGTH)
    sealed = AESGCM(derive_key(password, salt)).encrypt(nonce, data.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return base64.b64encode(salt + nonce + tag + ciphertext).decode("ascii")


def decrypt(token: str, password: str) -> str:
    """Decrypt a token produced by ``encrypt``.

    Raises:
        EncryptionError: If the token is malformed, was tampered with, or the
            password is wrong.
    """
    try:
        raw = base64.b64decode(token, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise EncryptionError("Encrypted secret is not valid base64") from exc

    header = SALT_LENGTH + NONCE_LENGTH + TAG_LENGTH
    if len(raw) < header:
        raise EncryptionError("Encrypted secret is truncated")

    salt = raw[:SALT_LENGTH]
    nonce = raw[SALT_LENGTH:SALT_LENGTH + NONCE_LENGTH]
    tag = raw[SALT_LENGTH + NONCE_LENGTH:header]
    ciphertext = raw[header:]

    try:
        plain = AESGCM(derive_key(password, salt)).decrypt(nonce, ciphertext + tag, None)
    except InvalidTag as exc:
        raise EncryptionError("Failed to decrypt secret: wrong key or corrupted data") from exc
    return plain.decode("utf-8")


def get_encryption_key(environ: Optional[Mapping[str, str]] = None) -> str:
    env = os.environ if environ is None else environ
    return env.get(ENCRYPTION_KEY_ENV) or DEFAULT_ENCRYPTION_KEY


__all__ = [
    "ENCRYPTION_KEY_ENV",
    "DEFAULT_ENCRYPTION_KEY",
    "derive_key",
    "encrypt",
    "decrypt",
    "get_encryption_key",
]
