"""
Symmetric AEAD for peer messages, keyed by the pairing secret.

Blob layout (base64): nonce(12) || ciphertext || tag(16).

Depends on: (none)
"""

import base64
import binascii
import hashlib
import secrets
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

NONCE_SIZE = 12
TAG_SIZE = 16
TOKEN_BYTES = 32


def derive_key(secret: str) -> bytes:
    """SHA-256 of the shared secret; a 256-bit key for the lifetime of the pairing."""
    return hashlib.sha256(secret.encode("utf-8")).digest()


def generate_pair_token() -> str:
    """Fresh shared secret for a new pairing (64 hex chars)."""
    return secrets.token_hex(TOKEN_BYTES)


def encrypt_message(plaintext: str, secret: str) -> str:
    nonce = secrets.token_bytes(NONCE_SIZE)
    # AESGCM appends the tag to the ciphertext.
    sealed = AESGCM(derive_key(secret)).encrypt(nonce, plaintext.encode("utf-8"), None)
    return base64.b64encode(nonce + sealed).decode("ascii")


def decrypt_message(blob: str, secret: str) -> Optional[str]:
    """Inverse of encrypt_message. Returns None on tamper, wrong key, or malformed input."""
    try:
        raw = base64.b64decode(blob, validate=True)
    except (binascii.Error, TypeError, ValueError):
        return None
    if len(raw) < NONCE_SIZE + TAG_SIZE:
        return None
    nonce, sealed = raw[:NONCE_SIZE], raw[NONCE_SIZE:]
    try:
        plaintext = AESGCM(derive_key(secret)).decrypt(nonce, sealed, None)
        return plaintext.decode("utf-8")
    except (InvalidTag, UnicodeDecodeError, ValueError):
        return None

