"""Encryption of Stripe OAuth tokens at rest.

Stored values look like ``hex(iv) + ":" + hex(ciphertext)`` where the cipher is
AES-256-CBC with PKCS7 padding and a fresh 16 byte IV per value. The format is
shared with rows written by earlier deployments and must not change.
"""
import logging
import os
from dataclasses import dataclass

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from disputekit import config

logger = logging.getLogger(__name__)

KEY_SIZE = 32
IV_SIZE = 16


@dataclass(frozen=True)
class DecryptResult:
    """Outcome of a decryption: ``ok`` is False when the blob was unusable."""
    ok: bool
    plaintext: str = ""


def derive_key(secret: str) -> bytes:
    """Pad with spaces / truncate the secret to a 256-bit key."""
    return secret.encode("utf-8").ljust(KEY_SIZE, b" ")[:KEY_SIZE]


def _key() -> bytes:
    return derive_key(config.require("TOKEN_ENCRYPTION_SECRET"))


def encrypt(plaintext: str) -> str:
    iv = os.urandom(IV_SIZE)
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
    encryptor = Cipher(algorithms.AES(_key()), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()
    return iv.hex() + ":" + ciphertext.hex()


def decrypt_result(blob: str) -> DecryptResult:
    key = _key()
    try:
        iv_hex, _, ciphertext_hex = blob.partition(":")
        iv = bytes.fromhex(iv_hex)
        ciphertext = bytes.fromhex(ciphertext_hex)
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        plaintext = unpadder.update(padded) + unpadder.finalize()
        return DecryptResult(ok=True, plaintext=plaintext.decode("utf-8"))
    except (ValueError, TypeError, AttributeError) as e:
        logger.warning(f"Token decryption failed: {type(e).__name__}")
        return DecryptResult(ok=False)


def decrypt(blob: str) -> str:
    """Decrypt a stored token; returns "" when the blob cannot be decrypted.

    An empty result means "no usable token" and is indistinguishable from a
    token that was empty to begin with. Use ``decrypt_result`` to tell them
    apart.
    """
    return decrypt_result(blob).plaintext
