"""
Credential encryption for workflowbot

Per-user GitHub tokens are stored encrypted with AES-256-GCM under a single
deployment key derived from BOT_SECRET. Stored blobs are
base64(nonce || tag || ciphertext), the same layout the original Node bot
wrote to its tokens file, so existing files keep decrypting.
"""
import base64
import binascii
import os
import secrets

from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.exceptions import InvalidTag

from .logging_config import get_logger

logger = get_logger("workflowbot.crypto")

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16

_URLSAFE_TO_STANDARD = str.maketrans("-_", "+/")


class CredentialError(Exception):
    """Base exception for credential decryption failures"""
    pass


class AuthenticationError(CredentialError):
    """Authentication tag did not verify (tampered blob or wrong key)"""
    pass


class FormatError(CredentialError):
    """Blob is not valid base64, too short, or not UTF-8 once decrypted"""
    pass


def _decode_secret(secret: str) -> bytes:
    """Lenient base64: standard or URL-safe alphabet, padding optional."""
    normalized = "".join(secret.split()).translate(_URLSAFE_TO_STANDARD).rstrip("=")
    normalized += "=" * (-len(normalized) % 4)
    try:
        return base64.b64decode(normalized, validate=True)
    except (binascii.Error, ValueError):
        return b""


def derive_key(secret: str) -> bytes:
    """
    Derive the 32-byte deployment key from the configured secret.

    Order of preference:
    1. secret is base64 for exactly 32 bytes -> those bytes. Unpadded and
       URL-safe encodings are accepted.
    2. secret's UTF-8 encoding is exactly 32 bytes -> that encoding
    3. UTF-8 encoding zero-padded or truncated to 32 bytes

    Step 3 is not a key derivation function and gives a weak key for short
    secrets. It is kept so blobs written by earlier deployments still decrypt.
    Use ``generate_secret()`` for new deployments.
    """
    decoded = _decode_secret(secret)
    if len(decoded) == KEY_SIZE:
        return decoded

    raw = secret.encode("utf-8")
    if len(raw) == KEY_SIZE:
        return raw

    logger.warning_with(
        "BOT_SECRET is not a 32-byte key; padding/truncating it. "
        "Generate a proper secret with 'workflowbot gen-secret'.",
        secret_length=len(raw),
    )
    return raw[:KEY_SIZE].ljust(KEY_SIZE, b"\0")


def generate_secret() -> str:
    """Generate a fresh base64-encoded 32-byte secret."""
    return base64.b64encode(secrets.token_bytes(KEY_SIZE)).decode("ascii")


class CredentialCipher:
    """Encrypts and decrypts individual token strings with one fixed key."""

    def __init__(self, key: bytes):
        if len(key) != KEY_SIZE:
            raise ValueError(f"Key must be {KEY_SIZE} bytes, got {len(key)}")
        self._aesgcm = AESGCM(key)

    @classmethod
    def from_secret(cls, secret: str) -> "CredentialCipher":
        return cls(derive_key(secret))

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a token.

        Args:
            plaintext: The string to encrypt

        Returns:
            base64(nonce || tag || ciphertext)
        """
        nonce = os.urandom(NONCE_SIZE)
        # AESGCM returns ciphertext || tag
        sealed = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return base64.b64encode(nonce + tag + ciphertext).decode("ascii")

    def decrypt(self, blob: str) -> str:
        """
        Decrypt a stored blob.

        Raises:
            FormatError: blob is malformed
            AuthenticationError: tag does not verify
        """
        try:
            data = base64.b64decode(blob, validate=True)
        except (binascii.Error, ValueError) as e:
            raise FormatError(f"Encrypted credential is not valid base64: {e}") from None

        if len(data) < NONCE_SIZE + TAG_SIZE:
            raise FormatError(
                f"Encrypted credential too short ({len(data)} bytes, need at least {NONCE_SIZE + TAG_SIZE})"
            )

        nonce = data[:NONCE_SIZE]
        tag = data[NONCE_SIZE:NONCE_SIZE + TAG_SIZE]
        ciphertext = data[NONCE_SIZE + TAG_SIZE:]

        try:
            plaintext = self._aesgcm.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag:
            raise AuthenticationError("Credential failed authentication") from None

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise FormatError("Decrypted credential is not valid UTF-8") from None
