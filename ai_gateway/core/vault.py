"""
Credential vault.

Seals provider API keys at rest with a key derived per user from the
process master secret. Every stored blob carries an explicit scheme tag:

    aesgcm:<base64(nonce || ciphertext || tag)>
    b64:<user fingerprint>:<base64(plaintext)>

The ``b64`` scheme is a degraded encoding used only when the cryptography
backend cannot provide AES-GCM. It is reversible without the master secret.
"""

import base64
import binascii
import hashlib
import logging
import os
from functools import lru_cache
from typing import Optional

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ai_gateway.config.loader import VaultConfig

from .errors import DecryptionFailed, EncryptionFailed
from .security import SecurityAuditor

logger = logging.getLogger(__name__)

SCHEME_AESGCM = "aesgcm"
SCHEME_DEGRADED = "b64"

KEY_LENGTH = 32
SALT_LENGTH = 16
NONCE_LENGTH = 12
TAG_LENGTH = 16


def _user_fingerprint(user_id: str) -> str:
    return hashlib.sha256(user_id.encode("utf-8")).hexdigest()[:16]


class CredentialVault:
    """Per-user authenticated encryption of provider API keys.

    Derivation and AEAD operations hold no shared mutable state besides
    the derived-key cache, so one instance may serve concurrent requests.
    """

    def __init__(self, config: VaultConfig, auditor: Optional[SecurityAuditor] = None):
        """Initialize vault.

        Args:
            config: Vault settings holding the master secret
            auditor: Receives degraded-encryption and foreign-blob events
        """
        self.config = config
        self.auditor = auditor
        self._derive = lru_cache(maxsize=256)(self._derive_uncached)
        self._aead_supported = self._aead_available()

    @staticmethod
    def _aead_available() -> bool:
        """Check the cryptography backend for AES-256-GCM support."""
        try:
            AESGCM(bytes(KEY_LENGTH)).encrypt(bytes(NONCE_LENGTH), b"check", None)
        except UnsupportedAlgorithm:
            return False
        return True

    def _derive_uncached(self, user_id: str) -> bytes:
        secret = self.config.master_secret
        salt = hashlib.sha256((user_id + secret).encode("utf-8")).digest()[:SALT_LENGTH]
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=self.config.kdf_iterations,
        )
        return kdf.derive((secret + user_id).encode("utf-8"))

    def derive_user_key(self, user_id: str) -> bytes:
        """Derive the 256-bit key for a user.

        Deterministic for a given master secret and user id, so no salt is
        persisted.

        Args:
            user_id: User the key belongs to

        Returns:
            32-byte symmetric key
        """
        if not user_id:
            raise ValueError("user_id is required")
        return self._derive(user_id)

    def encrypt(self, plaintext: str, user_id: str) -> str:
        """Seal an API key for a user.

        Args:
            plaintext: API key to protect
            user_id: Owner of the key

        Returns:
            Scheme-tagged blob safe to persist

        Raises:
            EncryptionFailed: If the key cannot be sealed
        """
        if not plaintext or not user_id:
            raise EncryptionFailed("API key and user id are required for encryption")

        if not self._aead_supported:
            return self._encrypt_degraded(plaintext, user_id)

        try:
            key = self.derive_user_key(user_id)
            nonce = os.urandom(NONCE_LENGTH)
            sealed = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
        except UnsupportedAlgorithm:
            return self._encrypt_degraded(plaintext, user_id)
        except (ValueError, TypeError) as e:
            logger.error("API key encryption failed for user %s: %s", user_id, type(e).__name__)
            raise EncryptionFailed()

        return f"{SCHEME_AESGCM}:" + base64.b64encode(nonce + sealed).decode("ascii")

    def _encrypt_degraded(self, plaintext: str, user_id: str) -> str:
        if not self.config.allow_degraded:
            logger.error("AES-GCM unavailable and degraded encryption is disabled")
            raise EncryptionFailed("Strong encryption is unavailable on this runtime")

        logger.warning("AES-GCM unavailable, storing API key for user %s with degraded encoding", user_id)
        if self.auditor is not None:
            self.auditor.log_degraded_encryption(user_id, "AES-GCM unsupported by cryptography backend")

        payload = base64.b64encode(plaintext.encode("utf-8")).decode("ascii")
        return f"{SCHEME_DEGRADED}:{_user_fingerprint(user_id)}:{payload}"

    def decrypt(self, blob: str, user_id: str) -> str:
        """Open a sealed API key.

        Args:
            blob: Value produced by encrypt
            user_id: User the blob must belong to

        Returns:
            The plaintext API key

        Raises:
            DecryptionFailed: If the blob is malformed, tampered, uses an
                unknown scheme or belongs to another user
        """
        if not blob or not user_id:
            raise DecryptionFailed("No encrypted API key to decrypt")

        scheme, sep, payload = blob.partition(":")
        if not sep:
            raise DecryptionFailed("Encrypted API key has no scheme tag")

        if scheme == SCHEME_AESGCM:
            return self._decrypt_aesgcm(payload, user_id)
        if scheme == SCHEME_DEGRADED:
            return self._decrypt_degraded(payload, user_id)
        raise DecryptionFailed(f"Unsupported encryption scheme: {scheme[:16]}")

    def _decrypt_aesgcm(self, payload: str, user_id: str) -> str:
        try:
            raw = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError):
            raise DecryptionFailed("Encrypted API key is malformed")

        if len(raw) < NONCE_LENGTH + TAG_LENGTH:
            raise DecryptionFailed("Encrypted API key is truncated")

        nonce, sealed = raw[:NONCE_LENGTH], raw[NONCE_LENGTH:]
        try:
            plaintext = AESGCM(self.derive_user_key(user_id)).decrypt(nonce, sealed, None)
        except InvalidTag:
            raise DecryptionFailed("Failed to decrypt API key: authentication failed")
        except UnsupportedAlgorithm:
            raise DecryptionFailed("Strong encryption is unavailable on this runtime")

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise DecryptionFailed("Decrypted API key is not valid text")

    def _decrypt_degraded(self, payload: str, user_id: str) -> str:
        fingerprint, sep, encoded = payload.partition(":")
        if not sep:
            raise DecryptionFailed("Encrypted API key is malformed")
        if fingerprint != _user_fingerprint(user_id):
            if self.auditor is not None:
                self.auditor.log_suspicious_activity(
                    user_id,
                    "Stored API key was encoded for a different user",
                    {"scheme": SCHEME_DEGRADED},
                )
            raise DecryptionFailed("Encrypted API key belongs to a different user")

        if self._aead_supported:
            logger.warning("Reading degraded API key for user %s; re-save it to upgrade", user_id)
        try:
            return base64.b64decode(encoded, validate=True).decode("utf-8")
        except (binascii.Error, ValueError):
            raise DecryptionFailed("Encrypted API key is malformed")

    def validate(self, blob: str, user_id: str) -> bool:
        """Return True if the blob decrypts for the user."""
        try:
            return bool(self.decrypt(blob, user_id))
        except DecryptionFailed:
            return False

    @staticmethod
    def scheme_of(blob: Optional[str]) -> Optional[str]:
        """Return the scheme tag of a stored blob, or None if untagged."""
        if not blob or ":" not in blob:
            return None
        return blob.split(":", 1)[0]
