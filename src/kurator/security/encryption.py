"""
Field-level encryption for Kurator.

Encrypts the sensitive free-text columns of the contact domain:
- Contact full name
- Contact notes
- Interaction comments

SECURITY NOTES:
- Uses AES-256-GCM with a random 96-bit nonce per value
- Encryption key derived from FIELD_ENCRYPTION_KEY via HKDF-SHA256
- Values written by earlier deployments (AES-256-CBC, unprefixed base64)
  are still readable
- Decryption never raises: listing endpoints must keep working when a
  single row holds placeholder or foreign data
"""

import base64
import hashlib
import logging
import os
from typing import Optional, Tuple

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

logger = logging.getLogger(__name__)

# Constants
NONCE_SIZE = 12  # 96 bits for AES-GCM
KEY_SIZE = 32    # 256 bits for AES-256
TAG_SIZE = 16
LEGACY_BLOCK_SIZE = 16

PREFIX = "enc:"
UNDECRYPTABLE = "[undecryptable]"

HKDF_INFO = b"kurator-field-encryption-v1"


class MisconfiguredKeyError(ValueError):
    """Raised when a value must be encrypted but no key is configured."""


class FieldEncryption:
    """
    Encrypts and decrypts designated string fields using AES-256-GCM.

    Constructed once at startup from configuration and passed to the code
    that needs it. Construction never fails: an empty key is only detected
    on first use, so the process keeps serving health checks and
    endpoints that do not touch encrypted data.

    Security properties:
    - Confidentiality: AES-256 encryption
    - Integrity: GCM authentication tag
    - Unique ciphertexts: Random nonce per encryption
    """

    def __init__(self, raw_key: Optional[str]):
        self._raw_key = raw_key or ""
        self._aesgcm: Optional[AESGCM] = None

    @property
    def configured(self) -> bool:
        """Whether a key is available."""
        return bool(self._raw_key)

    @staticmethod
    def _derive_key(master_key: str) -> bytes:
        """Derive the 256-bit AES key from the configured master key."""
        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=KEY_SIZE,
            salt=None,
            info=HKDF_INFO,
        )
        return hkdf.derive(master_key.encode("utf-8"))

    def _cipher(self) -> AESGCM:
        if self._aesgcm is None:
            if not self._raw_key:
                raise MisconfiguredKeyError("FIELD_ENCRYPTION_KEY not configured")
            self._aesgcm = AESGCM(self._derive_key(self._raw_key))
        return self._aesgcm

    def is_encrypted(self, value: Optional[str]) -> bool:
        """Check if a value carries the current ciphertext prefix."""
        return bool(value) and value.startswith(PREFIX)

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        """
        Encrypt a plaintext value.

        Args:
            plaintext: Value to protect. Empty strings and None are returned as-is.

        Returns:
            Format: enc:<base64(nonce || ciphertext || tag)>

        Raises:
            MisconfiguredKeyError: If no key is configured
        """
        if not plaintext:
            return plaintext

        aesgcm = self._cipher()
        nonce = os.urandom(NONCE_SIZE)
        ciphertext = aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        encoded = base64.urlsafe_b64encode(nonce + ciphertext).decode("ascii")
        return f"{PREFIX}{encoded}"

    def try_decrypt(self, ciphertext: Optional[str]) -> Tuple[Optional[str], bool]:
        """
        Decrypt a value, reporting whether decryption succeeded.

        Returns:
            (plaintext, True) on success, (fallback, False) otherwise. The
            fallback is UNDECRYPTABLE for values in the current format and the
            stored value itself for anything else (unencrypted placeholder data).
        """
        if not ciphertext:
            return ciphertext, True

        if ciphertext.startswith(PREFIX):
            try:
                return self._decrypt_gcm(ciphertext[len(PREFIX):]), True
            except MisconfiguredKeyError:
                logger.error("Cannot decrypt field: FIELD_ENCRYPTION_KEY not configured")
            except Exception as e:
                logger.error(f"Field decryption failed: {type(e).__name__}")
            return UNDECRYPTABLE, False

        if self._raw_key:
            try:
                return self._decrypt_legacy(ciphertext), True
            except Exception as e:
                logger.debug(f"Value is not legacy ciphertext: {type(e).__name__}")

        logger.warning("Field value is not encrypted; returning stored value")
        return ciphertext, False

    def decrypt(self, ciphertext: Optional[str]) -> Optional[str]:
        """Decrypt a value. Never raises; see try_decrypt for the fallback rules."""
        plaintext, _ = self.try_decrypt(ciphertext)
        return plaintext

    def _decrypt_gcm(self, encoded: str) -> str:
        combined = base64.urlsafe_b64decode(encoded.encode("ascii"))
        if len(combined) < NONCE_SIZE + TAG_SIZE:
            raise ValueError("Ciphertext too short")

        nonce = combined[:NONCE_SIZE]
        plaintext = self._cipher().decrypt(nonce, combined[NONCE_SIZE:], None)
        return plaintext.decode("utf-8")

    def _decrypt_legacy(self, encoded: str) -> str:
        """
        Decrypt the AES-256-CBC format written by earlier deployments.

        Key is SHA-256 of the master key, IV is the first 16 bytes of
        SHA-256 of the master key followed by "IV", payload is PKCS7 padded.
        """
        data = base64.b64decode(encoded, validate=True)
        if not data or len(data) % LEGACY_BLOCK_SIZE:
            raise ValueError("Not a legacy ciphertext")

        key = hashlib.sha256(self._raw_key.encode("utf-8")).digest()
        iv = hashlib.sha256((self._raw_key + "IV").encode("utf-8")).digest()[:LEGACY_BLOCK_SIZE]

        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(data) + decryptor.finalize()

        unpadder = padding.PKCS7(LEGACY_BLOCK_SIZE * 8).unpadder()
        plaintext = unpadder.update(padded) + unpadder.finalize()
        return plaintext.decode("utf-8")
