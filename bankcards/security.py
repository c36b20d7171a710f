"""
Card data protection: encryption at rest and the PAN lookup hash.

Two concerns are handled here:

1. ENCRYPTION (AES-256-GCM or Fernet)
   - Card numbers and CVVs are encrypted before they reach the database
   - The key is SHA-256(CARD_ENCRYPTION_SECRET), which normalizes any
     secret length to a 32-byte key
   - Both algorithms are authenticated: a tampered or truncated token fails
     to decrypt instead of yielding garbage
   - Every call draws a fresh random nonce/IV, so encrypting the same PAN
     twice gives two different tokens. Never compare ciphertexts to decide
     whether two PANs are equal; compare their lookup hashes instead.

   AES-GCM token layout: urlsafe_b64(nonce[12] || ciphertext || tag[16])
   Fernet token layout:  the standard Fernet token (IV is embedded)

2. LOOKUP HASH (HMAC-SHA256)
   - A deterministic 64-char hex digest of the PAN, stored in a UNIQUE
     indexed column so a card can be found without decrypting every row
   - Keyed with a sub-key derived from the secret: the PAN space is small
     enough that an unkeyed digest could be brute-forced from a DB dump
   - One-way. It is an index key, never a substitute for encryption

Failures:
  Any cryptographic failure raises CryptographyError. It is logged (without
  the plaintext) and propagated; callers must never fall back to storing or
  comparing plaintext.

Enterprise note:
  In production the secret would live in a KMS/HSM and the key would be
  rotated by re-encrypting rows. The cipher is a class so that a second
  instance with the new secret can decrypt-and-re-encrypt during rotation.
"""

import base64
import hashlib
import hmac
import logging
import os
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from bankcards.config import settings
from bankcards.exceptions import CryptographyError

logger = logging.getLogger(__name__)

AES_GCM = "AES-GCM"
FERNET = "FERNET"
SUPPORTED_ALGORITHMS = (AES_GCM, FERNET)

_GCM_NONCE_SIZE = 12
_HASH_KEY_CONTEXT = b"bankcards:card-number-hash"


class CardCipher:
    """Encrypts, decrypts and hashes card data under one configured secret."""

    def __init__(self, secret: str, algorithm: str = AES_GCM):
        if not secret:
            raise CryptographyError("Card encryption secret is not configured")

        self.algorithm = algorithm.upper()
        if self.algorithm not in SUPPORTED_ALGORITHMS:
            raise CryptographyError(f"Unsupported encryption algorithm: {algorithm}")

        key = hashlib.sha256(secret.encode("utf-8")).digest()
        self._hash_key = hmac.new(key, _HASH_KEY_CONTEXT, hashlib.sha256).digest()

        if self.algorithm == AES_GCM:
            self._aesgcm = AESGCM(key)
        else:
            self._fernet = Fernet(base64.urlsafe_b64encode(key))

    def encrypt(self, plaintext: str) -> bytes:
        """
        Encrypt a sensitive value with a fresh nonce.

        Args:
            plaintext: The value to protect (e.g., "4149471805568597").

        Returns:
            ASCII token bytes suitable for a LargeBinary column.

        Raises:
            CryptographyError: If the value can't be encrypted.
        """
        try:
            data = plaintext.encode("utf-8")
            if self.algorithm == AES_GCM:
                nonce = os.urandom(_GCM_NONCE_SIZE)
                return base64.urlsafe_b64encode(nonce + self._aesgcm.encrypt(nonce, data, None))
            return self._fernet.encrypt(data)
        except (TypeError, ValueError, AttributeError) as exc:
            logger.error("Card data encryption failed (%s)", type(exc).__name__)
            raise CryptographyError("Encryption failed") from exc

    def decrypt(self, token: bytes) -> str:
        """
        Decrypt a token produced by `encrypt`.

        Raises:
            CryptographyError: If the token is corrupt, was produced under a
                different key, or by a different algorithm.
        """
        try:
            if self.algorithm == AES_GCM:
                combined = base64.urlsafe_b64decode(token)
                if len(combined) <= _GCM_NONCE_SIZE:
                    raise ValueError("token too short")
                nonce, ciphertext = combined[:_GCM_NONCE_SIZE], combined[_GCM_NONCE_SIZE:]
                return self._aesgcm.decrypt(nonce, ciphertext, None).decode("utf-8")
            return self._fernet.decrypt(token).decode("utf-8")
        except (InvalidTag, InvalidToken, TypeError, ValueError) as exc:
            logger.error("Card data decryption failed (%s)", type(exc).__name__)
            raise CryptographyError("Decryption failed") from exc

    def hash(self, plaintext: str) -> str:
        """Deterministic keyed digest used as the unique lookup key."""
        try:
            return hmac.new(self._hash_key, plaintext.encode("utf-8"), hashlib.sha256).hexdigest()
        except (TypeError, AttributeError) as exc:
            logger.error("Card data hashing failed (%s)", type(exc).__name__)
            raise CryptographyError("Hashing failed") from exc


def constant_time_equals(left: str, right: str) -> bool:
    """Compare two secrets without leaking the mismatch position via timing."""
    return secrets.compare_digest(left.encode("utf-8"), right.encode("utf-8"))


# Module-level cipher built from configuration, mirroring `settings`
_cipher = CardCipher(settings.CARD_ENCRYPTION_SECRET, settings.CARD_ENCRYPTION_ALGORITHM)


def encrypt_value(plaintext: str) -> bytes:
    """Encrypt a card number or CVV with the configured cipher."""
    return _cipher.encrypt(plaintext)


def decrypt_value(ciphertext: bytes) -> str:
    """Decrypt a stored card number or CVV with the configured cipher."""
    return _cipher.decrypt(ciphertext)


def hash_value(plaintext: str) -> str:
    """Lookup hash of a card number with the configured cipher."""
    return _cipher.hash(plaintext)
