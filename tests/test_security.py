"""
Tests for card data encryption and the PAN lookup hash.

These tests verify:
  - Encryption is authenticated and randomized (same input, different tokens)
  - Tampered, foreign-key and garbage tokens fail with CryptographyError
  - Both supported algorithms work; anything else is refused up front
  - The lookup hash is deterministic, keyed and never the plain digest
"""

import base64
import hashlib

import pytest

from bankcards.exceptions import CryptographyError
from bankcards.security import (
    CardCipher,
    constant_time_equals,
    decrypt_value,
    encrypt_value,
    hash_value,
)

PAN = "4149471805568597"


@pytest.fixture(params=["AES-GCM", "FERNET"])
def cipher(request):
    return CardCipher("unit-test-secret", request.param)


class TestEncryption:
    """Tests for encrypt/decrypt under both algorithms."""

    def test_decrypt_recovers_plaintext(self, cipher):
        assert cipher.decrypt(cipher.encrypt(PAN)) == PAN

    def test_ciphertext_hides_plaintext(self, cipher):
        token = cipher.encrypt(PAN)
        assert isinstance(token, bytes)
        assert PAN.encode() not in token

    def test_fresh_nonce_per_call(self, cipher):
        assert cipher.encrypt(PAN) != cipher.encrypt(PAN)

    def test_wrong_key_fails(self, cipher):
        other = CardCipher("a-different-secret", cipher.algorithm)
        with pytest.raises(CryptographyError):
            other.decrypt(cipher.encrypt(PAN))

    def test_garbage_token_fails(self, cipher):
        with pytest.raises(CryptographyError):
            cipher.decrypt(b"not-a-token")

    def test_tampered_aes_gcm_token_fails(self):
        cipher = CardCipher("unit-test-secret", "AES-GCM")
        raw = bytearray(base64.urlsafe_b64decode(cipher.encrypt(PAN)))
        raw[-1] ^= 0x01
        with pytest.raises(CryptographyError):
            cipher.decrypt(base64.urlsafe_b64encode(bytes(raw)))

    def test_truncated_aes_gcm_token_fails(self):
        cipher = CardCipher("unit-test-secret", "AES-GCM")
        with pytest.raises(CryptographyError):
            cipher.decrypt(base64.urlsafe_b64encode(b"short"))

    def test_algorithm_from_other_cipher_fails(self):
        aes = CardCipher("unit-test-secret", "AES-GCM")
        fernet = CardCipher("unit-test-secret", "FERNET")
        with pytest.raises(CryptographyError):
            fernet.decrypt(aes.encrypt(PAN))

    def test_non_string_plaintext_fails(self, cipher):
        with pytest.raises(CryptographyError):
            cipher.encrypt(None)


class TestCipherConfiguration:
    def test_algorithm_name_is_case_insensitive(self):
        assert CardCipher("secret", "aes-gcm").algorithm == "AES-GCM"

    def test_unsupported_algorithm_refused(self):
        with pytest.raises(CryptographyError):
            CardCipher("secret", "DES")

    def test_empty_secret_refused(self):
        with pytest.raises(CryptographyError):
            CardCipher("")


class TestLookupHash:
    """Tests for the deterministic PAN digest."""

    def test_deterministic(self, cipher):
        assert cipher.hash(PAN) == cipher.hash(PAN)

    def test_hex_digest_length(self, cipher):
        digest = cipher.hash(PAN)
        assert len(digest) == 64
        int(digest, 16)

    def test_keyed_by_secret(self):
        assert CardCipher("secret-one").hash(PAN) != CardCipher("secret-two").hash(PAN)

    def test_not_the_plain_sha256(self, cipher):
        assert cipher.hash(PAN) != hashlib.sha256(PAN.encode()).hexdigest()

    def test_independent_of_algorithm(self):
        assert CardCipher("secret", "AES-GCM").hash(PAN) == CardCipher("secret", "FERNET").hash(PAN)


class TestModuleHelpers:
    """The configured module-level cipher used by the services."""

    def test_configured_cipher(self):
        token = encrypt_value("123")
        assert decrypt_value(token) == "123"
        assert hash_value(PAN) == hash_value(PAN)

    def test_constant_time_equals(self):
        assert constant_time_equals("123", "123")
        assert not constant_time_equals("123", "124")
        assert not constant_time_equals("123", "1234")
