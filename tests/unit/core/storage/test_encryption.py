"""Tests for the FieldEncryptor (Fernet-based health log encryption)."""

from __future__ import annotations

import pytest
from cryptography.fernet import Fernet

from mrisk.core.storage.encryption import EncryptionError, FieldEncryptor


@pytest.fixture
def encryptor() -> FieldEncryptor:
    return FieldEncryptor(Fernet.generate_key().decode())


class TestRoundTrip:
    def test_episode_payload_round_trip(self, encryptor: FieldEncryptor):
        data = {"severity": 7, "triggers": ["stress", "weather"], "end": None}
        token = encryptor.encrypt(data)
        assert "severity" not in token
        assert encryptor.decrypt(token) == data

    def test_none_is_stored_as_empty(self, encryptor: FieldEncryptor):
        assert encryptor.encrypt(None) == ""
        assert encryptor.decrypt("") is None

    def test_unserializable_value_raises(self, encryptor: FieldEncryptor):
        with pytest.raises(EncryptionError, match="Encryption failed"):
            encryptor.encrypt({"when": object()})


class TestKeyValidation:
    def test_empty_key_raises(self):
        with pytest.raises(EncryptionError, match="must not be empty"):
            FieldEncryptor("   ")

    def test_invalid_key_raises(self):
        with pytest.raises(EncryptionError, match="Invalid encryption key"):
            FieldEncryptor("not-a-valid-fernet-key")

    def test_ephemeral_encryptor_works(self):
        enc = FieldEncryptor.ephemeral()
        assert enc.decrypt(enc.encrypt({"a": 1})) == {"a": 1}


class TestCorruptData:
    def test_wrong_key_cannot_decrypt(self, encryptor: FieldEncryptor):
        token = encryptor.encrypt({"secret": "data"})
        other = FieldEncryptor(FieldEncryptor.generate_key())
        with pytest.raises(EncryptionError, match="invalid token"):
            other.decrypt(token)

    def test_garbage_token_raises(self, encryptor: FieldEncryptor):
        with pytest.raises(EncryptionError):
            encryptor.decrypt("not-a-valid-token")


class TestKeyRotation:
    def test_retired_key_still_decrypts(self):
        old_key = FieldEncryptor.generate_key()
        token = FieldEncryptor(old_key).encrypt({"severity": 4})
        rotated = FieldEncryptor(FieldEncryptor.generate_key(), retired_keys=[old_key])
        assert rotated.has_retired_keys
        assert rotated.decrypt(token) == {"severity": 4}

    def test_rotate_moves_token_to_primary_key(self):
        old_key = FieldEncryptor.generate_key()
        new_key = FieldEncryptor.generate_key()
        token = FieldEncryptor(old_key).encrypt({"day": "2026-03-18"})
        fresh = FieldEncryptor(new_key, retired_keys=[old_key]).rotate(token)
        # Readable with the new key alone
        assert FieldEncryptor(new_key).decrypt(fresh) == {"day": "2026-03-18"}

    def test_rotate_unknown_token_raises(self, encryptor: FieldEncryptor):
        foreign = FieldEncryptor(FieldEncryptor.generate_key()).encrypt({"a": 1})
        with pytest.raises(EncryptionError, match="Rotation failed"):
            encryptor.rotate(foreign)

    def test_invalid_retired_key_raises(self):
        with pytest.raises(EncryptionError, match="Invalid encryption key"):
            FieldEncryptor(FieldEncryptor.generate_key(), retired_keys=["bogus"])
