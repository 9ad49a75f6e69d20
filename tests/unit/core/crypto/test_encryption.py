"""Tests for the AES-256-GCM CryptoService."""

from __future__ import annotations

import base64
import io
import random

import pytest

from mindlens.core.config.settings import Settings
from mindlens.core.crypto.encryption import (
    IV_LENGTH,
    CryptoService,
    EncryptedEnvelope,
    load_key,
)
from mindlens.core.crypto.keygen import run as keygen_run
from mindlens.core.errors import CryptoError


class TestRoundTrip:
    """Verify encrypt -> decrypt returns the original data."""

    def test_dict_round_trip(self, crypto: CryptoService):
        data = {"responses": [1, 0, 2, 3, 0, 1, 2, 0, 1], "score": 10}
        token = crypto.encrypt(data)
        assert isinstance(token, str)
        assert "responses" not in token
        assert crypto.decrypt(token) == data

    def test_scalars_round_trip(self, crypto: CryptoService):
        for value in ("plain text", 42, 3.5, True, None, [], {"nested": {"a": [1]}}):
            assert crypto.decrypt(crypto.encrypt(value)) == value

    def test_unicode_round_trip(self, crypto: CryptoService):
        text = "Je me sens épuisé 😔"
        assert crypto.decrypt(crypto.encrypt(text)) == text

    def test_random_payloads_round_trip(self, crypto: CryptoService):
        rng = random.Random(1234)
        for _ in range(50):
            payload = {
                "userId": f"user-{rng.randint(0, 10_000)}",
                "responses": [rng.randint(0, 3) for _ in range(9)],
                "note": "".join(rng.choice("abc xyz") for _ in range(rng.randint(0, 40))),
            }
            assert crypto.decrypt(crypto.encrypt(payload)) == payload


class TestIVFreshness:
    def test_same_payload_yields_different_envelopes(self, crypto: CryptoService):
        payload = {"score": 12}
        first, second = crypto.encrypt(payload), crypto.encrypt(payload)
        assert first != second
        assert crypto.decrypt(first) == crypto.decrypt(second) == payload

    def test_envelope_starts_with_fresh_iv(self, crypto: CryptoService):
        ivs = {EncryptedEnvelope.from_token(crypto.encrypt("x")).iv for _ in range(20)}
        assert len(ivs) == 20
        assert all(len(iv) == IV_LENGTH for iv in ivs)


class TestFailures:
    def test_wrong_key_raises(self, crypto: CryptoService):
        token = crypto.encrypt({"a": 1})
        other = CryptoService(bytes(32), "TEST_SALT")
        with pytest.raises(CryptoError, match="tag mismatch"):
            other.decrypt(token)

    def test_tampered_ciphertext_raises(self, crypto: CryptoService):
        raw = bytearray(base64.b64decode(crypto.encrypt({"a": 1})))
        raw[-1] ^= 0x01
        with pytest.raises(CryptoError):
            crypto.decrypt(base64.b64encode(bytes(raw)).decode())

    def test_not_base64_raises(self, crypto: CryptoService):
        with pytest.raises(CryptoError, match="base64"):
            crypto.decrypt("not base64!!")

    def test_too_short_raises(self, crypto: CryptoService):
        with pytest.raises(CryptoError, match="too short"):
            crypto.decrypt(base64.b64encode(b"short").decode())

    def test_empty_token_raises(self, crypto: CryptoService):
        with pytest.raises(CryptoError):
            crypto.decrypt("")

    def test_unserializable_payload_raises(self, crypto: CryptoService):
        with pytest.raises(CryptoError, match="not serializable"):
            crypto.encrypt(object())

    def test_bad_key_length_raises(self):
        with pytest.raises(CryptoError, match="32 bytes"):
            CryptoService(b"short", "salt")


class TestFieldEncryption:
    def test_encrypts_named_fields_only(self, crypto: CryptoService):
        doc = {"conversationId": "c1", "messages": [{"role": "user", "content": "hi"}]}
        sealed = crypto.encrypt_fields(doc, ["messages"])
        assert sealed["conversationId"] == "c1"
        assert sealed["messages_encrypted"] is True
        assert isinstance(sealed["messages"], str)
        assert doc["messages"] == [{"role": "user", "content": "hi"}]  # copy-on-write

    def test_field_round_trip(self, crypto: CryptoService):
        doc = {"name": "Sam", "email": "sam@example.com", "gender": "x"}
        sealed = crypto.encrypt_fields(doc, ["name", "email"])
        assert crypto.decrypt_fields(sealed, ["name", "email"]) == doc

    def test_none_fields_left_alone(self, crypto: CryptoService):
        sealed = crypto.encrypt_fields({"phone": None}, ["phone", "missing"])
        assert sealed == {"phone": None}

    def test_already_encrypted_field_not_double_sealed(self, crypto: CryptoService):
        once = crypto.encrypt_fields({"name": "Sam"}, ["name"])
        twice = crypto.encrypt_fields(once, ["name"])
        assert twice == once

    def test_corrupt_field_names_the_field(self, crypto: CryptoService):
        sealed = crypto.encrypt_fields({"name": "Sam"}, ["name"])
        sealed["name"] = crypto.encrypt("x")[:-4] + "AAAA"
        with pytest.raises(CryptoError, match="'name'"):
            crypto.decrypt_fields(sealed, ["name"])


class TestHashIdentifier:
    def test_deterministic(self, crypto: CryptoService):
        assert crypto.hash_identifier("user-1") == crypto.hash_identifier("user-1")

    def test_distinct_inputs_distinct_hashes(self, crypto: CryptoService):
        hashes = {crypto.hash_identifier(f"user-{i}") for i in range(500)}
        assert len(hashes) == 500

    def test_salt_changes_hash(self, crypto: CryptoService):
        other = CryptoService(bytes(range(32)), "OTHER_SALT")
        assert crypto.hash_identifier("user-1") != other.hash_identifier("user-1")

    def test_hex_sha256(self, crypto: CryptoService):
        h = crypto.hash_identifier("user-1")
        assert len(h) == 64
        int(h, 16)


class TestLoadKey:
    def test_loads_configured_key(self):
        key = base64.b64decode(CryptoService.generate_key())
        settings = Settings(encryption_key_base64=base64.b64encode(key).decode())
        assert load_key(settings) == key

    def test_wrong_length_rejected(self):
        settings = Settings(encryption_key_base64=base64.b64encode(b"x" * 16).decode())
        with pytest.raises(CryptoError, match="32 bytes"):
            load_key(settings)

    def test_invalid_base64_rejected(self):
        with pytest.raises(CryptoError, match="base64"):
            load_key(Settings(encryption_key_base64="%%%"))

    def test_missing_key_in_production_is_fatal(self):
        settings = Settings(encryption_key_base64="", mindlens_env="production")
        with pytest.raises(CryptoError, match="production"):
            load_key(settings)

    def test_missing_key_outside_production_is_ephemeral(self, caplog):
        settings = Settings(encryption_key_base64="", mindlens_env="development")
        with caplog.at_level("WARNING"):
            first = load_key(settings)
            second = load_key(settings)
        assert len(first) == 32
        assert first != second
        assert "EPHEMERAL" in caplog.text


class TestKeygen:
    def test_prints_loadable_key(self):
        out = io.StringIO()
        key = keygen_run(out)
        first_line = out.getvalue().splitlines()[0]
        assert first_line == f"ENCRYPTION_KEY_BASE64={key}"

        settings = Settings(encryption_key_base64=key, mindlens_env="production")
        sealed = CryptoService(load_key(settings), "SALT").encrypt({"ok": True})
        assert CryptoService(load_key(settings), "SALT").decrypt(sealed) == {"ok": True}

    def test_fresh_key_each_run(self):
        assert keygen_run(io.StringIO()) != keygen_run(io.StringIO())
