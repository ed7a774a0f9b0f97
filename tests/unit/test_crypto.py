"""Tests for the secret codec."""
import pytest
from cryptography.fernet import Fernet

from laneshare.crypto import SecretCodec, generate_key
from laneshare.errors import ConfigurationError, DecryptionError


@pytest.fixture(name="codec")
def codec_fixture():
    return SecretCodec(generate_key())


class TestSecretCodec:
    @pytest.mark.parametrize("plaintext", [
        "service-role-key-value",
        "",
        "ключ-🔑-密钥",
        "line one\nline two\t\u0000end",
    ])
    def test_decrypt_returns_original_plaintext(self, codec, plaintext):
        token = codec.encrypt(plaintext)
        assert codec.decrypt(token) == plaintext

    def test_ciphertext_does_not_contain_plaintext(self, codec):
        token = codec.encrypt("super-secret-token-123")
        assert "super-secret-token-123" not in token

    def test_same_plaintext_encrypts_differently(self, codec):
        """Fresh IV per call: identical inputs must not produce identical tokens."""
        assert codec.encrypt("same") != codec.encrypt("same")

    def test_wrong_key_fails(self, codec):
        token = codec.encrypt("payload")
        other = SecretCodec(generate_key())
        with pytest.raises(DecryptionError):
            other.decrypt(token)

    def test_tampered_token_fails(self, codec):
        token = codec.encrypt("payload")
        # Flip a character in the middle of the token body.
        i = len(token) // 2
        flipped = "A" if token[i] != "A" else "B"
        tampered = token[:i] + flipped + token[i + 1:]
        with pytest.raises(DecryptionError):
            codec.decrypt(tampered)

    def test_garbage_fails(self, codec):
        with pytest.raises(DecryptionError):
            codec.decrypt("not-a-token")

    def test_non_ascii_ciphertext_fails(self, codec):
        with pytest.raises(DecryptionError):
            codec.decrypt("ünïcode")

    def test_decryption_error_does_not_echo_ciphertext(self, codec):
        with pytest.raises(DecryptionError) as excinfo:
            codec.decrypt("gAAAAA-bogus")
        assert "gAAAAA-bogus" not in str(excinfo.value)


class TestJsonHelpers:
    def test_json_payload_survives(self, codec):
        payload = {"token": "abc", "nested": {"headers": {"X-Key": "v"}}}
        assert codec.decrypt_json(codec.encrypt_json(payload)) == payload

    def test_unicode_json_payload_survives(self, codec):
        payload = {"token": "ключ-🔑-密钥", "headers": {"X-Région": "値"}, "empty": ""}
        token = codec.encrypt_json(payload)
        assert codec.decrypt_json(token) == payload
        assert "ключ" not in token

    def test_empty_json_payload_survives(self, codec):
        assert codec.decrypt_json(codec.encrypt_json({})) == {}

    def test_non_object_json_rejected(self, codec):
        with pytest.raises(DecryptionError, match="JSON object"):
            codec.decrypt_json(codec.encrypt("[1, 2, 3]"))

    def test_invalid_json_rejected(self, codec):
        with pytest.raises(DecryptionError, match="not valid JSON"):
            codec.decrypt_json(codec.encrypt("{not json"))


class TestKeyHandling:
    def test_generate_key_is_a_fernet_key(self):
        key = generate_key()
        Fernet(key.encode())  # raises if malformed

    def test_generated_keys_differ(self):
        assert generate_key() != generate_key()

    def test_missing_key_is_configuration_error(self):
        with pytest.raises(ConfigurationError, match="not set"):
            SecretCodec("")

    def test_malformed_key_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            SecretCodec("too-short")
