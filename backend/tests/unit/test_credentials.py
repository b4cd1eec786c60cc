"""
Unit tests for credential parsing, masking and the CredentialStore.
"""

import json
from unittest.mock import MagicMock

import pytest
from dotenv import dotenv_values
from pydantic import SecretStr

from backend.vault.models.generation import Provider
from backend.vault.services.credentials import (
    CredentialStore,
    mask_credential,
    mask_for,
    parse_credentials,
)


def _fake_settings(**keys):
    s = MagicMock()
    s.persist_credentials = False
    s.env_file_path = ".env"

    def api_key_for(provider):
        value = keys.get(provider.value)
        return SecretStr(value) if value is not None else None

    s.api_key_for.side_effect = api_key_for
    return s


class TestParseCredentials:
    """parse_credentials is total: it never raises."""

    def test_absent_value_gives_empty_list(self):
        assert parse_credentials(None) == []
        assert parse_credentials("") == []

    def test_json_array_is_used_verbatim(self):
        raw = json.dumps(["pplx-aaaa", "pplx-bbbb", "pplx-cccc"])
        assert parse_credentials(raw) == ["pplx-aaaa", "pplx-bbbb", "pplx-cccc"]

    def test_array_elements_are_not_revalidated(self):
        assert parse_credentials('["key", 42, null]') == ["key", 42, None]

    def test_empty_json_array(self):
        assert parse_credentials("[]") == []

    @pytest.mark.parametrize(
        "raw",
        [
            "pplx-plain-single-key",
            '"quoted-string"',
            '{"key": "value"}',
            "42",
            "null",
            "true",
            "[unterminated",
            "[" * 100_000,
            "   ",
        ],
    )
    def test_anything_else_is_a_single_credential(self, raw):
        assert parse_credentials(raw) == [raw]


class TestMaskCredential:

    def test_keeps_prefix_and_suffix_only(self):
        key = "pplx-1234567890abcdefWXYZ"
        masked = mask_credential(key)
        assert masked == "pplx-123...WXYZ"
        assert key not in masked

    def test_short_keys_never_round_trip(self):
        for key in ["abc", "abcdef", "abcdefghijkl"]:
            masked = mask_credential(key)
            assert masked != key
            assert masked.startswith("****")

    def test_huggingface_uses_shorter_prefix(self):
        key = "hf_abcdefghijklmnopqrstuvwxyz"
        assert mask_for(Provider.HUGGINGFACE, key) == "hf_ab...wxyz"
        assert mask_for(Provider.GEMINI, key) == "hf_abcde...wxyz"


class TestCredentialStore:

    def test_reads_keys_from_settings(self):
        store = CredentialStore(_fake_settings(perplexity='["k1", "k2"]', gemini="g1"))

        assert store.credential_set(Provider.PERPLEXITY).credentials == ("k1", "k2")
        assert store.credential_set(Provider.GEMINI).credentials == ("g1",)
        assert store.credential_set(Provider.GROQ).credentials == ()

    def test_non_string_array_elements_become_strings(self):
        store = CredentialStore(_fake_settings(perplexity="[12345, \"k2\"]"))
        assert store.credential_set(Provider.PERPLEXITY).credentials == ("12345", "k2")

    def test_models_are_attached(self):
        store = CredentialStore(_fake_settings(huggingface="hf_token"))
        cs = store.credential_set(Provider.HUGGINGFACE, models=["m1", "m2"])
        assert cs.models == ("m1", "m2")
        assert len(cs) == 2

    def test_upsert_overrides_settings(self):
        store = CredentialStore(_fake_settings(perplexity="old-key"))

        store.upsert(Provider.PERPLEXITY, '["new-1", "new-2"]')

        assert store.raw_value(Provider.PERPLEXITY) == '["new-1", "new-2"]'
        assert store.credential_set(Provider.PERPLEXITY).credentials == ("new-1", "new-2")

    def test_upsert_rejects_empty(self):
        store = CredentialStore(_fake_settings())
        with pytest.raises(ValueError):
            store.upsert(Provider.GEMINI, "")

    def test_upsert_persists_to_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text('GEMINI_API_KEY="old"\nOTHER=1\n')
        settings = _fake_settings()
        settings.env_file_path = str(env_file)

        store = CredentialStore(settings, persist=True)
        store.upsert(Provider.GEMINI, "AIzaNewGeminiKey1234567")

        values = dotenv_values(env_file)
        assert values["GEMINI_API_KEY"] == "AIzaNewGeminiKey1234567"
        assert values["OTHER"] == "1"

    def test_upsert_does_not_log_raw_key(self, caplog):
        store = CredentialStore(_fake_settings())
        secret = "pplx-super-secret-value-9876"

        with caplog.at_level("INFO"):
            store.upsert(Provider.PERPLEXITY, secret)

        assert secret not in caplog.text
        assert "PERPLEXITY_API_KEY" in caplog.text
