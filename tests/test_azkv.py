import base64
from datetime import datetime, timedelta, timezone

import pytest
import requests

from sopskit import azkv
from sopskit.azkv import (
    AZKV_TTL,
    ClientSecretCredential,
    MasterKey,
    TokenCredential,
    master_key_from_url,
    master_keys_from_urls,
    new_master_key,
)

MOCK_AZURE_URL = "https://test.vault.azure.net/keys/test-key/a2a690a4fcc04166b739da342a912c90"


def _b64(data):
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


class _Response:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code
        self.text = str(payload)

    def json(self):
        return self._payload


class _FakeCredential:
    def get_token(self, *args):
        return "token"


@pytest.fixture
def no_azure_env(monkeypatch):
    for name in ("AZURE_TENANT_ID", "AZURE_CLIENT_ID", "AZURE_CLIENT_SECRET", "AZURE_AUTHORITY_HOST"):
        monkeypatch.delenv(name, raising=False)


def test_master_key_from_url():
    key = master_key_from_url(MOCK_AZURE_URL)
    assert key.vault_url == "https://test.vault.azure.net"
    assert key.name == "test-key"
    assert key.version == "a2a690a4fcc04166b739da342a912c90"
    assert key.creation_date.tzinfo is not None


def test_master_key_from_malformed_url():
    with pytest.raises(ValueError, match="could not parse"):
        master_key_from_url(
            "https://test.vault.azure.net/no-keys-here/test-key/a2a690a4fcc04166b739da342a912c90"
        )


def test_master_keys_from_single_url():
    keys = master_keys_from_urls(MOCK_AZURE_URL)
    assert len(keys) == 1
    assert keys[0].vault_url == "https://test.vault.azure.net"
    assert keys[0].name == "test-key"
    assert keys[0].version == "a2a690a4fcc04166b739da342a912c90"


def test_master_keys_from_multiple_urls():
    keys = master_keys_from_urls(
        "https://test.vault.azure.net/keys/test-key/a2a690a4fcc04166b739da342a912c90,"
        "https://test2.vault.azure.net/keys/another-test-key/cf0021e8b743453bae758e7fbf71b60e"
    )
    assert [(k.vault_url, k.name, k.version) for k in keys] == [
        ("https://test.vault.azure.net", "test-key", "a2a690a4fcc04166b739da342a912c90"),
        ("https://test2.vault.azure.net", "another-test-key", "cf0021e8b743453bae758e7fbf71b60e"),
    ]


def test_master_keys_from_urls_one_malformed():
    with pytest.raises(ValueError):
        master_keys_from_urls(
            "https://test.vault.azure.net/keys/test-key/a2a690a4fcc04166b739da342a912c90,"
            "https://test.vault.azure.net/no-keys-here/test-key/a2a690a4fcc04166b739da342a912c90"
        )


def test_master_keys_from_empty_urls():
    assert master_keys_from_urls("") == []


def test_encrypted_data_key():
    key = MasterKey(encrypted_key="some key")
    assert key.encrypted_data_key() == b"some key"


def test_set_encrypted_data_key():
    key = MasterKey()
    key.set_encrypted_data_key(b"encrypted")
    assert key.encrypted_key == "encrypted"


def test_encrypt_without_credentials_fails(no_azure_env):
    key = master_key_from_url(MOCK_AZURE_URL)
    with pytest.raises(RuntimeError, match="failed to encrypt sops data key with Azure Key Vault key"):
        key.encrypt(b"some data")
    assert key.encrypted_key == ""


def test_encrypt_if_needed_already_encrypted():
    key = master_key_from_url(MOCK_AZURE_URL)
    key.encrypted_key = "encrypted"
    key.encrypt_if_needed(b"other data")
    assert key.encrypted_key == "encrypted"


def test_needs_rotation():
    key = new_master_key("", "", "")
    assert key.needs_rotation() is False
    key.creation_date = key.creation_date - (AZKV_TTL + timedelta(seconds=1))
    assert key.needs_rotation() is True


def test_to_string():
    key = new_master_key("https://test.vault.azure.net", "key-name", "key-version")
    assert key.to_string() == "https://test.vault.azure.net/keys/key-name/key-version"


def test_to_map():
    key = MasterKey(
        creation_date=datetime(2016, 10, 31, 10, 0, 0, tzinfo=timezone.utc),
        vault_url="https://test.vault.azure.net",
        name="test-key",
        version="1",
        encrypted_key="this is encrypted",
    )
    assert key.to_map() == {
        "vaultUrl": "https://test.vault.azure.net",
        "key": "test-key",
        "version": "1",
        "enc": "this is encrypted",
        "created_at": "2016-10-31T10:00:00Z",
    }


def test_token_credential_is_used_for_encrypt(monkeypatch):
    calls = []

    def fake_post(url, params=None, json=None, headers=None, timeout=None, data=None):
        calls.append((url, params, json, headers))
        return _Response({"kid": url, "value": _b64(b"cipher")})

    monkeypatch.setattr(requests, "post", fake_post)
    key = master_key_from_url(MOCK_AZURE_URL)
    TokenCredential(_FakeCredential()).apply_to_master_key(key)
    key.encrypt(b"some data")

    assert key.encrypted_key == _b64(b"cipher")
    url, params, body, headers = calls[0]
    assert url == MOCK_AZURE_URL + "/encrypt"
    assert params == {"api-version": azkv.API_VERSION}
    assert body == {"alg": "RSA-OAEP-256", "value": _b64(b"some data")}
    assert headers == {"Authorization": "Bearer token"}


def test_decrypt_sends_raw_ciphertext(monkeypatch):
    calls = []

    def fake_post(url, params=None, json=None, headers=None, timeout=None, data=None):
        calls.append((url, json))
        return _Response({"kid": url, "value": _b64(b"plain")})

    monkeypatch.setattr(requests, "post", fake_post)
    key = master_key_from_url(MOCK_AZURE_URL)
    TokenCredential(_FakeCredential()).apply_to_master_key(key)
    key.encrypted_key = _b64(b"cipher")

    assert key.decrypt() == b"plain"
    assert calls == [(MOCK_AZURE_URL + "/decrypt", {"alg": "RSA-OAEP-256", "value": _b64(b"cipher")})]


def test_encrypt_decrypt_round_trip(monkeypatch):
    def fake_post(url, params=None, json=None, headers=None, timeout=None, data=None):
        # A reversible stand-in for the vault: reverse the bytes.
        raw = base64.urlsafe_b64decode(json["value"] + "=" * (-len(json["value"]) % 4))
        return _Response({"value": _b64(raw[::-1])})

    monkeypatch.setattr(requests, "post", fake_post)
    key = master_key_from_url(MOCK_AZURE_URL)
    TokenCredential(_FakeCredential()).apply_to_master_key(key)
    key.encrypt(b"the earth is round")
    assert key.encrypted_data_key()
    assert key.decrypt() == b"the earth is round"


def test_encrypt_service_error(monkeypatch):
    monkeypatch.setattr(requests, "post", lambda *a, **k: _Response({"error": "forbidden"}, 403))
    key = master_key_from_url(MOCK_AZURE_URL)
    TokenCredential(_FakeCredential()).apply_to_master_key(key)
    with pytest.raises(RuntimeError, match="failed to encrypt sops data key"):
        key.encrypt(b"data")
    assert key.encrypted_key == ""


def test_decrypt_invalid_base64():
    key = master_key_from_url(MOCK_AZURE_URL)
    TokenCredential(_FakeCredential()).apply_to_master_key(key)
    key.encrypted_key = "not base64!"
    with pytest.raises(ValueError, match="failed to base64 decode"):
        key.decrypt()


def test_default_credential_from_environment(monkeypatch, no_azure_env):
    monkeypatch.setenv("AZURE_TENANT_ID", "tenant")
    monkeypatch.setenv("AZURE_CLIENT_ID", "client")
    monkeypatch.setenv("AZURE_CLIENT_SECRET", "secret")
    seen = []

    def fake_post(url, params=None, json=None, headers=None, timeout=None, data=None):
        seen.append(url)
        if url.endswith("/oauth2/v2.0/token"):
            assert data["client_id"] == "client"
            assert data["scope"] == azkv.KEY_VAULT_SCOPE
            return _Response({"access_token": "token", "expires_in": 3600})
        assert headers == {"Authorization": "Bearer token"}
        return _Response({"value": _b64(b"cipher")})

    monkeypatch.setattr(requests, "post", fake_post)
    key = master_key_from_url(MOCK_AZURE_URL)
    key.encrypt(b"data")
    assert key.encrypted_key == _b64(b"cipher")
    assert seen[0] == azkv.DEFAULT_AUTHORITY + "/tenant/oauth2/v2.0/token"


def test_client_secret_credential_caches_token(monkeypatch):
    count = []

    def fake_post(url, data=None, timeout=None, **kwargs):
        count.append(url)
        return _Response({"access_token": "token", "expires_in": 3600})

    monkeypatch.setattr(requests, "post", fake_post)
    secret = "secret"
    credential = ClientSecretCredential("tenant", "client", secret)
    assert credential.get_token() == "token"
    assert credential.get_token() == "token"
    assert len(count) == 1


def test_client_secret_credential_error(monkeypatch):
    monkeypatch.setattr(requests, "post", lambda *a, **k: _Response({"error": "invalid_client"}, 401))
    secret = "secret"
    credential = ClientSecretCredential("tenant", "client", secret)
    with pytest.raises(RuntimeError, match="token request failed"):
        credential.get_token()