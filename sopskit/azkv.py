"""Master keys that wrap the data key with an Azure Key Vault key."""

from __future__ import annotations

import base64
import binascii
import logging
import os
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Protocol, Tuple

import requests

log = logging.getLogger(__name__)

AZKV_TTL = timedelta(hours=24 * 30 * 6)
API_VERSION = "7.4"
KEY_VAULT_SCOPE = "https://vault.azure.net/.default"
DEFAULT_AUTHORITY = "https://login.microsoftonline.com"

_ALGORITHM = "RSA-OAEP-256"
_TIMEOUT = 30
_URL_RE = re.compile(r"^(https://[^/]+)/keys/([^/]+)/([^/]+)$")
_B64URL_RE = re.compile(r"[A-Za-z0-9_-]*")


class _Credential(Protocol):
    def get_token(self, *args: str) -> str: ...


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64url_decode(text: str) -> bytes:
    if not _B64URL_RE.fullmatch(text) or len(text) % 4 == 1:
        raise ValueError(f"illegal base64 data in {text!r}")
    try:
        return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"illegal base64 data: {exc}") from exc


def _check(response: Any, what: str) -> Dict[str, Any]:
    if response.status_code >= 400:
        raise RuntimeError(f"{what} failed with status {response.status_code}: {response.text}")
    return response.json()


class ClientSecretCredential:
    """Obtains access tokens with a service principal's client secret."""

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        authority: str = DEFAULT_AUTHORITY,
    ) -> None:
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.authority = authority.rstrip("/")
        self._cache: Dict[Tuple[str, ...], Tuple[str, float]] = {}

    def get_token(self, *args: str) -> str:
        """Return a bearer token for the given scopes (Key Vault by default)."""
        scopes = tuple(args) or (KEY_VAULT_SCOPE,)
        cached = self._cache.get(scopes)
        if cached is not None and cached[1] > time.monotonic():
            return cached[0]
        try:
            response = requests.post(
                f"{self.authority}/{self.tenant_id}/oauth2/v2.0/token",
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "scope": " ".join(scopes),
                },
                timeout=_TIMEOUT,
            )
        except requests.RequestException as exc:
            raise RuntimeError(f"token request failed: {exc}") from exc
        payload = _check(response, "token request")
        try:
            token = payload["access_token"]
        except KeyError:
            raise RuntimeError("token response holds no access_token") from None
        expires_in = int(payload.get("expires_in", 0) or 0)
        # Renew a minute early so a token never expires mid-request.
        self._cache[scopes] = (token, time.monotonic() + max(expires_in - 60, 0))
        return token


class _EnvironmentCredential:
    """Builds a client-secret credential from AZURE_* environment variables."""

    def get_token(self, *args: str) -> str:
        tenant_id = os.environ.get("AZURE_TENANT_ID", "")
        client_id = os.environ.get("AZURE_CLIENT_ID", "")
        client_secret = os.environ.get("AZURE_CLIENT_SECRET", "")
        missing = [
            name
            for name, value in (
                ("AZURE_TENANT_ID", tenant_id),
                ("AZURE_CLIENT_ID", client_id),
                ("AZURE_CLIENT_SECRET", client_secret),
            )
            if not value
        ]
        if missing:
            raise RuntimeError(
                "default credential is not configured: missing " + ", ".join(missing)
            )
        authority = os.environ.get("AZURE_AUTHORITY_HOST", DEFAULT_AUTHORITY)
        return ClientSecretCredential(tenant_id, client_id, client_secret, authority).get_token(*args)


@dataclass
class TokenCredential:
    """A credential to be injected into master keys."""

    token: Any

    def apply_to_master_key(self, key: "MasterKey") -> None:
        key._token_credential = self.token


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MasterKey:
    """An Azure Key Vault key and the data key encrypted with it."""

    vault_url: str = ""
    name: str = ""
    version: str = ""
    encrypted_key: str = ""
    creation_date: datetime = field(default_factory=_utcnow)
    _token_credential: Optional[Any] = field(default=None, repr=False, compare=False)

    def _get_token_credential(self) -> _Credential:
        if self._token_credential is None:
            return _EnvironmentCredential()
        return self._token_credential

    def _operation_url(self, operation: str) -> str:
        parts = [self.vault_url.rstrip("/"), "keys", self.name]
        if self.version:
            parts.append(self.version)
        parts.append(operation)
        return "/".join(parts)

    def _operation(self, operation: str, value: bytes) -> bytes:
        token = self._get_token_credential().get_token(KEY_VAULT_SCOPE)
        try:
            response = requests.post(
                self._operation_url(operation),
                params={"api-version": API_VERSION},
                json={"alg": _ALGORITHM, "value": _b64url_encode(value)},
                headers={"Authorization": f"Bearer {token}"},
                timeout=_TIMEOUT,
            )
        except requests.RequestException as exc:
            raise RuntimeError(f"{operation} request failed: {exc}") from exc
        payload = _check(response, f"{operation} request")
        try:
            return _b64url_decode(payload["value"])
        except KeyError:
            raise RuntimeError(f"{operation} response holds no value") from None

    def _log(self, message: str) -> None:
        log.info("%s (key %s, version %s)", message, self.name, self.version)

    def encrypt(self, data_key: bytes) -> None:
        """Encrypt the data key with Key Vault and store the result."""
        try:
            result = self._operation("encrypt", data_key)
        except Exception as exc:
            self._log("Encryption failed")
            raise RuntimeError(
                f"failed to encrypt sops data key with Azure Key Vault key "
                f"'{self.to_string()}': {exc}"
            ) from exc
        self.set_encrypted_data_key(_b64url_encode(result).encode("ascii"))
        self._log("Encryption succeeded")

    def encrypt_if_needed(self, data_key: bytes) -> None:
        if not self.encrypted_key:
            self.encrypt(data_key)

    def encrypted_data_key(self) -> bytes:
        return self.encrypted_key.encode()

    def set_encrypted_data_key(self, enc: bytes) -> None:
        self.encrypted_key = enc.decode()

    def decrypt(self) -> bytes:
        """Decrypt the stored data key with Key Vault and return it."""
        try:
            raw = _b64url_decode(self.encrypted_key)
        except ValueError as exc:
            self._log("Decryption failed")
            raise ValueError(
                f"failed to base64 decode Azure Key Vault encrypted key: {exc}"
            ) from exc
        try:
            result = self._operation("decrypt", raw)
        except Exception as exc:
            self._log("Decryption failed")
            raise RuntimeError(
                f"failed to decrypt sops data key with Azure Key Vault key "
                f"'{self.to_string()}': {exc}"
            ) from exc
        self._log("Decryption succeeded")
        return result

    def _created_utc(self) -> datetime:
        if self.creation_date.tzinfo is None:
            return self.creation_date.replace(tzinfo=timezone.utc)
        return self.creation_date.astimezone(timezone.utc)

    def needs_rotation(self) -> bool:
        return _utcnow() - self._created_utc() > AZKV_TTL

    def to_string(self) -> str:
        return f"{self.vault_url}/keys/{self.name}/{self.version}"

    def to_map(self) -> Dict[str, object]:
        return {
            "vaultUrl": self.vault_url,
            "key": self.name,
            "version": self.version,
            "created_at": self._created_utc().strftime("%Y-%m-%dT%H:%M:%SZ"),
            "enc": self.encrypted_key,
        }


def new_master_key(vault_url: str, key_name: str, key_version: str) -> MasterKey:
    """Create a MasterKey dated now."""
    return MasterKey(vault_url=vault_url, name=key_name, version=key_version)


def master_key_from_url(url: str) -> MasterKey:
    """Parse a key URL of the form {vaultUrl}/keys/{keyName}/{keyVersion}."""
    match = _URL_RE.match(url)
    if match is None:
        raise ValueError(f"could not parse {url!r} into a valid Azure Key Vault MasterKey")
    return new_master_key(match.group(1), match.group(2), match.group(3))


def master_keys_from_urls(urls: str) -> List[MasterKey]:
    """Parse a comma-separated list of key URLs."""
    if urls == "":
        return []
    return [master_key_from_url(url) for url in urls.split(",")]