"""Master keys that wrap the data key with age."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from sopskit import agecrypt
from sopskit.agecrypt import AgeError, X25519Identity, X25519Recipient

log = logging.getLogger(__name__)

SOPS_AGE_KEY_ENV = "SOPS_AGE_KEY"
SOPS_AGE_KEY_FILE_ENV = "SOPS_AGE_KEY_FILE"
SOPS_AGE_KEY_USER_CONFIG_PATH = "sops/age/keys.txt"


def _parse_recipient(recipient: str) -> X25519Recipient:
    try:
        return agecrypt.parse_x25519_recipient(recipient)
    except AgeError as exc:
        raise AgeError(f"failed to parse input as Bech32-encoded age public key: {exc}") from exc


def _user_config_dir() -> str:
    if sys.platform == "win32":
        directory = os.environ.get("AppData", "")
        if not directory:
            raise OSError("%AppData% is not defined")
        return directory
    if sys.platform == "darwin":
        home = os.environ.get("HOME", "")
        if not home:
            raise OSError("$HOME is not defined")
        return os.path.join(home, "Library", "Application Support")
    directory = os.environ.get("XDG_CONFIG_HOME", "")
    if not directory:
        home = os.environ.get("HOME", "")
        if not home:
            raise OSError("neither $XDG_CONFIG_HOME nor $HOME are defined")
        return os.path.join(home, ".config")
    if not os.path.isabs(directory):
        raise OSError("path in $XDG_CONFIG_HOME is relative")
    return directory


class ParsedIdentities(list):
    """A list of parsed age identities that can be handed to master keys."""

    def import_identities(self, *args: str) -> None:
        """Parse each argument (possibly multi-line) and append the identities."""
        parsed: List[X25519Identity] = []
        try:
            for text in args:
                parsed.extend(agecrypt.parse_identities(text))
        except AgeError as exc:
            raise AgeError(f"failed to parse and add to age identities: {exc}") from exc
        self.extend(parsed)

    def apply_to_master_key(self, key: "MasterKey") -> None:
        key._parsed_identities = self


@dataclass
class MasterKey:
    """An age recipient and the data key encrypted to it."""

    recipient: str = ""
    encrypted_key: str = ""
    identity: str = ""
    _parsed_identities: Optional[ParsedIdentities] = field(default=None, repr=False, compare=False)
    _parsed_recipient: Optional[X25519Recipient] = field(default=None, repr=False, compare=False)

    def encrypt(self, data_key: bytes) -> None:
        """Encrypt the data key to the recipient and store the armored result."""
        try:
            if self._parsed_recipient is None:
                self._parsed_recipient = _parse_recipient(self.recipient)
            try:
                blob = agecrypt.encrypt(data_key, [self._parsed_recipient])
            except AgeError as exc:
                raise AgeError(f"failed to encrypt sops data key with age: {exc}") from exc
        except AgeError:
            log.info("Encryption failed (recipient %s)", self.recipient)
            raise
        self.set_encrypted_data_key(agecrypt.armor(blob).encode("ascii"))
        log.info("Encryption succeeded (recipient %s)", self._parsed_recipient)

    def encrypt_if_needed(self, data_key: bytes) -> None:
        if not self.encrypted_key:
            self.encrypt(data_key)

    def encrypted_data_key(self) -> bytes:
        return self.encrypted_key.encode()

    def set_encrypted_data_key(self, enc: bytes) -> None:
        self.encrypted_key = enc.decode()

    def decrypt(self) -> bytes:
        """Decrypt the stored data key with the applied or loaded identities."""
        if not self._parsed_identities:
            try:
                ids = self.load_identities()
            except (AgeError, OSError) as exc:
                log.info("Decryption failed")
                raise AgeError(f"failed to load age identities: {exc}") from exc
            ids.apply_to_master_key(self)
        try:
            result = agecrypt.decrypt(agecrypt.dearmor(self.encrypted_key), self._parsed_identities or [])
        except AgeError as exc:
            log.info("Decryption failed")
            raise AgeError(
                f"failed to create reader for decrypting sops data key with age: {exc}"
            ) from exc
        log.info("Decryption succeeded")
        return result

    def needs_rotation(self) -> bool:
        return False

    def to_string(self) -> str:
        return self.recipient

    def to_map(self) -> Dict[str, object]:
        return {"recipient": self.recipient, "enc": self.encrypted_key}

    def load_identities(self) -> ParsedIdentities:
        """Load identities from the environment and the user's config directory."""
        sources: Dict[str, str] = {}
        env_key = os.environ.get(SOPS_AGE_KEY_ENV)
        if env_key is not None:
            sources[SOPS_AGE_KEY_ENV] = env_key
        key_file = os.environ.get(SOPS_AGE_KEY_FILE_ENV)
        if key_file is not None:
            try:
                sources[SOPS_AGE_KEY_FILE_ENV] = Path(key_file).read_text()
            except OSError as exc:
                raise AgeError(f"failed to open {SOPS_AGE_KEY_FILE_ENV} file: {exc}") from exc

        try:
            config_dir = _user_config_dir()
        except OSError as exc:
            if not sources:
                raise AgeError(f"user config directory could not be determined: {exc}") from exc
            config_dir = ""
        if config_dir:
            path = os.path.join(config_dir, *SOPS_AGE_KEY_USER_CONFIG_PATH.split("/"))
            try:
                sources[path] = Path(path).read_text()
            except FileNotFoundError as exc:
                if not sources:
                    raise AgeError(f"failed to open file: {exc}") from exc
            except OSError as exc:
                raise AgeError(f"failed to open file: {exc}") from exc

        identities = ParsedIdentities()
        for name, text in sources.items():
            try:
                identities.extend(agecrypt.parse_identities(text))
            except AgeError as exc:
                raise AgeError(f"failed to parse '{name}' age identities: {exc}") from exc
        return identities


def master_key_from_recipient(recipient: str) -> MasterKey:
    """Parse a Bech32 age public key into a new MasterKey."""
    recipient = recipient.strip()
    parsed = _parse_recipient(recipient)
    return MasterKey(recipient=recipient, _parsed_recipient=parsed)


def master_keys_from_recipients(comma_separated_recipients: str) -> List[MasterKey]:
    """Parse a comma-separated list of age public keys."""
    if comma_separated_recipients == "":
        return []
    return [master_key_from_recipient(r) for r in comma_separated_recipients.split(",")]