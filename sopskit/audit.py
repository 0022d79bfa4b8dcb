"""Audit events and the registry of auditors that receive them."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Union

import yaml

log = logging.getLogger(__name__)

CONFIG_FILE = Path("/etc/sops/audit.yaml")


class Auditor(ABC):
    """Receives noteworthy events, such as a file being encrypted or decrypted."""

    @abstractmethod
    def handle(self, event: object) -> None:
        """Persist or otherwise act on an audit event."""


@dataclass(frozen=True)
class DecryptEvent:
    file: str


@dataclass(frozen=True)
class EncryptEvent:
    file: str


@dataclass(frozen=True)
class RotateEvent:
    file: str


_auditors: List[Auditor] = []


def register(auditor: Auditor) -> None:
    """Add an auditor to the global list."""
    _auditors.append(auditor)


def submit_event(event: object) -> None:
    """Hand an event to every registered auditor."""
    for auditor in _auditors:
        auditor.handle(event)


def load_backend_connection_strings(path: Union[str, Path] = CONFIG_FILE) -> List[str]:
    """Read the audit configuration and return its Postgres connection strings.

    A configuration file that cannot be read means no backends. A file that
    is not valid YAML, or is not shaped like an audit configuration, raises
    ValueError.
    """
    try:
        text = Path(path).read_text()
    except OSError as exc:
        log.debug("Error reading config: %s", exc)
        return []
    try:
        conf = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"Error unmarshalling config: {exc}") from exc

    if conf is None:
        return []
    if not isinstance(conf, dict):
        raise ValueError("Error unmarshalling config: top level must be a mapping")
    backends = conf.get("backends") or {}
    if not isinstance(backends, dict):
        raise ValueError("Error unmarshalling config: 'backends' must be a mapping")
    postgres = backends.get("postgres") or []
    if not isinstance(postgres, list):
        raise ValueError("Error unmarshalling config: 'postgres' must be a list")

    connection_strings = []
    for entry in postgres:
        if entry is None:
            entry = {}
        if not isinstance(entry, dict):
            raise ValueError("Error unmarshalling config: postgres entries must be mappings")
        value = entry.get("connection_string", "")
        connection_strings.append("" if value is None else str(value))
    return connection_strings