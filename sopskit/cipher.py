"""AES-256-GCM encryption of individual tree values in the ENC[...] format."""

from __future__ import annotations

import base64
import binascii
import math
import os
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Tuple, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

NONCE_SIZE = 32
_TAG_SIZE = 16
_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1

_ENC_RE = re.compile(r"^ENC\[AES256_GCM,data:(.+),iv:(.+),tag:(.+),type:(.+)\]")
_INT_RE = re.compile(r"[+-]?[0-9]+")

_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False"})


@dataclass(frozen=True)
class Comment:
    """A comment carried in the tree; it is encrypted like any other value."""

    value: str = ""


Plaintext = Union[str, int, float, bool, bytes, Comment]


@dataclass(frozen=True)
class _EncryptedValue:
    data: bytes
    iv: bytes
    tag: bytes
    datatype: str


def _b64decode(text: str, what: str) -> bytes:
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"Error base64-decoding {what}: {exc}") from exc


def _parse(value: str) -> _EncryptedValue:
    match = _ENC_RE.match(value)
    if match is None:
        raise ValueError(f"Input string {value} does not match sops' data format")
    return _EncryptedValue(
        data=_b64decode(match.group(1), "data"),
        iv=_b64decode(match.group(2), "iv"),
        tag=_b64decode(match.group(3), "tag"),
        datatype=match.group(4),
    )


def _is_empty(value: object) -> bool:
    if isinstance(value, (str, bytes)):
        return len(value) == 0
    if isinstance(value, Comment):
        return _is_empty(value.value)
    return False


def _format_float(value: float) -> str:
    """Shortest exact decimal form, without exponent or trailing zeros."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    return format(Decimal(repr(value)).normalize(), "f")


def _parse_int(text: str) -> int:
    if not _INT_RE.fullmatch(text):
        raise ValueError(f"invalid integer value: {text!r}")
    number = int(text)
    if not _INT64_MIN <= number <= _INT64_MAX:
        raise ValueError(f"integer value out of range: {text!r}")
    return number


def _parse_float(text: str) -> float:
    if "_" in text or text != text.strip():
        raise ValueError(f"invalid float value: {text!r}")
    try:
        return float(text)
    except ValueError as exc:
        raise ValueError(f"invalid float value: {text!r}") from exc


def _parse_bool(text: str) -> bool:
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise ValueError(f"invalid boolean value: {text!r}")


def _aead(key: bytes) -> AESGCM:
    try:
        return AESGCM(bytes(key))
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Could not initialize AES GCM encryption cipher: {exc}") from exc


class Cipher:
    """Encrypts and decrypts values with AES-GCM-256.

    Nonces seen while decrypting are remembered so that re-encrypting an
    unchanged value yields the same ciphertext.
    """

    def __init__(self) -> None:
        self._stash: Dict[Tuple[type, object, str], bytes] = {}

    @staticmethod
    def _stash_key(plaintext: object, additional_data: str) -> Tuple[type, object, str]:
        return (type(plaintext), plaintext, additional_data)

    def encrypt(self, plaintext: Plaintext, key: bytes, additional_data: str) -> str:
        """Encrypt a str, int, float, bool or Comment into an ENC[...] string."""
        if _is_empty(plaintext):
            return ""
        aead = _aead(key)

        if isinstance(plaintext, bool):
            datatype, plain = "bool", b"True" if plaintext else b"False"
        elif isinstance(plaintext, int):
            if not _INT64_MIN <= plaintext <= _INT64_MAX:
                raise ValueError(f"Integer value {plaintext} is out of range")
            datatype, plain = "int", str(plaintext).encode()
        elif isinstance(plaintext, float):
            datatype, plain = "float", _format_float(plaintext).encode()
        elif isinstance(plaintext, str):
            datatype, plain = "str", plaintext.encode("utf-8", "surrogateescape")
        elif isinstance(plaintext, Comment):
            datatype, plain = "comment", plaintext.value.encode("utf-8", "surrogateescape")
        else:
            raise TypeError(f"Value to encrypt has unsupported type {type(plaintext).__name__}")

        try:
            iv = self._stash.get(self._stash_key(plaintext, additional_data))
        except TypeError:
            iv = None
        if iv is None:
            iv = os.urandom(NONCE_SIZE)

        sealed = aead.encrypt(iv, plain, additional_data.encode("utf-8", "surrogateescape"))
        data, tag = sealed[:-_TAG_SIZE], sealed[-_TAG_SIZE:]
        return "ENC[AES256_GCM,data:{},iv:{},tag:{},type:{}]".format(
            base64.b64encode(data).decode("ascii"),
            base64.b64encode(iv).decode("ascii"),
            base64.b64encode(tag).decode("ascii"),
            datatype,
        )

    def decrypt(self, ciphertext: str, key: bytes, additional_data: str) -> Plaintext:
        """Decrypt an ENC[...] string and return the typed plaintext."""
        if _is_empty(ciphertext):
            return ""
        value = _parse(ciphertext)
        aead = _aead(key)
        try:
            decrypted = aead.decrypt(
                value.iv,
                value.data + value.tag,
                additional_data.encode("utf-8", "surrogateescape"),
            )
        except (InvalidTag, ValueError) as exc:
            raise ValueError(f"Could not decrypt with AES_GCM: {exc or 'message authentication failed'}") from exc

        text = decrypted.decode("utf-8", "surrogateescape")
        plaintext: Plaintext
        if value.datatype == "str":
            plaintext = text
        elif value.datatype == "int":
            plaintext = _parse_int(text)
        elif value.datatype == "float":
            plaintext = _parse_float(text)
        elif value.datatype == "bytes":
            plaintext = decrypted
        elif value.datatype == "bool":
            plaintext = _parse_bool(text)
        elif value.datatype == "comment":
            plaintext = Comment(text)
        else:
            raise ValueError(f"Unknown datatype: {value.datatype}")

        self._stash[self._stash_key(plaintext, additional_data)] = value.iv
        return plaintext