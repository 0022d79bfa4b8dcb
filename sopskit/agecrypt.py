"""The age file format with native X25519 recipients and identities."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import os
from dataclasses import dataclass, field
from typing import Iterable, List, Sequence, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

INTRO = b"age-encryption.org/v1"
ARMOR_HEADER = "-----BEGIN AGE ENCRYPTED FILE-----"
ARMOR_FOOTER = "-----END AGE ENCRYPTED FILE-----"
RECIPIENT_HRP = "age"
IDENTITY_HRP = "AGE-SECRET-KEY-"

_X25519_LABEL = b"age-encryption.org/v1/X25519"
_COLUMNS = 64
_CHUNK_SIZE = 64 * 1024
_TAG_SIZE = 16
_FILE_KEY_SIZE = 16
_NONCE_SIZE = 16

_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_GENERATOR = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)


class AgeError(Exception):
    """Raised for malformed keys, malformed files and failed decryption."""


# --- bech32 -----------------------------------------------------------------


def _polymod(values: Iterable[int]) -> int:
    chk = 1
    for value in values:
        top = chk >> 25
        chk = ((chk & 0x1FFFFFF) << 5) ^ value
        for i, gen in enumerate(_GENERATOR):
            if (top >> i) & 1:
                chk ^= gen
    return chk


def _hrp_expand(hrp: str) -> List[int]:
    return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]


def _convert_bits(data: Sequence[int], from_bits: int, to_bits: int, pad: bool) -> List[int]:
    acc = bits = 0
    maxv = (1 << to_bits) - 1
    out: List[int] = []
    for value in data:
        acc = (acc << from_bits) | value
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            out.append((acc >> bits) & maxv)
    if pad:
        if bits:
            out.append((acc << (to_bits - bits)) & maxv)
    elif bits >= from_bits or (acc << (to_bits - bits)) & maxv:
        raise AgeError("invalid padding in bech32 data")
    return out


def _bech32_encode(hrp: str, data: bytes) -> str:
    values = _convert_bits(data, 8, 5, True)
    lower = hrp.lower()
    poly = _polymod(_hrp_expand(lower) + values + [0] * 6) ^ 1
    checksum = [(poly >> 5 * (5 - i)) & 31 for i in range(6)]
    encoded = hrp + "1" + "".join(_CHARSET[v] for v in values + checksum)
    return encoded.upper() if hrp.isupper() else encoded


def _bech32_decode(text: str) -> Tuple[str, bytes]:
    if text.lower() != text and text.upper() != text:
        raise AgeError("mixed case")
    pos = text.rfind("1")
    if pos < 1 or pos + 7 > len(text):
        raise AgeError("separator '1' at invalid position")
    hrp = text[:pos]
    if any(not 33 <= ord(c) <= 126 for c in hrp):
        raise AgeError("invalid character in human-readable part")
    lower = text.lower()
    try:
        values = [_CHARSET.index(c) for c in lower[pos + 1:]]
    except ValueError:
        raise AgeError("invalid character in data part") from None
    if _polymod(_hrp_expand(hrp.lower()) + values) != 1:
        raise AgeError("invalid checksum")
    return hrp, bytes(_convert_bits(values[:-6], 5, 8, False))


# --- primitives -------------------------------------------------------------


def _hkdf(ikm: bytes, salt: bytes, info: bytes) -> bytes:
    return HKDF(algorithm=hashes.SHA256(), length=32, salt=salt or None, info=info).derive(ikm)


def _b64raw_encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii").rstrip("=")


def _b64raw_decode(text: bytes) -> bytes:
    if b"=" in text or b"\r" in text or b"\n" in text:
        raise AgeError("invalid base64 encoding in header")
    try:
        return base64.b64decode(text + b"=" * (-len(text) % 4), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise AgeError(f"invalid base64 encoding in header: {exc}") from exc


@dataclass(frozen=True)
class _Stanza:
    type: str
    args: Tuple[str, ...]
    body: bytes

    def encode(self) -> bytes:
        lines = [("-> " + " ".join((self.type,) + self.args)).encode("ascii")]
        encoded = _b64raw_encode(self.body)
        chunks = [encoded[i:i + _COLUMNS] for i in range(0, len(encoded), _COLUMNS)]
        if not chunks or len(chunks[-1]) == _COLUMNS:
            chunks.append("")
        lines.extend(chunk.encode("ascii") for chunk in chunks)
        return b"\n".join(lines) + b"\n"


@dataclass(frozen=True)
class X25519Recipient:
    """An age public key."""

    public_key: bytes

    def __str__(self) -> str:
        return _bech32_encode(RECIPIENT_HRP, self.public_key)

    def wrap(self, file_key: bytes) -> _Stanza:
        ephemeral = X25519PrivateKey.generate()
        share = ephemeral.public_key().public_bytes_raw()
        try:
            secret = ephemeral.exchange(X25519PublicKey.from_public_bytes(self.public_key))
        except ValueError as exc:
            raise AgeError(f"invalid X25519 recipient: {exc}") from exc
        wrap_key = _hkdf(secret, share + self.public_key, _X25519_LABEL)
        body = ChaCha20Poly1305(wrap_key).encrypt(b"\x00" * 12, file_key, None)
        return _Stanza("X25519", (_b64raw_encode(share),), body)


@dataclass(frozen=True)
class X25519Identity:
    """An age secret key."""

    secret_key: bytes = field(repr=False)

    def __str__(self) -> str:
        return _bech32_encode(IDENTITY_HRP, self.secret_key)

    @property
    def recipient(self) -> X25519Recipient:
        private = X25519PrivateKey.from_private_bytes(self.secret_key)
        return X25519Recipient(private.public_key().public_bytes_raw())

    def unwrap(self, stanza: _Stanza) -> bytes | None:
        """Return the file key if the stanza was made for this identity."""
        if stanza.type != "X25519":
            return None
        if len(stanza.args) != 1:
            raise AgeError("invalid X25519 recipient block")
        share = _b64raw_decode(stanza.args[0].encode("ascii"))
        if len(share) != 32 or len(stanza.body) != _FILE_KEY_SIZE + _TAG_SIZE:
            raise AgeError("invalid X25519 recipient block")
        private = X25519PrivateKey.from_private_bytes(self.secret_key)
        try:
            secret = private.exchange(X25519PublicKey.from_public_bytes(share))
        except ValueError as exc:
            raise AgeError(f"invalid X25519 recipient: {exc}") from exc
        wrap_key = _hkdf(secret, share + self.recipient.public_key, _X25519_LABEL)
        try:
            return ChaCha20Poly1305(wrap_key).decrypt(b"\x00" * 12, stanza.body, None)
        except InvalidTag:
            return None


def parse_x25519_recipient(text: str) -> X25519Recipient:
    """Parse a Bech32 'age1...' public key."""
    hrp, data = _bech32_decode(text)
    if hrp != RECIPIENT_HRP:
        raise AgeError(f"malformed recipient {text!r}: invalid type {hrp!r}")
    if len(data) != 32:
        raise AgeError(f"malformed recipient {text!r}: invalid length")
    return X25519Recipient(data)


def _parse_x25519_identity(text: str) -> X25519Identity:
    hrp, data = _bech32_decode(text)
    if hrp != IDENTITY_HRP:
        raise AgeError(f"malformed secret key: unknown type {hrp!r}")
    if len(data) != 32:
        raise AgeError("malformed secret key: invalid length")
    return X25519Identity(data)


def parse_identities(text: str) -> List[X25519Identity]:
    """Parse identities, one per line; blank lines and '#' comments are skipped."""
    identities = []
    for number, line in enumerate(text.split("\n"), start=1):
        line = line.rstrip("\r")
        if not line or line.startswith("#"):
            continue
        try:
            identities.append(_parse_x25519_identity(line))
        except AgeError as exc:
            raise AgeError(f"error at line {number}: {exc}") from exc
    if not identities:
        raise AgeError("no secret keys found")
    return identities


# --- file format ------------------------------------------------------------


def _header_mac(file_key: bytes, header: bytes) -> bytes:
    return hmac.new(_hkdf(file_key, b"", b"header"), header, hashlib.sha256).digest()


def _stream_nonce(counter: int, last: bool) -> bytes:
    return counter.to_bytes(11, "big") + (b"\x01" if last else b"\x00")


def encrypt(data: bytes, recipients: Sequence[X25519Recipient]) -> bytes:
    """Encrypt data to one or more recipients, returning the binary age file."""
    if not recipients:
        raise AgeError("no recipients specified")
    file_key = os.urandom(_FILE_KEY_SIZE)
    header = INTRO + b"\n" + b"".join(r.wrap(file_key).encode() for r in recipients) + b"---"
    mac = _header_mac(file_key, header)
    out = bytearray(header + b" " + _b64raw_encode(mac).encode("ascii") + b"\n")

    nonce = os.urandom(_NONCE_SIZE)
    out += nonce
    aead = ChaCha20Poly1305(_hkdf(file_key, nonce, b"payload"))
    chunks = [data[i:i + _CHUNK_SIZE] for i in range(0, len(data), _CHUNK_SIZE)] or [b""]
    for counter, chunk in enumerate(chunks):
        out += aead.encrypt(_stream_nonce(counter, counter == len(chunks) - 1), chunk, None)
    return bytes(out)


def _read_line(data: bytes, pos: int) -> Tuple[bytes, int]:
    end = data.find(b"\n", pos)
    if end < 0:
        raise AgeError("failed to read header: unexpected end of file")
    return data[pos:end], end + 1


def _parse_header(data: bytes) -> Tuple[List[_Stanza], bytes, bytes, bytes]:
    line, pos = _read_line(data, 0)
    if line != INTRO:
        raise AgeError(f"failed to read header: unexpected intro: {line!r}")
    stanzas = []
    while True:
        start = pos
        line, pos = _read_line(data, pos)
        if line.startswith(b"--- "):
            mac = _b64raw_decode(line[4:])
            return stanzas, data[:start + 3], mac, data[pos:]
        if not line.startswith(b"-> "):
            raise AgeError(f"failed to read header: malformed stanza opening line: {line!r}")
        parts = line[3:].decode("ascii", "replace").split(" ")
        if not parts or any(not part for part in parts):
            raise AgeError("failed to read header: malformed stanza")
        body = b""
        while True:
            body_line, pos = _read_line(data, pos)
            if len(body_line) > _COLUMNS:
                raise AgeError("failed to read header: body line too long")
            body += body_line
            if len(body_line) < _COLUMNS:
                break
        stanzas.append(_Stanza(parts[0], tuple(parts[1:]), _b64raw_decode(body)))


def decrypt(data: bytes, identities: Sequence[X25519Identity]) -> bytes:
    """Decrypt a binary age file with any of the given identities."""
    if not identities:
        raise AgeError("no identities specified")
    stanzas, header, mac, payload = _parse_header(data)
    file_key = None
    for stanza in stanzas:
        for identity in identities:
            file_key = identity.unwrap(stanza)
            if file_key is not None:
                break
        if file_key is not None:
            break
    if file_key is None:
        raise AgeError("no identity matched any of the recipients")
    if not hmac.compare_digest(_header_mac(file_key, header), mac):
        raise AgeError("bad header MAC")

    if len(payload) < _NONCE_SIZE:
        raise AgeError("failed to read nonce")
    nonce, body = payload[:_NONCE_SIZE], payload[_NONCE_SIZE:]
    if not body:
        raise AgeError("unexpected empty payload")
    aead = ChaCha20Poly1305(_hkdf(file_key, nonce, b"payload"))
    size = _CHUNK_SIZE + _TAG_SIZE
    chunks = [body[i:i + size] for i in range(0, len(body), size)]
    out = bytearray()
    for counter, chunk in enumerate(chunks):
        last = counter == len(chunks) - 1
        if len(chunk) < _TAG_SIZE:
            raise AgeError("truncated payload chunk")
        try:
            plain = aead.decrypt(_stream_nonce(counter, last), chunk, None)
        except InvalidTag:
            raise AgeError("failed to decrypt and authenticate payload chunk") from None
        if last and not plain and counter > 0:
            raise AgeError("last chunk is empty, try age v1.0.0")
        out += plain
    return bytes(out)


def armor(data: bytes) -> str:
    """Wrap binary age data in the ASCII armor."""
    encoded = base64.b64encode(data).decode("ascii")
    lines = [encoded[i:i + _COLUMNS] for i in range(0, len(encoded), _COLUMNS)]
    return "\n".join([ARMOR_HEADER, *lines, ARMOR_FOOTER]) + "\n"


def dearmor(text: str) -> bytes:
    """Remove the ASCII armor and return the binary age data."""
    lines = text.strip().splitlines()
    if not lines or lines[0].strip() != ARMOR_HEADER:
        raise AgeError("armor: invalid header")
    if len(lines) < 2 or lines[-1].strip() != ARMOR_FOOTER:
        raise AgeError("armor: invalid footer")
    body = "".join(line.strip() for line in lines[1:-1])
    try:
        return base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise AgeError(f"armor: invalid base64: {exc}") from exc