import base64
import os
import re

import pytest
from hypothesis import given
from hypothesis import strategies as st

from sopskit.cipher import Cipher, Comment

KEY = b"f" * 32
MESSAGE = (
    "ENC[AES256_GCM,data:oYyi,iv:MyIDYbT718JRr11QtBkcj3Dwm4k1aCGZBVeZf0EyV8o=,"
    "tag:t5z2Z023Up0kxwCgw1gNxg==,type:str]"
)

_IV_RE = re.compile(r",iv:([^,]+),")


def _iv_of(value):
    match = _IV_RE.search(value)
    assert match is not None
    return base64.b64decode(match.group(1))


def test_decrypt():
    assert Cipher().decrypt(MESSAGE, KEY, "bar:") == "foo"


def test_decrypt_invalid_aad():
    with pytest.raises(ValueError, match="Could not decrypt with AES_GCM"):
        Cipher().decrypt(MESSAGE, KEY, "")


@given(st.text(), st.text())
def test_roundtrip_string(value, aad):
    key = os.urandom(32)
    encrypted = Cipher().encrypt(value, key, aad)
    assert Cipher().decrypt(encrypted, key, aad) == value


@given(st.floats(allow_nan=False))
def test_roundtrip_float(value):
    encrypted = Cipher().encrypt(value, KEY, "")
    decrypted = Cipher().decrypt(encrypted, KEY, "")
    assert isinstance(decrypted, float)
    assert decrypted == value


@given(st.integers(min_value=-(1 << 63), max_value=(1 << 63) - 1))
def test_roundtrip_int(value):
    encrypted = Cipher().encrypt(value, KEY, "")
    decrypted = Cipher().decrypt(encrypted, KEY, "")
    assert type(decrypted) is int
    assert decrypted == value


@given(st.booleans())
def test_roundtrip_bool(value):
    encrypted = Cipher().encrypt(value, KEY, "")
    assert Cipher().decrypt(encrypted, KEY, "") is value


def test_encrypt_empty_comment():
    assert Cipher().encrypt(Comment(), KEY, "") == ""


def test_decrypt_empty_value():
    assert Cipher().decrypt("", KEY, "") == ""


def test_roundtrip_comment():
    encrypted = Cipher().encrypt(Comment("note"), KEY, "")
    assert "type:comment" in encrypted
    assert Cipher().decrypt(encrypted, KEY, "") == Comment("note")


def test_type_tags():
    cipher = Cipher()
    assert cipher.encrypt(5, KEY, "").endswith("type:int]")
    assert cipher.encrypt(True, KEY, "").endswith("type:bool]")
    assert cipher.encrypt(1.5, KEY, "").endswith("type:float]")
    assert cipher.encrypt("x", KEY, "").endswith("type:str]")


def test_stashed_iv_reproduces_ciphertext():
    cipher = Cipher()
    assert cipher.decrypt(MESSAGE, KEY, "bar:") == "foo"
    assert cipher.encrypt("foo", KEY, "bar:") == MESSAGE


def test_fresh_iv_differs_without_stash():
    cipher = Cipher()
    first = cipher.encrypt("foo", KEY, "bar:")
    second = cipher.encrypt("foo", KEY, "bar:")
    first_iv = _iv_of(first)
    second_iv = _iv_of(second)
    assert len(first_iv) == 32
    assert len(second_iv) == 32
    assert first_iv != second_iv
    assert Cipher().decrypt(first, KEY, "bar:") == "foo"
    assert Cipher().decrypt(second, KEY, "bar:") == "foo"


def test_unsupported_type():
    with pytest.raises(TypeError):
        Cipher().encrypt([1], KEY, "")


def test_bad_key_length():
    with pytest.raises(ValueError):
        Cipher().encrypt("x", b"short", "")


def test_malformed_value():
    with pytest.raises(ValueError, match="does not match"):
        Cipher().decrypt("garbage", KEY, "")


def test_bad_base64_data():
    value = "ENC[AES256_GCM,data:!!!,iv:MyIDYbT718JRr11QtBkcj3Dwm4k1aCGZBVeZf0EyV8o=,tag:t5z2Z023Up0kxwCgw1gNxg==,type:str]"
    with pytest.raises(ValueError, match="base64-decoding data"):
        Cipher().decrypt(value, KEY, "")