import os

import pytest

from deadswitch.core.errors import ConfigurationError, DecryptionError
from deadswitch.services.codec import SEALED_PREFIX, PayloadCodec


@pytest.mark.parametrize("plaintext", ["hello", "", "zażółć gęślą jaźń", "x" * 50000])
def test_round_trip_with_management_token(codec, plaintext):
    sealed = codec.encrypt(plaintext, "management-token")
    assert codec.decrypt(sealed.content, sealed.key_fragment, "management-token") == plaintext


def test_escrow_key_is_an_alternative_second_factor(codec):
    sealed = codec.encrypt("release me", "management-token")
    assert codec.decrypt_with_escrow(sealed.content, sealed.key_fragment) == "release me"


def test_wrong_second_factor_fails_loudly(codec):
    sealed = codec.encrypt("secret", "management-token")
    with pytest.raises(DecryptionError):
        codec.decrypt(sealed.content, sealed.key_fragment, "guess")


def test_database_contents_alone_are_not_enough(codec):
    sealed = codec.encrypt("secret", "management-token")
    other = PayloadCodec(os.urandom(32))

    assert "secret" not in sealed.content
    with pytest.raises(DecryptionError):
        other.decrypt_with_escrow(sealed.content, sealed.key_fragment)


def test_missing_second_factor(codec):
    sealed = codec.encrypt("secret", "management-token")
    with pytest.raises(DecryptionError):
        codec.decrypt(sealed.content, sealed.key_fragment, "")


@pytest.mark.parametrize(
    "fragment",
    ["", "v1", "v2.a.b.c", "v1.AAAA.AAAA.AAAA", "v1.!!!.???.***"],
)
def test_corrupted_fragment(codec, fragment):
    sealed = codec.encrypt("secret", "management-token")
    with pytest.raises(DecryptionError):
        codec.decrypt(sealed.content, fragment, "management-token")


def test_tampered_ciphertext(codec):
    sealed = codec.encrypt("secret", "management-token")
    tampered = ("A" if sealed.content[0] != "A" else "B") + sealed.content[1:]
    with pytest.raises(DecryptionError):
        codec.decrypt(tampered, sealed.key_fragment, "management-token")


def test_fresh_key_per_encryption(codec):
    first = codec.encrypt("same", "token")
    second = codec.encrypt("same", "token")
    assert first.content != second.content
    assert first.key_fragment != second.key_fragment


def test_sealed_text_is_prefixed_and_idempotent(codec):
    sealed = codec.seal_text("smtp-password")
    assert sealed.startswith(SEALED_PREFIX)
    assert codec.seal_text(sealed) == sealed
    assert codec.open_text(sealed) == "smtp-password"
    assert codec.open_text("legacy-plain") == "legacy-plain"
    assert codec.seal_text("") == ""


def test_blob_sealed_under_other_key_is_rejected(codec):
    blob = PayloadCodec(os.urandom(32)).seal(b"bytes")
    with pytest.raises(DecryptionError):
        codec.open(blob)


def test_escrow_key_must_be_32_bytes():
    with pytest.raises(ConfigurationError):
        PayloadCodec(b"short")
