"""Split-key payload encryption (AES-256-GCM + HKDF)."""

import base64
import binascii
import os
from dataclasses import dataclass
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from deadswitch.core.errors import ConfigurationError, DecryptionError
from deadswitch.core.keys import load_escrow_key

# EXPLANATION:
# Each switch gets a fresh random data key (dk) that encrypts the content.
# dk is never stored. key_fragment keeps two one-time-pad shares of it:
#   owner share  = dk XOR HKDF(management_token)
#   escrow share = dk XOR HKDF(escrow_key)
# so the database alone (content + key_fragment) cannot recover dk. The owner
# can decrypt with their management token; the sweep decrypts at trigger time
# with the escrow key, which lives outside the database.

FRAGMENT_VERSION = "v1"
SEALED_PREFIX = "enc:"
NONCE_SIZE = 12
KEY_SIZE = 32
SALT_SIZE = 16

OWNER_INFO = b"deadswitch-owner-share-v1"
ESCROW_INFO = b"deadswitch-escrow-share-v1"


@dataclass(frozen=True)
class SealedPayload:
    content: str
    key_fragment: str


def _b64e(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode()


def _b64d(data: str) -> bytes:
    return base64.urlsafe_b64decode(data.encode())


def _xor(left: bytes, right: bytes) -> bytes:
    return bytes(a ^ b for a, b in zip(left, right, strict=True))


def _derive(secret: bytes, salt: bytes, info: bytes) -> bytes:
    return HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt,
        info=info,
    ).derive(secret)


def _as_bytes(secret: str | bytes) -> bytes:
    return secret.encode() if isinstance(secret, str) else secret


def _aead_encrypt(key: bytes, plaintext: bytes) -> bytes:
    nonce = os.urandom(NONCE_SIZE)
    return nonce + AESGCM(key).encrypt(nonce, plaintext, None)


def _aead_decrypt(key: bytes, blob: bytes) -> bytes:
    if len(blob) <= NONCE_SIZE:
        raise InvalidTag()
    return AESGCM(key).decrypt(blob[:NONCE_SIZE], blob[NONCE_SIZE:], None)


class PayloadCodec:
    """Encrypts switch payloads and at-rest secrets."""

    def __init__(self, escrow_key: bytes):
        if len(escrow_key) != KEY_SIZE:
            raise ConfigurationError("Escrow key must be 32 bytes")
        self._escrow_key = escrow_key

    # -- switch payloads ---------------------------------------------------

    def encrypt(self, plaintext: str, management_token: str) -> SealedPayload:
        if not management_token:
            raise ConfigurationError("A management token is required to encrypt")

        data_key = AESGCM.generate_key(bit_length=256)
        salt = os.urandom(SALT_SIZE)
        owner_share = _xor(data_key, _derive(_as_bytes(management_token), salt, OWNER_INFO))
        escrow_share = _xor(data_key, _derive(self._escrow_key, salt, ESCROW_INFO))

        content = base64.b64encode(_aead_encrypt(data_key, plaintext.encode())).decode()
        fragment = ".".join(
            [FRAGMENT_VERSION, _b64e(salt), _b64e(owner_share), _b64e(escrow_share)]
        )
        return SealedPayload(content=content, key_fragment=fragment)

    def decrypt(self, content: str, key_fragment: str, second_factor: str | bytes) -> str:
        """
        Decrypt with either the management token or the escrow key.

        Raises DecryptionError on a wrong factor or corrupted data; GCM
        authentication guarantees no wrong plaintext comes back silently.
        """
        if not second_factor:
            raise DecryptionError("Second decryption factor is missing")

        salt, owner_share, escrow_share = self._parse_fragment(key_fragment)
        try:
            blob = base64.b64decode(content, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise DecryptionError("Ciphertext is not valid base64", cause=exc)

        factor = _as_bytes(second_factor)
        for share, info in ((owner_share, OWNER_INFO), (escrow_share, ESCROW_INFO)):
            data_key = _xor(share, _derive(factor, salt, info))
            try:
                return _aead_decrypt(data_key, blob).decode()
            except InvalidTag:
                continue
        raise DecryptionError("Invalid second factor or corrupted payload")

    def decrypt_with_escrow(self, content: str, key_fragment: str) -> str:
        return self.decrypt(content, key_fragment, self._escrow_key)

    @staticmethod
    def _parse_fragment(key_fragment: str) -> tuple[bytes, bytes, bytes]:
        parts = (key_fragment or "").split(".")
        if len(parts) != 4 or parts[0] != FRAGMENT_VERSION:
            raise DecryptionError("Unsupported or corrupted key fragment")
        try:
            salt, owner_share, escrow_share = (_b64d(part) for part in parts[1:])
        except (binascii.Error, ValueError) as exc:
            raise DecryptionError("Corrupted key fragment", cause=exc)
        if len(owner_share) != KEY_SIZE or len(escrow_share) != KEY_SIZE:
            raise DecryptionError("Corrupted key fragment")
        return salt, owner_share, escrow_share

    # -- at-rest secrets and blobs -------------------------------------------

    def seal(self, data: bytes) -> bytes:
        return _aead_encrypt(self._escrow_key, data)

    def open(self, blob: bytes) -> bytes:
        try:
            return _aead_decrypt(self._escrow_key, blob)
        except InvalidTag as exc:
            raise DecryptionError("Failed to decrypt sealed data", cause=exc)

    def seal_text(self, value: str) -> str:
        if not value or value.startswith(SEALED_PREFIX):
            return value
        return SEALED_PREFIX + base64.b64encode(self.seal(value.encode())).decode()

    def open_text(self, value: str) -> str:
        if not value or not value.startswith(SEALED_PREFIX):
            return value
        try:
            blob = base64.b64decode(value[len(SEALED_PREFIX) :], validate=True)
        except (binascii.Error, ValueError) as exc:
            raise DecryptionError("Sealed value is not valid base64", cause=exc)
        return self.open(blob).decode()


@lru_cache
def get_codec() -> PayloadCodec:
    """Process-wide codec bound to the configured escrow key."""
    return PayloadCodec(load_escrow_key())
