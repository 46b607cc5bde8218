"""Symmetric encryption of credential strings kept at rest.

The ciphertext format is the OpenSSL "salted" envelope: base64 of
``b"Salted__" + salt(8) + AES-256-CBC(ciphertext)``, with key and IV derived
from a passphrase through ``EVP_BytesToKey`` (MD5). Profiles and user files
written by earlier releases use this format, so it must stay stable.

The passphrase is a constant shared by every installation. This hides secrets
from casual inspection of the state file; it is not protection against anyone
who has read this module.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import os
from typing import Mapping, Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .errors import DecryptionError

log = logging.getLogger(__name__)

APP_SECRET = "oss-tool-secret-key-2024"
SECRET_FIELDS = ("access_key_id", "access_key_secret")

_SALT_HEADER = b"Salted__"
_SALT_SIZE = 8
_KEY_SIZE = 32
_IV_SIZE = 16
_BLOCK_BITS = 128


def _evp_bytes_to_key(passphrase: bytes, salt: bytes) -> tuple[bytes, bytes]:
    derived = b""
    block = b""
    while len(derived) < _KEY_SIZE + _IV_SIZE:
        block = hashlib.md5(block + passphrase + salt).digest()  # noqa: S324
        derived += block
    return derived[:_KEY_SIZE], derived[_KEY_SIZE : _KEY_SIZE + _IV_SIZE]


class CredentialCodec:
    def __init__(self, secret: str = APP_SECRET) -> None:
        self._passphrase = secret.encode("utf-8")

    def encrypt(self, plaintext: str) -> str:
        salt = os.urandom(_SALT_SIZE)
        key, iv = _evp_bytes_to_key(self._passphrase, salt)
        padder = padding.PKCS7(_BLOCK_BITS).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        body = encryptor.update(padded) + encryptor.finalize()
        return base64.b64encode(_SALT_HEADER + salt + body).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        if not isinstance(ciphertext, str) or not ciphertext:
            raise DecryptionError("Ciphertext is empty")
        try:
            raw = base64.b64decode(ciphertext.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as exc:
            raise DecryptionError("Ciphertext is not valid base64") from exc
        header_size = len(_SALT_HEADER) + _SALT_SIZE
        if not raw.startswith(_SALT_HEADER) or len(raw) <= header_size:
            raise DecryptionError("Ciphertext is missing the salt header")
        body = raw[header_size:]
        if len(body) % (_BLOCK_BITS // 8):
            raise DecryptionError("Ciphertext length is not a whole number of blocks")
        salt = raw[len(_SALT_HEADER) : header_size]
        key, iv = _evp_bytes_to_key(self._passphrase, salt)
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(body) + decryptor.finalize()
        unpadder = padding.PKCS7(_BLOCK_BITS).unpadder()
        try:
            data = unpadder.update(padded) + unpadder.finalize()
            return data.decode("utf-8")
        except (ValueError, UnicodeDecodeError) as exc:
            raise DecryptionError("Ciphertext was not produced under this key") from exc

    def verify(self, candidate: str, stored_ciphertext: str) -> bool:
        try:
            return candidate == self.decrypt(stored_ciphertext)
        except DecryptionError:
            return False

    def encrypt_profile_secrets(self, record: Mapping[str, object]) -> dict[str, object]:
        encrypted = dict(record)
        for field in SECRET_FIELDS:
            value = record.get(field)
            if isinstance(value, str) and value:
                encrypted[field] = self.encrypt(value)
        return encrypted

    def decrypt_profile_secrets(
        self, record: Mapping[str, object], label: Optional[str] = None
    ) -> dict[str, object]:
        decrypted = dict(record)
        for field in SECRET_FIELDS:
            value = record.get(field)
            if not isinstance(value, str) or not value:
                decrypted[field] = ""
                continue
            try:
                decrypted[field] = self.decrypt(value)
            except DecryptionError as exc:
                log.warning(
                    "Could not decrypt %s of profile %s: %s",
                    field,
                    label or record.get("id") or "?",
                    exc,
                )
                decrypted[field] = ""
        return decrypted
