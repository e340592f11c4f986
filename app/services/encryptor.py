# app/services/encryptor.py
import hashlib
import os
from dataclasses import dataclass
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.services.errors import AuthenticationFailure, DecryptionError, InvalidEncryptionMaterial

IV_BYTES = 16
TAG_BYTES = 16
HEX_LENGTH = 32


@dataclass(frozen=True)
class EncryptedPayload:
    ciphertext: bytes
    iv: str
    auth_tag: str


def derive_key(transfer_key: str) -> bytes:
    # The transfer key is the only secret input, so the key space is that of
    # the 6-digit code. Confidentiality rests on the short TTL.
    return hashlib.sha256(transfer_key.encode("utf-8")).digest()


def encrypt(plaintext: bytes, transfer_key: str) -> EncryptedPayload:
    iv = os.urandom(IV_BYTES)
    sealed = AESGCM(derive_key(transfer_key)).encrypt(iv, plaintext, None)
    # AESGCM appends the 16-byte tag to the ciphertext
    ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
    return EncryptedPayload(ciphertext=ciphertext, iv=iv.hex(), auth_tag=tag.hex())


def _unhex(value: str, field: str) -> bytes:
    if not isinstance(value, str) or len(value) != HEX_LENGTH:
        raise InvalidEncryptionMaterial(f"{field} must be {HEX_LENGTH} hex characters")
    try:
        return bytes.fromhex(value)
    except ValueError:
        raise InvalidEncryptionMaterial(f"{field} is not valid hex")


def decrypt(ciphertext: bytes, transfer_key: str, iv: str, auth_tag: str) -> bytes:
    iv_bytes = _unhex(iv, "iv")
    tag_bytes = _unhex(auth_tag, "auth_tag")
    if not isinstance(ciphertext, (bytes, bytearray, memoryview)):
        raise DecryptionError("ciphertext must be bytes")

    try:
        return AESGCM(derive_key(transfer_key)).decrypt(iv_bytes, bytes(ciphertext) + tag_bytes, None)
    except InvalidTag:
        raise AuthenticationFailure()
