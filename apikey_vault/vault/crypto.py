"""
Vault Crypto Core — Password-based key derivation, encryption/decryption, and serialization.

Each API key is sealed independently:
    scrypt(password, salt_32B) → 256-bit key → AEAD(nonce_12B) → ciphertext + tag

A fresh salt and nonce are drawn for every encryption, so re-encrypting the
same key (save or password change) never reuses earlier randomness. The KDF
parameters and cipher name travel with the ciphertext so older records stay
decryptable after the configured work factors change.

Security Note:
    Never log plaintext, passwords or ciphertext values.
    Every decryption failure surfaces as the same DecryptionError.
"""
import os
import base64
import logging
from typing import Any, Optional

import orjson
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from .models import EncryptedRecord, KdfParams, SealedSecret
from .exceptions import DecryptionError

logger = logging.getLogger("apikey_vault.vault")

NONCE_SIZE = 12  # 96-bit nonce
SALT_SIZE = 32  # 256-bit salt
KEY_LENGTH = 32  # AES-256
TAG_SIZE = 16

_CIPHERS: dict[str, type] = {
    "aesgcm": AESGCM,
    "chacha20": ChaCha20Poly1305,
}

_BYTES_WRAPPER_KEY = "__vault_bytes_b64__"


def _get_cipher_cls(name: str) -> type:
    try:
        return _CIPHERS[name]
    except KeyError:
        raise ValueError(f"Unsupported cipher: {name}") from None


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(password: str, salt: bytes, params: KdfParams) -> bytes:
    """Derive a symmetric key from a password using scrypt.

    Args:
        password: User-supplied password.
        salt: Random per-record salt.
        params: Algorithm and work factors.

    Returns:
        ``params.length``-byte derived key.

    Raises:
        ValueError: If the algorithm is not supported.
    """
    if params.algorithm != "scrypt":
        raise ValueError(f"Unsupported KDF algorithm: {params.algorithm}")
    kdf = Scrypt(
        salt=salt,
        length=params.length,
        n=params.n,
        r=params.r,
        p=params.p,
    )
    return kdf.derive(password.encode("utf-8"))


# ---------------------------------------------------------------------------
# Authenticated encryption
# ---------------------------------------------------------------------------

def encrypt(
    plaintext: str,
    password: str,
    params: KdfParams,
    cipher: str = "aesgcm",
    associated_data: Optional[bytes] = None,
) -> SealedSecret:
    """Encrypt plaintext under a password-derived key.

    Args:
        plaintext: Secret to protect.
        password: Password the key is derived from.
        params: KDF work factors to record and use.
        cipher: AEAD backend name ("aesgcm" or "chacha20").
        associated_data: Optional bytes authenticated but not encrypted.

    Returns:
        SealedSecret with ciphertext, nonce, salt and KDF parameters.
    """
    cipher_cls = _get_cipher_cls(cipher)
    salt = os.urandom(SALT_SIZE)
    nonce = os.urandom(NONCE_SIZE)
    key = derive_key(password, salt, params)
    ct = cipher_cls(key).encrypt(nonce, plaintext.encode("utf-8"), associated_data)
    return SealedSecret(
        ciphertext=ct,
        nonce=nonce,
        salt=salt,
        kdf_params=params,
        cipher=cipher,
    )


def decrypt(
    sealed: SealedSecret,
    password: str,
    associated_data: Optional[bytes] = None,
) -> str:
    """Decrypt a sealed secret.

    Args:
        sealed: Record produced by ``encrypt``.
        password: Candidate password.
        associated_data: Must match the value used at encryption time.

    Returns:
        Decrypted plaintext.

    Raises:
        DecryptionError: On a wrong password, tampering or a malformed record.
    """
    try:
        if len(sealed.nonce) != NONCE_SIZE or len(sealed.ciphertext) < TAG_SIZE:
            raise ValueError("malformed record")
        cipher_cls = _get_cipher_cls(sealed.cipher)
        key = derive_key(password, sealed.salt, sealed.kdf_params)
        plaintext = cipher_cls(key).decrypt(
            sealed.nonce, sealed.ciphertext, associated_data,
        )
        return plaintext.decode("utf-8")
    except Exception:
        raise DecryptionError() from None


def needs_upgrade(sealed: SealedSecret, params: KdfParams, cipher: str) -> bool:
    """Return True when a record was sealed with other parameters than current."""
    return sealed.kdf_params != params or sealed.cipher != cipher


# ---------------------------------------------------------------------------
# Record serialization
# ---------------------------------------------------------------------------

def _default(value: Any) -> Any:
    if isinstance(value, bytes):
        return {_BYTES_WRAPPER_KEY: base64.b64encode(value).decode("ascii")}
    raise TypeError(f"Type is not JSON serializable: {type(value).__name__}")


def _unwrap(value: Any) -> Any:
    if isinstance(value, dict):
        if _BYTES_WRAPPER_KEY in value and len(value) == 1:
            return base64.b64decode(value[_BYTES_WRAPPER_KEY])
        return {k: _unwrap(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_unwrap(v) for v in value]
    return value


def record_to_dict(record: EncryptedRecord) -> dict:
    """Return a JSON-safe dict; bytes are wrapped as {"__vault_bytes_b64__": ...}."""
    return orjson.loads(serialize_record(record))


def record_from_dict(data: dict) -> EncryptedRecord:
    return EncryptedRecord.model_validate(_unwrap(data))


def serialize_record(record: EncryptedRecord) -> bytes:
    """Serialize an encrypted record to orjson bytes.

    bytes fields are wrapped as {"__vault_bytes_b64__": "<base64>"} for
    a lossless JSON round-trip.
    """
    return orjson.dumps(record.model_dump(mode="python"), default=_default)


def deserialize_record(data: bytes) -> EncryptedRecord:
    """Deserialize bytes produced by ``serialize_record``."""
    return record_from_dict(orjson.loads(data))
