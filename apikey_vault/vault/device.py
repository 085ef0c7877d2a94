"""
Device Binding — a machine-local secret mixed into every vault password.

A random 32-byte secret is generated on first use and kept in its own file,
apart from the vault file. Passwords are combined with it through HKDF
before scrypt runs, so a vault file copied to another machine cannot be
opened with the password alone::

    device_key = HKDF(secret, info="apikey-vault device-binding v1")
    compound   = HKDF(password, salt=device_key, info="apikey-vault compound-password v1")

Records remember the ``device_id`` (a non-secret fingerprint of the device
key) they were sealed under. Deleting or replacing the secret file revokes
the binding: every record sealed under the old secret becomes orphaned.

Security Note:
    The secret file is created with mode 0600. Never log its contents.
"""
import os
import base64
import logging
import threading
from pathlib import Path
from typing import Optional, Union

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .exceptions import StorageError

logger = logging.getLogger("apikey_vault.vault")

SECRET_SIZE = 32
DEVICE_ID_SIZE = 8
COMPOUND_LENGTH = 64


def _hkdf(material: bytes, context: str, length: int, salt: Optional[bytes] = None) -> bytes:
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=length,
        salt=salt,
        info=context.encode("utf-8"),
    )
    return hkdf.derive(material)


class DeviceBinding:
    """Holds the device secret and derives compound passwords from it.

    With ``path=None`` the secret lives only in memory and the binding lasts
    as long as this object.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path).expanduser() if path is not None else None
        self._secret: Optional[bytes] = None
        self._mutex = threading.Lock()

    def _read_or_create(self) -> bytes:
        if self.path is None:
            return os.urandom(SECRET_SIZE)
        try:
            if self.path.exists():
                secret = self.path.read_bytes()
                if len(secret) != SECRET_SIZE:
                    raise StorageError(f"Device secret {self.path} is malformed")
                return secret
            self.path.parent.mkdir(parents=True, exist_ok=True)
            secret = os.urandom(SECRET_SIZE)
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "wb") as fp:
                fp.write(secret)
                fp.flush()
                os.fsync(fp.fileno())
        except OSError as err:
            raise StorageError(f"Unable to access device secret {self.path}") from err
        logger.info("Created device secret %s", self.path)
        return secret

    def _device_key(self) -> bytes:
        with self._mutex:
            if self._secret is None:
                self._secret = self._read_or_create()
            secret = self._secret
        return _hkdf(secret, "apikey-vault device-binding v1", SECRET_SIZE)

    def exists(self) -> bool:
        """True when a device secret is available without creating one."""
        if self._secret is not None:
            return True
        return self.path is not None and self.path.exists()

    @property
    def device_id(self) -> str:
        """Public fingerprint of the current device secret."""
        return _hkdf(self._device_key(), "apikey-vault device-id v1", DEVICE_ID_SIZE).hex()

    def compound_password(self, password: str) -> str:
        """Mix the device key into a user password.

        Raises:
            StorageError: If the secret file cannot be read or created.
        """
        derived = _hkdf(
            password.encode("utf-8"),
            "apikey-vault compound-password v1",
            COMPOUND_LENGTH,
            salt=self._device_key(),
        )
        return base64.b64encode(derived).decode("ascii")

    def revoke(self) -> None:
        """Forget the device secret. A fresh one is generated on next use."""
        with self._mutex:
            self._secret = None
            if self.path is not None:
                try:
                    self.path.unlink(missing_ok=True)
                except OSError as err:
                    raise StorageError(
                        f"Unable to remove device secret {self.path}"
                    ) from err
        logger.warning("Device binding revoked; existing bound records are orphaned")
