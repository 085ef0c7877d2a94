"""Internal exceptions raised below the VaultService boundary."""


class VaultException(Exception):
    """Base class for vault errors."""


class DecryptionError(VaultException):
    """Authenticated decryption failed.

    Raised for a wrong password and for a malformed or tampered record
    alike; the message never says which.
    """

    def __init__(self):
        super().__init__("Unable to decrypt record")


class StorageError(VaultException):
    """The secret store could not be read or written."""
