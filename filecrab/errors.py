"""Error taxonomy shared by the server, the storage layers and the client."""

from __future__ import annotations


class FilecrabError(Exception):
    """Base class for every error raised by filecrab."""


class NotFound(FilecrabError):
    """An identifier is absent or its record has expired."""


class BlobNotFound(NotFound):
    """The object store holds no blob for a storage id."""


class RemoteNotFound(NotFound):
    """The server answered 404 for a memo id."""


class DuplicateIdentifier(FilecrabError):
    """A freshly generated storage id or memo id collided with a live record."""


class StorageError(FilecrabError):
    """The object store or the metadata index failed for a reason other than a missing key."""


class TransportError(FilecrabError):
    """The client could not complete an HTTP exchange with the server."""


class UnsuccessfulRequest(TransportError):
    """The server answered with a non-success status."""

    def __init__(self, status: int, body: str) -> None:
        super().__init__(f"Unsuccessful request. Status: {status} Body: {body}")
        self.status = status
        self.body = body


class Unauthorized(FilecrabError):
    """The shared API key is missing or wrong."""


class InvalidRequest(FilecrabError):
    """A request is malformed (missing file, empty content, bad expiry)."""


class DecryptionFailed(FilecrabError):
    """Wrong passphrase or the bytes are not a filecrab envelope."""


class PassphraseRequired(DecryptionFailed):
    """The payload is encrypted and no passphrase could be obtained."""
