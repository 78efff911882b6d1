"""Passphrase envelope encryption for files and text.

An envelope is a self-contained ciphertext: everything needed to re-derive
the key from the passphrase travels in its header.

Layout::

    magic (21) | scrypt log2(N) (1) | salt (16) | nonce prefix (7) | sealed chunks...

Every chunk holds at most ``CHUNK_SIZE`` bytes of plaintext sealed with
AES-256-GCM. The nonce is ``prefix || counter (4, BE) || last flag (1)`` and
the whole header is bound to each chunk as associated data, so truncation,
reordering, splicing and header edits all fail authentication.
"""

from __future__ import annotations

import os
import struct
from collections.abc import Iterable, Iterator
from typing import BinaryIO

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from filecrab.errors import DecryptionFailed

MAGIC = b"filecrab-envelope/v1\n"
SALT_SIZE = 16
NONCE_PREFIX_SIZE = 7
HEADER_SIZE = len(MAGIC) + 1 + SALT_SIZE + NONCE_PREFIX_SIZE
KEY_SIZE = 32
TAG_SIZE = 16
CHUNK_SIZE = 64 * 1024
SEALED_CHUNK_SIZE = CHUNK_SIZE + TAG_SIZE

DEFAULT_WORK_FACTOR = 15
MIN_WORK_FACTOR = 10
MAX_WORK_FACTOR = 18

_MAX_CHUNKS = 2**32


def derive_key(passphrase: str, salt: bytes, work_factor: int) -> bytes:
    """Stretch a passphrase into an AES-256 key with scrypt (r=8, p=1)."""
    kdf = Scrypt(salt=salt, length=KEY_SIZE, n=2**work_factor, r=8, p=1)
    return kdf.derive(passphrase.encode("utf-8"))


def looks_like_ciphertext(data: bytes) -> bool:
    """Return True when ``data`` starts like an envelope produced by this module."""
    return len(data) >= HEADER_SIZE + TAG_SIZE and bytes(data[: len(MAGIC)]) == MAGIC


class _ChunkCipher:
    """AES-GCM keyed for one envelope; tracks the chunk counter."""

    def __init__(self, key: bytes, header: bytes) -> None:
        self.header = header
        self._aead = AESGCM(key)
        self._prefix = header[-NONCE_PREFIX_SIZE:]
        self._counter = 0

    def _next_nonce(self, last: bool) -> bytes:
        if self._counter >= _MAX_CHUNKS:
            raise OverflowError("envelope chunk counter exhausted")
        nonce = self._prefix + struct.pack(">I", self._counter) + (b"\x01" if last else b"\x00")
        self._counter += 1
        return nonce

    def seal(self, plaintext: bytes, last: bool) -> bytes:
        return self._aead.encrypt(self._next_nonce(last), plaintext, self.header)

    def open(self, sealed: bytes, last: bool) -> bytes:
        if len(sealed) < TAG_SIZE:
            raise DecryptionFailed("envelope is truncated")
        if last and len(sealed) == TAG_SIZE and self._counter > 0:
            raise DecryptionFailed("envelope ends with an empty chunk")
        try:
            return self._aead.decrypt(self._next_nonce(last), sealed, self.header)
        except InvalidTag as exc:
            raise DecryptionFailed("wrong passphrase or corrupted envelope") from exc

    @classmethod
    def for_sealing(cls, passphrase: str, work_factor: int) -> _ChunkCipher:
        if not passphrase:
            raise ValueError("passphrase must not be empty")
        if not MIN_WORK_FACTOR <= work_factor <= MAX_WORK_FACTOR:
            raise ValueError(f"work factor must be between {MIN_WORK_FACTOR} and {MAX_WORK_FACTOR}")
        salt = os.urandom(SALT_SIZE)
        header = MAGIC + bytes([work_factor]) + salt + os.urandom(NONCE_PREFIX_SIZE)
        return cls(derive_key(passphrase, salt, work_factor), header)

    @classmethod
    def for_opening(cls, header: bytes, passphrase: str) -> _ChunkCipher:
        if header[: len(MAGIC)] != MAGIC:
            raise DecryptionFailed("not a filecrab envelope")
        work_factor = header[len(MAGIC)]
        if not MIN_WORK_FACTOR <= work_factor <= MAX_WORK_FACTOR:
            raise DecryptionFailed(f"unsupported scrypt work factor {work_factor}")
        salt = header[len(MAGIC) + 1 : len(MAGIC) + 1 + SALT_SIZE]
        return cls(derive_key(passphrase, salt, work_factor), header)


class EnvelopeWriter:
    """Encrypt incrementally into a binary sink.

    Plaintext is buffered up to one chunk; the final chunk is only sealed on
    :meth:`close`, which must be called (or the writer used as a context
    manager) for the envelope to be valid.
    """

    def __init__(self, sink: BinaryIO, passphrase: str, work_factor: int = DEFAULT_WORK_FACTOR) -> None:
        self._sink = sink
        self._cipher = _ChunkCipher.for_sealing(passphrase, work_factor)
        self._buffer = bytearray()
        self._closed = False
        sink.write(self._cipher.header)

    def write(self, data: bytes) -> int:
        if self._closed:
            raise ValueError("write to a closed envelope")
        self._buffer += data
        while len(self._buffer) > CHUNK_SIZE:
            self._sink.write(self._cipher.seal(bytes(self._buffer[:CHUNK_SIZE]), last=False))
            del self._buffer[:CHUNK_SIZE]
        return len(data)

    def close(self) -> None:
        if self._closed:
            return
        self._sink.write(self._cipher.seal(bytes(self._buffer), last=True))
        self._buffer.clear()
        self._closed = True

    def __enter__(self) -> EnvelopeWriter:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()


def encrypt_stream(
    chunks: Iterable[bytes],
    passphrase: str,
    work_factor: int = DEFAULT_WORK_FACTOR,
) -> Iterator[bytes]:
    """Yield the envelope for a plaintext stream, header first."""
    cipher = _ChunkCipher.for_sealing(passphrase, work_factor)
    yield cipher.header
    buffer = bytearray()
    for chunk in chunks:
        buffer += chunk
        while len(buffer) > CHUNK_SIZE:
            yield cipher.seal(bytes(buffer[:CHUNK_SIZE]), last=False)
            del buffer[:CHUNK_SIZE]
    yield cipher.seal(bytes(buffer), last=True)


def decrypt_stream(chunks: Iterable[bytes], passphrase: str) -> Iterator[bytes]:
    """Yield authenticated plaintext from an envelope stream.

    A wrong passphrase fails on the first chunk, before anything is yielded.
    Corruption further in raises :class:`DecryptionFailed` at the damaged
    chunk; callers that need all-or-nothing should use :func:`decrypt`.
    """
    cipher: _ChunkCipher | None = None
    buffer = bytearray()
    for chunk in chunks:
        buffer += chunk
        if cipher is None:
            if len(buffer) < HEADER_SIZE:
                continue
            cipher = _ChunkCipher.for_opening(bytes(buffer[:HEADER_SIZE]), passphrase)
            del buffer[:HEADER_SIZE]
        while len(buffer) > SEALED_CHUNK_SIZE:
            yield cipher.open(bytes(buffer[:SEALED_CHUNK_SIZE]), last=False)
            del buffer[:SEALED_CHUNK_SIZE]
    if cipher is None:
        raise DecryptionFailed("not a filecrab envelope")
    yield cipher.open(bytes(buffer), last=True)


def _slices(data: bytes, size: int) -> Iterator[bytes]:
    view = memoryview(data)
    for start in range(0, len(view), size):
        yield view[start : start + size]


def encrypt(plaintext: bytes, passphrase: str, work_factor: int = DEFAULT_WORK_FACTOR) -> bytes:
    """Encrypt a whole buffer."""
    return b"".join(encrypt_stream(_slices(plaintext, CHUNK_SIZE), passphrase, work_factor))


def decrypt(ciphertext: bytes, passphrase: str) -> bytes:
    """Decrypt a whole buffer; nothing is returned unless every chunk authenticates."""
    return b"".join(decrypt_stream(_slices(ciphertext, SEALED_CHUNK_SIZE), passphrase))
