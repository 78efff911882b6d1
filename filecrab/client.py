"""Blocking client for a filecrab server.

Uploads stream the (optionally encrypted) payload from a spooled file in
bounded chunks; downloads stream the response body and reassemble it in
memory before detecting and decrypting an envelope.
"""

from __future__ import annotations

import io
import logging
import tempfile
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import BinaryIO
from urllib.parse import unquote

import httpx

from filecrab.errors import (
    PassphraseRequired,
    RemoteNotFound,
    TransportError,
    UnsuccessfulRequest,
)
from filecrab.lib.envelope import (
    CHUNK_SIZE,
    DEFAULT_WORK_FACTOR,
    EnvelopeWriter,
    decrypt,
    encrypt,
    looks_like_ciphertext,
)

logger = logging.getLogger(__name__)

API_KEY_HEADER = "filecrab-key"
FILE_NAME_HEADER = "filecrab-file-name"

# Encrypted uploads spill to disk beyond this size
SPOOL_MAX_SIZE = 8 * 1024 * 1024

ProgressCallback = Callable[[int, int], None]


@dataclass(frozen=True)
class Instance:
    """One server the client talks to."""

    name: str
    url: str
    api_key: str


class _ProgressReader:
    """File wrapper reporting bytes read so far; httpx pulls multipart bodies through ``read``."""

    def __init__(self, raw: BinaryIO, total: int, on_progress: ProgressCallback) -> None:
        self._raw = raw
        self._total = total
        self._on_progress = on_progress
        self._done = 0

    def read(self, size: int = -1) -> bytes:
        chunk = self._raw.read(size)
        self._done += len(chunk)
        self._on_progress(self._done, self._total)
        return chunk

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        position = self._raw.seek(offset, whence)
        if whence == io.SEEK_SET and offset == 0:
            self._done = 0
        return position

    def tell(self) -> int:
        return self._raw.tell()


def _stream_length(stream: BinaryIO) -> int:
    """Bytes left in *stream*, or 0 when it cannot seek (pipes, stdin)."""
    try:
        position = stream.tell()
        end = stream.seek(0, io.SEEK_END)
        stream.seek(position)
    except (OSError, AttributeError):
        return 0
    return end - position


class TransferClient:
    """Upload, download, paste and copy against one :class:`Instance`.

    Nothing is retried. Passphrases never leave the client; the server only
    sees ciphertext and the advisory ``encrypted`` flag.

    Args:
        instance: Server URL and API key.
        http: Optional pre-built ``httpx.Client``; the client closes only the
            ones it creates itself.
        work_factor: scrypt work factor used when encrypting.
    """

    def __init__(
        self,
        instance: Instance,
        http: httpx.Client | None = None,
        work_factor: int = DEFAULT_WORK_FACTOR,
    ) -> None:
        self.instance = instance
        self.work_factor = work_factor
        self._owns_http = http is None
        self._http = http or httpx.Client(timeout=httpx.Timeout(30.0, read=None, write=None))

    def __enter__(self) -> TransferClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    # -- HTTP plumbing --

    def _url(self, path: str) -> str:
        return f"{self.instance.url.rstrip('/')}{path}"

    def _headers(self) -> dict[str, str]:
        return {API_KEY_HEADER: self.instance.api_key}

    @staticmethod
    def _check(response: httpx.Response) -> None:
        if response.is_success:
            return
        if response.status_code == 404:
            raise RemoteNotFound(f"Not found: {response.request.url}")
        raise UnsuccessfulRequest(response.status_code, response.text)

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = self._http.request(method, self._url(path), **kwargs)
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} {path} failed: {exc}") from exc
        self._check(response)
        return response

    # -- files --

    def upload(
        self,
        data: bytes | BinaryIO,
        file_name: str,
        passphrase: str | None = None,
        expire_at: datetime | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        """Upload a file and return its memo id.

        ``data`` is either the whole payload or a readable binary stream.
        With a passphrase the payload is encrypted into a spooled temporary
        file first, so large files never sit in memory in full. An empty
        passphrase raises ValueError rather than uploading plaintext.
        """
        source: BinaryIO = io.BytesIO(data) if isinstance(data, (bytes, bytearray)) else data

        with tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_SIZE) as spool:
            if passphrase is not None:
                with EnvelopeWriter(spool, passphrase, self.work_factor) as writer:
                    while True:
                        chunk = source.read(CHUNK_SIZE)
                        if not chunk:
                            break
                        writer.write(chunk)
                spool.seek(0)
                body: BinaryIO = spool
            else:
                body = source

            if on_progress is not None:
                body = _ProgressReader(body, _stream_length(body), on_progress)

            form: dict[str, str] = {}
            if passphrase is not None:
                form["encrypted"] = "true"
            if expire_at is not None:
                if expire_at.tzinfo is None:
                    expire_at = expire_at.replace(tzinfo=timezone.utc)
                form["expire_at"] = expire_at.isoformat()

            response = self._request(
                "POST",
                "/api/upload",
                headers=self._headers(),
                files={"file": (file_name, body, "application/octet-stream")},
                data=form,
            )

        memo_id = response.json()["id"]
        logger.debug("Uploaded %s as %s", file_name, memo_id)
        return memo_id

    def download(
        self,
        memo_id: str,
        passphrase: str | None = None,
        ask_passphrase: Callable[[], str | None] | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> tuple[str, bytes]:
        """Fetch a file and return ``(file_name, content)``.

        With a passphrase the content is decrypted. Without one, content that
        looks like an envelope triggers ``ask_passphrase``; when that is
        missing or yields nothing, :class:`PassphraseRequired` is raised.
        Anything else is returned as received.
        """
        buffer = bytearray()
        try:
            with self._http.stream("GET", self._url("/api/download"), params={"file": memo_id}) as response:
                if not response.is_success:
                    response.read()
                    self._check(response)

                raw_name = response.headers.get(FILE_NAME_HEADER)
                if raw_name is None:
                    raise TransportError(f"Response for {memo_id} carries no {FILE_NAME_HEADER} header")
                file_name = unquote(raw_name)
                total = int(response.headers.get("content-length", 0))

                for chunk in response.iter_bytes():
                    buffer += chunk
                    if on_progress is not None:
                        on_progress(len(buffer), total)
        except httpx.HTTPError as exc:
            raise TransportError(f"GET /api/download failed: {exc}") from exc

        content = bytes(buffer)
        if passphrase is None and looks_like_ciphertext(content):
            passphrase = ask_passphrase() if ask_passphrase is not None else None
            if not passphrase:
                raise PassphraseRequired(f"{memo_id} is encrypted")
        if passphrase is not None:
            content = decrypt(content, passphrase)
        return file_name, content

    # -- text --

    def paste(self, text: str, passphrase: str) -> str:
        """Encrypt ``text`` and store it for a single read. Returns its memo id."""
        if not passphrase:
            raise ValueError("paste requires a passphrase")
        ciphertext = encrypt(text.encode("utf-8"), passphrase, self.work_factor)
        response = self._request(
            "POST",
            "/api/paste",
            headers=self._headers(),
            json={"content": ciphertext.hex()},
        )
        return response.json()["id"]

    def copy(self, memo_id: str, passphrase: str) -> str:
        """Fetch and decrypt a text. The server deletes it, so a second call raises RemoteNotFound."""
        response = self._request(
            "GET",
            "/api/copy",
            headers=self._headers(),
            params={"memo_id": memo_id},
        )
        ciphertext = bytes.fromhex(response.json()["content"])
        return decrypt(ciphertext, passphrase).decode("utf-8")
