"""Transfer API: upload, download, paste and copy."""

from __future__ import annotations

import hmac
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Annotated
from datetime import datetime, timezone
from urllib.parse import quote

from litestar import Controller, Request, get, post
from litestar.connection import ASGIConnection
from litestar.datastructures import UploadFile
from litestar.handlers import BaseRouteHandler
from litestar.params import Parameter
from litestar.response import Stream

from filecrab.db.index.base import MetadataIndex
from filecrab.errors import InvalidRequest, NotFound, Unauthorized
from filecrab.lib import observability
from filecrab.lib.storage.base import READ_CHUNK_SIZE, ObjectStore
from filecrab.middleware.rate_limit import get_client_ip

logger = logging.getLogger(__name__)

API_KEY_HEADER = "filecrab-key"
FILE_NAME_HEADER = "filecrab-file-name"


def api_key_guard(connection: ASGIConnection, _: BaseRouteHandler) -> None:
    """Require the shared API key in the ``filecrab-key`` header."""
    expected = getattr(connection.app.state, "api_key", "")
    provided = connection.headers.get(API_KEY_HEADER, "")
    if not expected or not hmac.compare_digest(provided.encode(), expected.encode()):
        logger.warning(
            "Rejected API key from %s on %s", get_client_ip(connection.scope), connection.url.path
        )
        raise Unauthorized("Invalid API key")


def parse_expire_at(value: str | None) -> datetime | None:
    """Parse an ISO-8601 expiry; naive timestamps are taken as UTC."""
    if value is None or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError as exc:
        raise InvalidRequest(f"Invalid expire time: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _parse_flag(value: object) -> bool:
    return isinstance(value, str) and value.strip().lower() in {"1", "true", "yes", "on"}


async def _read_upload(upload: UploadFile) -> AsyncIterator[bytes]:
    while True:
        chunk = await upload.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        yield chunk


def _index(request: Request) -> MetadataIndex:
    return request.app.state.index


def _store(request: Request) -> ObjectStore:
    return request.app.state.store


@dataclass
class PasteRequest:
    content: str


class TransferController(Controller):
    path = "/api"

    @post("/upload", guards=[api_key_guard], status_code=200)
    async def upload(self, request: Request) -> dict[str, str]:
        """Store a multipart ``file`` and answer with its memo id."""
        form = await request.form()
        upload = form.get("file")
        if not isinstance(upload, UploadFile):
            raise InvalidRequest("Missing file")

        try:
            if not upload.filename:
                raise InvalidRequest("Missing file name")
            expire_at = parse_expire_at(form.get("expire_at"))
            encrypted = _parse_flag(form.get("encrypted"))

            index = _index(request)
            asset = await index.create_asset(upload.filename, encrypted, expire_at)
            with observability.span("filecrab.upload", memo_id=asset.memo_id):
                try:
                    await _store(request).put_stream(asset.storage_id, _read_upload(upload))
                except BaseException:
                    try:
                        await index.delete_asset(asset.storage_id)
                    except Exception:
                        logger.warning(
                            "Could not remove asset %s after a failed blob write",
                            asset.memo_id,
                            exc_info=True,
                        )
                    raise
        finally:
            await upload.close()

        logger.info("Stored asset %s (encrypted=%s)", asset.memo_id, encrypted)
        return {"id": asset.memo_id}

    @get("/download")
    async def download(
        self, request: Request, file: Annotated[str, Parameter(query="file")]
    ) -> Stream:
        """Stream the blob behind a memo id. No API key is required."""
        asset = await _index(request).find_asset_by_memo(file)
        blob = await _store(request).get_stream(asset.storage_id)
        encoded_name = quote(asset.file_name, safe="")
        return Stream(
            blob.chunks,
            media_type="application/octet-stream",
            headers={
                FILE_NAME_HEADER: encoded_name,
                "Content-Length": str(blob.content_length),
                "Content-Disposition": f"attachment; filename*=UTF-8''{encoded_name}",
            },
        )

    @post("/paste", guards=[api_key_guard], status_code=200)
    async def paste(self, request: Request, data: PasteRequest) -> dict[str, str]:
        """Store hex-encoded text and answer with its memo id."""
        content = data.content.strip()
        if not content:
            raise InvalidRequest("Empty content")
        try:
            bytes.fromhex(content)
        except ValueError as exc:
            raise InvalidRequest("Content must be hex encoded") from exc

        text = await _index(request).create_text(content)
        logger.info("Stored text %s", text.memo_id)
        return {"id": text.memo_id}

    @get("/copy", guards=[api_key_guard])
    async def copy(
        self, request: Request, memo_id: Annotated[str, Parameter(query="memo_id")]
    ) -> dict[str, str]:
        """Return a text once. Only the request whose delete removes the row gets the content."""
        index = _index(request)
        text = await index.find_text_by_memo(memo_id)
        if not await index.delete_text(text.storage_id):
            raise NotFound(memo_id)
        logger.info("Delivered and removed text %s", memo_id)
        return {"content": text.content}


@get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
