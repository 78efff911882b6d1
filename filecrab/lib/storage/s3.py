"""S3-compatible object store."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterable, AsyncIterator
from contextlib import AsyncExitStack
from typing import TYPE_CHECKING, Any

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from filecrab.errors import BlobNotFound, StorageError
from filecrab.lib.storage.base import READ_CHUNK_SIZE, BlobStream, validate_storage_id

if TYPE_CHECKING:
    from filecrab.config import S3Config

logger = logging.getLogger(__name__)

# S3 rejects multipart parts below 5 MiB except the last one.
PART_SIZE = 8 * 1024 * 1024

_MISSING_CODES = {"nosuchkey", "404", "notfound"}
_MISSING_BUCKET_CODES = {"nosuchbucket", "404", "notfound"}


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", "")).lower()


class S3ObjectStore:
    """Store blobs in an S3-compatible bucket.

    One client is opened lazily and kept for the lifetime of the store so
    that download bodies can be streamed after ``get_stream`` returns.
    """

    def __init__(self, config: S3Config, session: aioboto3.Session | None = None) -> None:
        self._config = config
        self._session = session or aioboto3.Session()
        self._exit_stack: AsyncExitStack | None = None
        self._client: Any = None

    def _client_kwargs(self) -> dict:
        kwargs: dict = {
            "region_name": self._config.region,
        }
        if self._config.endpoint_url:
            kwargs["endpoint_url"] = self._config.endpoint_url
        if self._config.access_key_id:
            kwargs["aws_access_key_id"] = self._config.access_key_id
        if self._config.secret_access_key:
            kwargs["aws_secret_access_key"] = self._config.secret_access_key
        return kwargs

    def _full_key(self, storage_id: str) -> str:
        validate_storage_id(storage_id)
        if self._config.prefix:
            return f"{self._config.prefix.rstrip('/')}/{storage_id}"
        return storage_id

    async def _get_client(self) -> Any:
        if self._client is None:
            stack = AsyncExitStack()
            self._client = await stack.enter_async_context(
                self._session.client("s3", **self._client_kwargs())
            )
            self._exit_stack = stack
        return self._client

    async def prepare(self) -> None:
        """Create the bucket when it does not exist yet."""
        s3 = await self._get_client()
        bucket = self._config.bucket
        try:
            await s3.head_bucket(Bucket=bucket)
            return
        except ClientError as exc:
            if _error_code(exc) not in _MISSING_BUCKET_CODES:
                raise StorageError(f"Could not reach bucket {bucket}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Could not reach bucket {bucket}") from exc

        create_kwargs: dict = {"Bucket": bucket}
        if self._config.region and self._config.region != "us-east-1":
            create_kwargs["CreateBucketConfiguration"] = {
                "LocationConstraint": self._config.region,
            }
        try:
            await s3.create_bucket(**create_kwargs)
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Could not create bucket {bucket}") from exc
        logger.info("Created bucket %s", bucket)

    async def put_stream(self, storage_id: str, chunks: AsyncIterable[bytes]) -> None:
        s3 = await self._get_client()
        key = self._full_key(storage_id)
        bucket = self._config.bucket
        buffer = bytearray()
        upload_id: str | None = None
        parts: list[dict] = []

        try:
            async for chunk in chunks:
                buffer += chunk
                while len(buffer) >= PART_SIZE:
                    if upload_id is None:
                        created = await s3.create_multipart_upload(Bucket=bucket, Key=key)
                        upload_id = created["UploadId"]
                    part_number = len(parts) + 1
                    uploaded = await s3.upload_part(
                        Bucket=bucket,
                        Key=key,
                        UploadId=upload_id,
                        PartNumber=part_number,
                        Body=bytes(buffer[:PART_SIZE]),
                    )
                    parts.append({"ETag": uploaded["ETag"], "PartNumber": part_number})
                    del buffer[:PART_SIZE]

            if upload_id is None:
                await s3.put_object(Bucket=bucket, Key=key, Body=bytes(buffer))
                return

            if buffer:
                part_number = len(parts) + 1
                uploaded = await s3.upload_part(
                    Bucket=bucket,
                    Key=key,
                    UploadId=upload_id,
                    PartNumber=part_number,
                    Body=bytes(buffer),
                )
                parts.append({"ETag": uploaded["ETag"], "PartNumber": part_number})
            await s3.complete_multipart_upload(
                Bucket=bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
            )
        except BaseException as exc:
            if upload_id is not None:
                await self._abort_upload(s3, key, upload_id)
            if isinstance(exc, (ClientError, BotoCoreError)):
                raise StorageError(f"Could not upload blob {storage_id}") from exc
            raise

    async def _abort_upload(self, s3: Any, key: str, upload_id: str) -> None:
        try:
            await s3.abort_multipart_upload(Bucket=self._config.bucket, Key=key, UploadId=upload_id)
        except (ClientError, BotoCoreError):
            logger.warning("Could not abort multipart upload %s", upload_id, exc_info=True)

    async def get_stream(self, storage_id: str) -> BlobStream:
        s3 = await self._get_client()
        try:
            response = await s3.get_object(Bucket=self._config.bucket, Key=self._full_key(storage_id))
        except ClientError as exc:
            if _error_code(exc) in _MISSING_CODES:
                raise BlobNotFound(storage_id) from exc
            raise StorageError(f"Could not read blob {storage_id}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Could not read blob {storage_id}") from exc
        return BlobStream(
            chunks=self._read_body(response["Body"]),
            content_length=int(response["ContentLength"]),
        )

    @staticmethod
    async def _read_body(body: Any) -> AsyncIterator[bytes]:
        async with body as stream:
            while True:
                chunk = await stream.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk

    async def delete(self, storage_id: str) -> None:
        s3 = await self._get_client()
        try:
            await s3.delete_object(Bucket=self._config.bucket, Key=self._full_key(storage_id))
        except ClientError as exc:
            if _error_code(exc) in _MISSING_CODES:
                return
            raise StorageError(f"Could not delete blob {storage_id}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Could not delete blob {storage_id}") from exc

    async def exists(self, storage_id: str) -> bool:
        s3 = await self._get_client()
        try:
            await s3.head_object(Bucket=self._config.bucket, Key=self._full_key(storage_id))
        except ClientError as exc:
            if _error_code(exc) in _MISSING_CODES:
                return False
            raise StorageError(f"Could not check blob {storage_id}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Could not check blob {storage_id}") from exc
        return True

    async def close(self) -> None:
        if self._exit_stack is not None:
            await self._exit_stack.aclose()
        self._exit_stack = None
        self._client = None
