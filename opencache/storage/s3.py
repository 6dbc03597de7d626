"""S3-compatible storage backend (AWS S3, Cloudflare R2, Backblaze B2, MinIO).

Layout in the bucket::

    narinfo/<hash>.narinfo
    nar/<filename>

boto3 is blocking, so every client call runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
import tempfile
from collections.abc import AsyncIterable, AsyncIterator
from typing import TYPE_CHECKING, Any

from botocore.exceptions import BotoCoreError, ClientError

from opencache.errors import BackendTransientFailure
from opencache.models.narinfo import NARINFO_SUFFIX
from opencache.storage import ByteStream, validate_name

if TYPE_CHECKING:
    from opencache.config import CacheConfig

logger = logging.getLogger(__name__)

NARINFO_PREFIX = "narinfo/"
NAR_PREFIX = "nar/"
NARINFO_CONTENT_TYPE = "text/x-nix-narinfo"
NAR_CONTENT_TYPE = "application/x-nix-nar"

CHUNK_SIZE = 64 * 1024
SPOOL_MEMORY_BYTES = 8 * 1024 * 1024

_NOT_FOUND_CODES = {
    # HEAD responses carry no body, so botocore reports the bare status.
    "head_object": frozenset({"404", "NoSuchKey", "NotFound"}),
    "get_object": frozenset({"NoSuchKey", "NotFound"}),
}


class _ObjectMissing(Exception):
    """The requested key is confirmed absent from an existing bucket."""


def _is_not_found(operation: str, exc: ClientError) -> bool:
    code = exc.response.get("Error", {}).get("Code")
    return code in _NOT_FOUND_CODES.get(operation, frozenset())


class S3Storage:
    """Store narinfo records and NARs in one S3-compatible bucket.

    Parameters
    ----------
    bucket:
        Bucket name.
    client:
        Optional pre-built boto3 S3 client.  When omitted, one is created
        lazily from the remaining parameters.
    """

    def __init__(
        self,
        bucket: str,
        *,
        region: str = "auto",
        endpoint_url: str | None = None,
        access_key_id: str = "",
        secret_access_key: str = "",
        force_path_style: bool = False,
        client: Any = None,
    ) -> None:
        if not bucket:
            raise ValueError("S3Storage requires a bucket name (S3_BUCKET)")
        self.bucket = bucket
        self._region = region
        self._endpoint_url = endpoint_url
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key
        self._force_path_style = force_path_style
        self._client = client

    @classmethod
    def from_config(cls, config: CacheConfig) -> S3Storage:
        return cls(
            config.s3_bucket,
            region=config.s3_region,
            endpoint_url=config.s3_endpoint,
            access_key_id=config.s3_access_key_id,
            secret_access_key=config.s3_secret_access_key,
            force_path_style=config.s3_force_path_style,
        )

    def _get_client(self) -> Any:
        if self._client is None:
            import boto3
            from botocore.config import Config

            kwargs: dict[str, Any] = {"region_name": self._region}
            if self._endpoint_url:
                kwargs["endpoint_url"] = self._endpoint_url
            if self._access_key_id:
                kwargs["aws_access_key_id"] = self._access_key_id
            if self._secret_access_key:
                kwargs["aws_secret_access_key"] = self._secret_access_key
            if self._force_path_style:
                kwargs["config"] = Config(s3={"addressing_style": "path"})
            self._client = boto3.client("s3", **kwargs)
        return self._client

    @staticmethod
    def _narinfo_key(hash: str) -> str:
        return f"{NARINFO_PREFIX}{validate_name(hash)}{NARINFO_SUFFIX}"

    @staticmethod
    def _nar_key(filename: str) -> str:
        return f"{NAR_PREFIX}{validate_name(filename)}"

    # ------------------------------------------------------------------
    # Client plumbing
    # ------------------------------------------------------------------

    async def _call(self, operation: str, **kwargs: Any) -> Any:
        method = getattr(self._get_client(), operation)
        try:
            return await asyncio.to_thread(method, Bucket=self.bucket, **kwargs)
        except ClientError as exc:
            if _is_not_found(operation, exc):
                raise _ObjectMissing(kwargs.get("Key")) from exc
            raise BackendTransientFailure(
                f"S3 {operation} failed for {kwargs.get('Key')}: {exc}"
            ) from exc
        except BotoCoreError as exc:
            raise BackendTransientFailure(
                f"S3 {operation} failed for {kwargs.get('Key')}: {exc}"
            ) from exc

    async def _exists(self, key: str) -> bool:
        try:
            await self._call("head_object", Key=key)
        except _ObjectMissing:
            return False
        return True

    async def _get(self, key: str) -> dict[str, Any] | None:
        try:
            return await self._call("get_object", Key=key)
        except _ObjectMissing:
            return None

    # ------------------------------------------------------------------
    # narinfo
    # ------------------------------------------------------------------

    async def has_narinfo(self, hash: str) -> bool:
        return await self._exists(self._narinfo_key(hash))

    async def get_narinfo(self, hash: str) -> str | None:
        resp = await self._get(self._narinfo_key(hash))
        if resp is None:
            return None
        chunks = [chunk async for chunk in _normalize_body(resp["Body"])]
        return b"".join(chunks).decode("utf-8")

    async def put_narinfo(self, hash: str, content: str) -> None:
        await self._call(
            "put_object",
            Key=self._narinfo_key(hash),
            Body=content.encode("utf-8"),
            ContentType=NARINFO_CONTENT_TYPE,
        )
        logger.debug("S3Storage: wrote narinfo %s", hash)

    # ------------------------------------------------------------------
    # NAR
    # ------------------------------------------------------------------

    async def has_nar(self, filename: str) -> bool:
        return await self._exists(self._nar_key(filename))

    async def get_nar_stream(self, filename: str) -> ByteStream | None:
        resp = await self._get(self._nar_key(filename))
        if resp is None:
            return None
        return _normalize_body(resp["Body"])

    async def put_nar_stream(
        self, filename: str, stream: AsyncIterable[bytes]
    ) -> None:
        """Upload a NAR with a single ``put_object``.

        The stream is spooled (memory first, then a temporary file) so the
        upload has a seekable body with a known length.
        """
        key = self._nar_key(filename)
        with tempfile.SpooledTemporaryFile(max_size=SPOOL_MEMORY_BYTES) as spool:
            async for chunk in stream:
                await asyncio.to_thread(spool.write, chunk)
            size = spool.tell()
            spool.seek(0)
            await self._call(
                "put_object",
                Key=key,
                Body=spool,
                ContentLength=size,
                ContentType=NAR_CONTENT_TYPE,
            )
        logger.debug("S3Storage: wrote NAR %s (%d bytes)", filename, size)


async def _normalize_body(body: Any) -> AsyncIterator[bytes]:
    """Turn whatever the client returned as a body into one async byte stream.

    Handles botocore's ``StreamingBody`` (``iter_chunks``), plain file-like
    objects (``read``), raw ``bytes`` and any iterable of chunks.
    """
    if isinstance(body, (bytes, bytearray)):
        if body:
            yield bytes(body)
        return

    if hasattr(body, "iter_chunks"):
        chunks = iter(body.iter_chunks(CHUNK_SIZE))
    elif hasattr(body, "read"):
        chunks = iter(lambda: body.read(CHUNK_SIZE), b"")
    else:
        chunks = iter(body)

    try:
        while True:
            try:
                chunk = await asyncio.to_thread(next, chunks, None)
            except (BotoCoreError, OSError) as exc:
                raise BackendTransientFailure(f"S3 body read failed: {exc}") from exc
            if chunk is None:
                break
            if chunk:
                yield bytes(chunk)
    finally:
        close = getattr(body, "close", None)
        if close is not None:
            close()
