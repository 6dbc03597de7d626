"""Storage backend protocol and factory.

Every backend implements the ``StorageBackend`` protocol: existence, read and
write for two resource kinds — narinfo records (text, keyed by store-path
hash) and NAR byte streams (keyed by filename).

Absence is reported as ``False``/``None`` only when it is confirmed.  A
backend that cannot tell raises ``BackendTransientFailure`` instead.
"""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from opencache.errors import InvalidResourceName

if TYPE_CHECKING:
    from opencache.config import CacheConfig

ByteStream = AsyncIterator[bytes]

_FORBIDDEN_CHARS = ("/", "\\", "\x00")


@runtime_checkable
class StorageBackend(Protocol):
    """Protocol that every opencache storage backend must implement.

    All methods are coroutines.  Writes have overwrite semantics and are
    idempotent for a given key; concurrent writers to one key race and the
    last one wins.
    """

    async def has_narinfo(self, hash: str) -> bool:
        """Return ``True`` if a narinfo record is stored under *hash*."""
        ...

    async def get_narinfo(self, hash: str) -> str | None:
        """Return the stored narinfo text, or ``None`` if absent."""
        ...

    async def put_narinfo(self, hash: str, content: str) -> None:
        """Store (or replace) the narinfo text for *hash*."""
        ...

    async def has_nar(self, filename: str) -> bool:
        """Return ``True`` if a NAR is stored under *filename*."""
        ...

    async def get_nar_stream(self, filename: str) -> ByteStream | None:
        """Return an async byte iterator over the NAR, or ``None`` if absent."""
        ...

    async def put_nar_stream(
        self, filename: str, stream: AsyncIterable[bytes]
    ) -> None:
        """Store (or replace) a NAR from an async byte stream of any size."""
        ...


def validate_name(name: str) -> str:
    """Return *name* if it can safely name one file, else raise.

    Raises
    ------
    InvalidResourceName
        For empty names, names starting with ``.``, or names containing a
        path separator or NUL.
    """
    if not name or name.startswith(".") or any(c in name for c in _FORBIDDEN_CHARS):
        raise InvalidResourceName(f"Invalid resource name: {name!r}")
    return name


def create_storage(config: CacheConfig) -> StorageBackend:
    """Build the storage backend selected by ``config.storage_backend``."""
    backend = config.storage_backend
    if backend == "local":
        from opencache.storage.local import LocalStorage

        return LocalStorage(config.local_storage_path)
    if backend == "s3":
        from opencache.storage.s3 import S3Storage

        return S3Storage.from_config(config)
    if backend == "github-releases":
        from opencache.storage.github_releases import GitHubReleasesStorage

        return GitHubReleasesStorage.from_config(config)
    raise ValueError(f"Unknown storage backend: {backend!r}")


__all__ = ["ByteStream", "StorageBackend", "create_storage", "validate_name"]
