"""Local filesystem storage backend.

Layout on disk::

    <root>/narinfo/<hash>.narinfo
    <root>/nar/<filename>

No locking: concurrent writers to the same key race at the filesystem level
and the last rename wins, which is fine because writes for one key are
idempotent.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterable
from pathlib import Path

from opencache.models.narinfo import NARINFO_SUFFIX
from opencache.storage import ByteStream, validate_name
from opencache.storage import _files

logger = logging.getLogger(__name__)


class LocalStorage:
    """Filesystem-backed store for narinfo records and NAR files.

    Parameters
    ----------
    root:
        Root directory; ``narinfo/`` and ``nar/`` are created beneath it.
    """

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root)
        self._narinfo_dir = self._root / "narinfo"
        self._nar_dir = self._root / "nar"
        self._narinfo_dir.mkdir(parents=True, exist_ok=True)
        self._nar_dir.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    @property
    def narinfo_dir(self) -> Path:
        return self._narinfo_dir

    def _narinfo_path(self, hash: str) -> Path:
        return self._narinfo_dir / f"{validate_name(hash)}{NARINFO_SUFFIX}"

    def _nar_path(self, filename: str) -> Path:
        return self._nar_dir / validate_name(filename)

    # ------------------------------------------------------------------
    # narinfo
    # ------------------------------------------------------------------

    async def has_narinfo(self, hash: str) -> bool:
        return await _files.path_exists(self._narinfo_path(hash))

    async def get_narinfo(self, hash: str) -> str | None:
        return await _files.read_text(self._narinfo_path(hash))

    async def put_narinfo(self, hash: str, content: str) -> None:
        await _files.write_text(self._narinfo_path(hash), content)
        logger.debug("LocalStorage: wrote narinfo %s", hash)

    async def list_narinfo_names(self) -> list[str]:
        """Filenames (``<hash>.narinfo``) of every stored narinfo record."""
        return await _files.list_names(self._narinfo_dir, NARINFO_SUFFIX)

    # ------------------------------------------------------------------
    # NAR
    # ------------------------------------------------------------------

    async def has_nar(self, filename: str) -> bool:
        return await _files.path_exists(self._nar_path(filename))

    async def get_nar_stream(self, filename: str) -> ByteStream | None:
        return await _files.open_stream(self._nar_path(filename))

    async def put_nar_stream(
        self, filename: str, stream: AsyncIterable[bytes]
    ) -> None:
        size = await _files.write_stream(self._nar_path(filename), stream)
        logger.debug("LocalStorage: wrote NAR %s (%d bytes)", filename, size)
