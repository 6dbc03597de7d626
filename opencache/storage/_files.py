"""Non-blocking file helpers shared by the filesystem-backed stores.

Writes land in a uniquely named ``.part`` file beside the target and are
renamed into place, so a failed or cancelled write never leaves a partial
file under the final name.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterable, AsyncIterator
from pathlib import Path

import aiofiles
import aiofiles.os

from opencache.errors import BackendTransientFailure

CHUNK_SIZE = 64 * 1024


async def path_exists(path: Path) -> bool:
    """``True`` if *path* exists; disk errors other than ENOENT propagate."""
    try:
        await aiofiles.os.stat(path)
    except FileNotFoundError:
        return False
    except OSError as exc:
        raise BackendTransientFailure(f"Cannot stat {path}: {exc}") from exc
    return True


async def read_text(path: Path, errors: str = "strict") -> str | None:
    """Read a UTF-8 file, or ``None`` if it does not exist."""
    try:
        async with aiofiles.open(
            path, "r", encoding="utf-8", errors=errors, newline=""
        ) as fh:
            return await fh.read()
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise BackendTransientFailure(f"Cannot read {path}: {exc}") from exc


async def open_stream(path: Path) -> AsyncIterator[bytes] | None:
    """Open *path* for chunked reading, or ``None`` if it does not exist.

    The file is opened before returning so that absence is known up front;
    the returned iterator closes it when exhausted or closed.
    """
    try:
        handle = await aiofiles.open(path, "rb")
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise BackendTransientFailure(f"Cannot open {path}: {exc}") from exc
    return _drain(handle)


async def _drain(handle) -> AsyncIterator[bytes]:
    try:
        while chunk := await handle.read(CHUNK_SIZE):
            yield chunk
    finally:
        await handle.close()


async def write_stream(path: Path, stream: AsyncIterable[bytes]) -> int:
    """Write an async byte stream to *path* atomically; return bytes written."""
    tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.part")
    size = 0
    try:
        async with aiofiles.open(tmp, "wb") as fh:
            async for chunk in stream:
                await fh.write(chunk)
                size += len(chunk)
        await aiofiles.os.replace(tmp, path)
    except BaseException as exc:
        await _discard(tmp)
        if isinstance(exc, OSError):
            raise BackendTransientFailure(f"Cannot write {path}: {exc}") from exc
        raise
    return size


async def write_bytes(path: Path, data: bytes) -> None:
    """Write *data* to *path* atomically."""
    await write_stream(path, _once(data))


async def write_text(path: Path, content: str) -> None:
    """Write UTF-8 text to *path* atomically."""
    await write_stream(path, _once(content.encode("utf-8")))


async def _once(data: bytes) -> AsyncIterator[bytes]:
    yield data


async def _discard(path: Path) -> None:
    try:
        await aiofiles.os.remove(path)
    except FileNotFoundError:
        pass


async def list_names(directory: Path, suffix: str) -> list[str]:
    """Sorted names in *directory* ending with *suffix* (``[]`` if missing)."""
    try:
        entries = await aiofiles.os.listdir(directory)
    except FileNotFoundError:
        return []
    except OSError as exc:
        raise BackendTransientFailure(f"Cannot list {directory}: {exc}") from exc
    return sorted(
        name for name in entries if name.endswith(suffix) and not name.startswith(".")
    )
