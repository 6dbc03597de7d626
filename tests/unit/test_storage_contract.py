"""Behavior every StorageBackend must share, run against each backend."""

from __future__ import annotations

import pytest

from opencache.storage import StorageBackend
from opencache.storage.local import LocalStorage
from opencache.storage.s3 import S3Storage
from tests.conftest import FakeS3Client, byte_stream, make_github_storage


@pytest.fixture(params=["local", "s3", "github-releases"])
async def backend(request, tmp_dir):
    if request.param == "local":
        yield LocalStorage(tmp_dir / "local")
    elif request.param == "s3":
        yield S3Storage("nix-cache", client=FakeS3Client())
    else:
        request.getfixturevalue("release")
        async with make_github_storage(tmp_dir / "gh") as storage:
            yield storage


async def _collect(stream) -> bytes:
    return b"".join([chunk async for chunk in stream])


class TestStorageContract:
    async def test_is_a_storage_backend(self, backend):
        assert isinstance(backend, StorageBackend)

    async def test_absent_before_write(self, backend):
        assert await backend.has_narinfo("abc") is False
        assert await backend.get_narinfo("abc") is None
        assert await backend.has_nar("abc.nar") is False
        assert await backend.get_nar_stream("abc.nar") is None

    async def test_narinfo_round_trip_is_byte_exact(self, backend, narinfo_text):
        text = narinfo_text + "Sig: test-1:AAAA\n"
        await backend.put_narinfo("abc", text)
        assert await backend.has_narinfo("abc") is True
        assert await backend.get_narinfo("abc") == text

    async def test_idempotent_reupload(self, backend, narinfo_text):
        await backend.put_narinfo("abc", narinfo_text)
        await backend.put_narinfo("abc", narinfo_text)
        assert await backend.get_narinfo("abc") == narinfo_text

    async def test_multi_chunk_nar_round_trip(self, backend):
        chunks = [bytes([i]) * (1000 + i) for i in range(20)]
        await backend.put_nar_stream("x.nar.xz", byte_stream(*chunks))
        assert await backend.has_nar("x.nar.xz") is True
        assert await _collect(await backend.get_nar_stream("x.nar.xz")) == b"".join(chunks)

    async def test_nar_overwrite_last_writer_wins(self, backend):
        await backend.put_nar_stream("x.nar", byte_stream(b"first"))
        await backend.put_nar_stream("x.nar", byte_stream(b"second"))
        assert await _collect(await backend.get_nar_stream("x.nar")) == b"second"
