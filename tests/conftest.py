"""Shared test fixtures for opencache."""

from __future__ import annotations

import io
from collections.abc import AsyncIterable, AsyncIterator, Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import httpx
import pytest
import respx
from botocore.exceptions import ClientError
from botocore.response import StreamingBody

from opencache.core.signing import generate_keypair
from opencache.models.narinfo import NarinfoRecord
from opencache.storage.github_releases import GitHubReleasesStorage

API_HOST = "api.github.test"
UPLOADS_HOST = "uploads.github.test"
API = f"https://{API_HOST}"
UPLOADS = f"https://{UPLOADS_HOST}"
WEB = "https://github.test"
OWNER = "acme"
REPO = "nix-cache"
RELEASE_ID = 42

REPO_PATH = f"/repos/{OWNER}/{REPO}"
FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture(scope="session")
def keypair() -> tuple[str, str]:
    """Provide a (secret, public) key pair named ``test-1``."""
    return generate_keypair("test-1")


@pytest.fixture(scope="session")
def other_keypair() -> tuple[str, str]:
    """A second, unrelated key pair under the same name."""
    return generate_keypair("test-1")


@pytest.fixture
def record() -> NarinfoRecord:
    """A realistic narinfo record with two references."""
    return NarinfoRecord(
        store_path="/nix/store/p4pclmv1gyja5kzc26npqpia1qqxrf0l-ruby-2.7.3",
        nar_hash="sha256:1impfw8zdgisxkghq9a3q7cn7jb9zyzgxdydiamp8z2nlyyl0h5h",
        nar_size=18735072,
        references=(
            "/nix/store/0d71ygfwbmy1xjlbj1v027dfmy9cqavy-libffi-3.3",
            "/nix/store/p4pclmv1gyja5kzc26npqpia1qqxrf0l-ruby-2.7.3",
        ),
        url="nar/1w1fff338fvdw53sqgamddn1b2xgds473pv6y13gizdbqjv4i5p3.nar.xz",
        compression="xz",
        file_hash="sha256:1w1fff338fvdw53sqgamddn1b2xgds473pv6y13gizdbqjv4i5p3",
        file_size=4029176,
        deriver="bidkcs01mww363s4s7akdhbl6ws66b0z-ruby-2.7.3.drv",
    )


@pytest.fixture
def narinfo_text(record: NarinfoRecord) -> str:
    """Unsigned narinfo text as a Nix client would upload it."""
    return record.to_text()


@pytest.fixture
def make_narinfo() -> Callable[..., str]:
    """Factory fixture: unsigned narinfo text pointing at a given NAR file."""

    def _factory(name: str = "hello-2.12", nar_file: str | None = None, **overrides: Any) -> str:
        defaults: dict[str, Any] = {
            "store_path": f"/nix/store/{'a' * 32}-{name}",
            "nar_hash": "sha256:" + "b" * 52,
            "nar_size": 1024,
            "url": f"nar/{nar_file or name + '.nar.xz'}",
            "compression": "xz",
        }
        defaults.update(overrides)
        return NarinfoRecord(**defaults).to_text()

    return _factory


# ---------------------------------------------------------------------------
# Storage doubles
# ---------------------------------------------------------------------------


class MemoryStorage:
    """In-memory ``StorageBackend`` for exercising the HTTP layer."""

    def __init__(self) -> None:
        self.narinfo: dict[str, str] = {}
        self.nars: dict[str, bytes] = {}
        self.closed = False

    async def has_narinfo(self, hash: str) -> bool:
        return hash in self.narinfo

    async def get_narinfo(self, hash: str) -> str | None:
        return self.narinfo.get(hash)

    async def put_narinfo(self, hash: str, content: str) -> None:
        self.narinfo[hash] = content

    async def has_nar(self, filename: str) -> bool:
        return filename in self.nars

    async def get_nar_stream(self, filename: str) -> AsyncIterator[bytes] | None:
        if filename not in self.nars:
            return None
        return _chunks(self.nars[filename])

    async def put_nar_stream(self, filename: str, stream: AsyncIterable[bytes]) -> None:
        self.nars[filename] = b"".join([chunk async for chunk in stream])

    async def aclose(self) -> None:
        self.closed = True


async def _chunks(data: bytes, size: int = 4) -> AsyncIterator[bytes]:
    for i in range(0, len(data), size):
        yield data[i:i + size]


async def byte_stream(*chunks: bytes) -> AsyncIterator[bytes]:
    """Async iterator over *chunks*, as an upload body would arrive."""
    for chunk in chunks:
        yield chunk


@pytest.fixture
def memory_storage() -> MemoryStorage:
    """Provide an empty in-memory storage backend."""
    return MemoryStorage()


def client_error(code: str, status: int, operation: str) -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": code},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


class FakeS3Client:
    """Just enough of the boto3 S3 client surface for S3Storage."""

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], bytes] = {}
        self.content_types: dict[str, str] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.fail_with: Exception | None = None

    def _check(self, operation: str, kwargs: dict[str, Any]) -> None:
        self.calls.append((operation, kwargs))
        if self.fail_with is not None:
            raise self.fail_with

    def head_object(self, *, Bucket: str, Key: str) -> dict[str, Any]:
        self._check("head_object", {"Bucket": Bucket, "Key": Key})
        if (Bucket, Key) not in self.objects:
            raise client_error("404", 404, "HeadObject")
        return {"ContentLength": len(self.objects[(Bucket, Key)])}

    def get_object(self, *, Bucket: str, Key: str) -> dict[str, Any]:
        self._check("get_object", {"Bucket": Bucket, "Key": Key})
        if (Bucket, Key) not in self.objects:
            raise client_error("NoSuchKey", 404, "GetObject")
        data = self.objects[(Bucket, Key)]
        return {"Body": StreamingBody(io.BytesIO(data), len(data))}

    def put_object(self, *, Bucket: str, Key: str, Body: Any, ContentType: str, **extra: Any) -> dict:
        self._check("put_object", {"Bucket": Bucket, "Key": Key, **extra})
        data = Body if isinstance(Body, bytes) else Body.read()
        if "ContentLength" in extra:
            assert extra["ContentLength"] == len(data)
        self.objects[(Bucket, Key)] = data
        self.content_types[Key] = ContentType
        return {}


# ---------------------------------------------------------------------------
# GitHub Releases API double (respx)
# ---------------------------------------------------------------------------


def asset_json(
    asset_id: int,
    name: str,
    created_at: datetime = FIXED_NOW,
    size: int = 1,
) -> dict[str, Any]:
    """One asset object shaped like the GitHub REST API returns it."""
    return {
        "id": asset_id,
        "name": name,
        "size": size,
        "created_at": created_at.isoformat().replace("+00:00", "Z"),
        "url": f"{API}{REPO_PATH}/releases/assets/{asset_id}",
        "browser_download_url": f"{WEB}/{OWNER}/{REPO}/releases/download/nix-cache/{name}",
    }


class FakeRelease:
    """Mutable asset list served through respx routes.

    Supports tag lookup, paginated listing, asset download, delete and
    upload, so tests can assert on the release state after an operation.
    """

    def __init__(self, router: respx.MockRouter) -> None:
        self.router = router
        self.assets: list[dict[str, Any]] = []
        self.contents: dict[int, bytes] = {}
        self.uploads: list[tuple[str, bytes, str]] = []
        self.exists = True
        self._next_id = 1000

        self.lookup = router.get(
            host=API_HOST, path=f"{REPO_PATH}/releases/tags/nix-cache"
        ).mock(side_effect=self._lookup)
        self.create = router.post(host=API_HOST, path=f"{REPO_PATH}/releases").mock(
            return_value=httpx.Response(201, json={"id": RELEASE_ID})
        )
        self.listing = router.get(
            host=API_HOST, path=f"{REPO_PATH}/releases/{RELEASE_ID}/assets"
        ).mock(side_effect=self._list)
        self.download = router.get(
            host=API_HOST, path__regex=rf"^{REPO_PATH}/releases/assets/\d+$"
        ).mock(side_effect=self._download)
        self.delete = router.delete(
            host=API_HOST, path__regex=rf"^{REPO_PATH}/releases/assets/\d+$"
        ).mock(side_effect=self._delete)
        self.upload = router.post(
            host=UPLOADS_HOST, path=f"{REPO_PATH}/releases/{RELEASE_ID}/assets"
        ).mock(side_effect=self._upload)

    def add(self, name: str, content: bytes = b"x", created_at: datetime = FIXED_NOW) -> int:
        asset_id = self._next_id
        self._next_id += 1
        self.assets.append(asset_json(asset_id, name, created_at, len(content)))
        self.contents[asset_id] = content
        return asset_id

    def names(self) -> list[str]:
        return [a["name"] for a in self.assets]

    def content_of(self, name: str) -> bytes:
        for asset in self.assets:
            if asset["name"] == name:
                return self.contents[asset["id"]]
        raise KeyError(name)

    def _lookup(self, request: httpx.Request) -> httpx.Response:
        if not self.exists:
            return httpx.Response(404, json={"message": "Not Found"})
        return httpx.Response(200, json={"id": RELEASE_ID, "tag_name": "nix-cache"})

    def _list(self, request: httpx.Request) -> httpx.Response:
        per_page = int(request.url.params.get("per_page", 30))
        page = int(request.url.params.get("page", 1))
        start = (page - 1) * per_page
        return httpx.Response(200, json=self.assets[start:start + per_page])

    @staticmethod
    def _asset_id(request: httpx.Request) -> int:
        return int(request.url.path.rsplit("/", 1)[1])

    def _download(self, request: httpx.Request) -> httpx.Response:
        asset_id = self._asset_id(request)
        if asset_id not in self.contents:
            return httpx.Response(404)
        return httpx.Response(200, content=self.contents[asset_id])

    def _delete(self, request: httpx.Request) -> httpx.Response:
        asset_id = self._asset_id(request)
        before = len(self.assets)
        self.assets = [a for a in self.assets if a["id"] != asset_id]
        self.contents.pop(asset_id, None)
        return httpx.Response(204 if len(self.assets) < before else 404)

    def _upload(self, request: httpx.Request) -> httpx.Response:
        name = request.url.params["name"]
        if name in self.names():
            return httpx.Response(
                422, json={"errors": [{"code": "already_exists", "field": "name"}]}
            )
        body = request.content
        self.uploads.append((name, body, request.headers.get("content-type", "")))
        self.add(name, body)
        return httpx.Response(201, json=self.assets[-1])


@pytest.fixture
def github_api():
    """Provide a respx router; unmatched requests fail the test."""
    with respx.mock(assert_all_called=False) as router:
        yield router


@pytest.fixture
def release(github_api: respx.MockRouter) -> FakeRelease:
    """Provide an existing, empty release backed by respx routes."""
    return FakeRelease(github_api)


def make_github_storage(local_path: Path, **overrides: Any) -> GitHubReleasesStorage:
    """Build a GitHubReleasesStorage pointed at the fake API hosts."""
    kwargs: dict[str, Any] = {
        "token": "ghp_test",
        "owner": OWNER,
        "repo": REPO,
        "local_path": local_path,
        "api_url": API,
        "upload_url": UPLOADS,
        "web_url": WEB,
        "clock": lambda: FIXED_NOW,
    }
    kwargs.update(overrides)
    return GitHubReleasesStorage(**kwargs)


@pytest.fixture
async def github_storage(tmp_dir: Path, release: FakeRelease):
    """Provide a GitHubReleasesStorage wired to the fake release."""
    async with make_github_storage(tmp_dir / "cache") as storage:
        yield storage
